import gevent
import pytest

from streamrelay.errors import StreamTransportError, UpstreamFetchError
from streamrelay.gateway import create_app
from streamrelay.upstream import UpstreamPage

LANDING = "https://app.livetvapi.com/event-play-2/{}"


class FakeClock(object):
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeStream(object):
    """Stands in for ``UpstreamStream``."""

    def __init__(self, url, chunks, headers=None, fail_after=None, endless=False):
        self.url = url
        self.headers = dict(headers or {})
        self._chunks = list(chunks)
        self.fail_after = fail_after
        self.endless = endless
        self.cancelled = False
        self.closed = False
        self.yielded = 0

    @property
    def content_type(self):
        return self.headers.get("Content-Type", "")

    def iter_chunks(self, chunk_size):
        index = 0
        while True:
            if self.cancelled:
                return
            if self.fail_after is not None and self.yielded >= self.fail_after:
                raise StreamTransportError("connection reset")
            if index < len(self._chunks):
                chunk = self._chunks[index]
            elif self.endless:
                chunk = b"x" * 16
            else:
                return
            index += 1
            gevent.sleep(0)
            self.yielded += 1
            yield chunk

    def cancel(self):
        self.cancelled = True
        self.close()

    def close(self):
        self.closed = True


class FakeUpstream(object):
    """Implements the UpstreamClient contract against canned responses."""

    def __init__(self, delay=0):
        self.delay = delay
        self.pages = {}
        self.streams = {}
        self.calls = []
        self.cookies_sent = []
        self.opened = []

    def add_page(self, url, text, status=200, headers=None, final_url=None, set_cookies=()):
        self.pages[url] = (text, status, dict(headers or {}), final_url or url, list(set_cookies))

    def add_stream(self, url, chunks, headers=None, status=200, **kwargs):
        self.streams[url] = (list(chunks), dict(headers or {}), status, kwargs)

    def count(self, url):
        return sum(1 for _, called in self.calls if called == url)

    def get_text(self, url, cookies=None):
        self.calls.append(("text", url))
        self.cookies_sent.append((url, cookies.header_for(url) if cookies is not None else ""))
        if self.delay:
            gevent.sleep(self.delay)
        if url not in self.pages:
            raise UpstreamFetchError(url, upstream_status=404)
        text, status, headers, final_url, set_cookies = self.pages[url]
        if not 200 <= status < 300:
            raise UpstreamFetchError(url, upstream_status=status)
        if cookies is not None:
            for raw in set_cookies:
                cookies.add(raw, final_url)
        return UpstreamPage(text, final_url, headers, status)

    def open_stream(self, url, cookies=None):
        self.calls.append(("stream", url))
        self.cookies_sent.append((url, cookies.header_for(url) if cookies is not None else ""))
        if self.delay:
            gevent.sleep(self.delay)
        if url not in self.streams:
            raise UpstreamFetchError(url, upstream_status=404)
        chunks, headers, status, kwargs = self.streams[url]
        if not 200 <= status < 300:
            raise UpstreamFetchError(url, upstream_status=status)
        stream = FakeStream(url, chunks, headers, **kwargs)
        self.opened.append(stream)
        return stream


def landing_html(stream_url):
    return f'<html><body><input id="stream-link" value="{stream_url}"></body></html>'


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def app(upstream, clock):
    app = create_app(
        {"TESTING": True, "STREAM_TTL_SEC": 600, "MAX_IN_FLIGHT": 500},
        client=upstream,
        timer=clock,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def relay(app):
    return app.extensions["streamrelay"]
