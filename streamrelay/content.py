import logging
import time
from dataclasses import dataclass, field

import gevent
from gevent.event import Event

from streamrelay.caches import ExpiringFIFO
from streamrelay.errors import ResourceExhausted, StreamTransportError
from streamrelay.playlist import is_playlist
from streamrelay.singleflight import SingleFlight
from streamrelay.upstream import CookieStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentEntry:
    url: str
    payload: object
    headers: dict = field(default_factory=dict)
    expires_at: float = 0.0
    final_url: str = ""

    @property
    def content_type(self):
        return self.headers.get("Content-Type") or self.headers.get("content-type") or ""

    @property
    def base_url(self):
        return self.final_url or self.url

    def read_text(self):
        if isinstance(self.payload, bytes):
            return self.payload.decode("utf-8", errors="replace")
        return self.payload

    def chunks(self, chunk_size):
        payload = self.payload
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        for start in range(0, len(payload), chunk_size):
            yield payload[start:start + chunk_size]


class Transfer(object):
    """One upstream body shared by every client asking for the same url.

    A pump greenlet copies chunks from the upstream stream into memory and
    wakes the readers. When the last reader leaves before the body is
    complete the upstream stream is cancelled; a completed body is handed to
    ``on_settle`` for caching.
    """

    def __init__(self, url, stream, on_settle, chunk_size=64 * 1024, read_timeout=30):
        self.url = url
        self.headers = stream.headers
        self.final_url = stream.url or url
        self._stream = stream
        self._on_settle = on_settle
        self._chunk_size = chunk_size
        self._read_timeout = read_timeout
        self._chunks = []
        self._tick = Event()
        self._pump = None
        self._readers = 0
        self.error = None
        self.complete = False
        self.settled = False

    @property
    def content_type(self):
        return self.headers.get("Content-Type") or self.headers.get("content-type") or ""

    @property
    def base_url(self):
        return self.final_url

    @property
    def payload(self):
        return b"".join(self._chunks)

    @property
    def cancelled(self):
        return self._stream.cancelled

    def start(self):
        self._pump = gevent.spawn(self._run)
        return self

    def _run(self):
        try:
            for chunk in self._stream.iter_chunks(self._chunk_size):
                self._chunks.append(chunk)
                self._notify()
            self.complete = not self._stream.cancelled
        except Exception as e:
            logger.warning("Upstream transfer failed: %s", e)
            self.error = e if isinstance(e, StreamTransportError) else StreamTransportError(str(e))
        finally:
            self._stream.close()
            self._settle()

    def _notify(self):
        tick, self._tick = self._tick, Event()
        tick.set()

    def _settle(self):
        if self.settled:
            return
        self.settled = True
        if not self.complete and self.error is None:
            self.error = StreamTransportError("transfer cancelled")
        self._notify()
        self._on_settle(self)

    def cancel(self):
        if self._pump is not None:
            self._pump.kill(block=False)
        self._stream.cancel()
        self._settle()

    def attach(self):
        """Register a client; each attachment is released by one ``chunks()``."""
        self._readers += 1
        return self

    def chunks(self):
        index = 0
        try:
            while True:
                if index < len(self._chunks):
                    chunk = self._chunks[index]
                    index += 1
                    yield chunk
                    continue
                if self.complete:
                    return
                if self.error is not None:
                    raise self.error
                tick = self._tick
                if not tick.wait(self._read_timeout):
                    raise StreamTransportError(f"upstream stalled for {self._read_timeout}s")
        finally:
            self._readers -= 1
            if self._readers == 0 and not self.settled:
                logger.debug("Last client left, closing upstream stream for %s", self.url)
                self.cancel()

    def read_text(self):
        body = b"".join(self.chunks())
        return body.decode("utf-8", errors="replace")


class ContentCache(object):
    """Read-through cache of upstream playlists and segments keyed by url."""

    def __init__(self, client, maxsize=1500, playlist_ttl=2.5, segment_ttl=12,
                 max_in_flight=500, timeout=30, chunk_size=64 * 1024,
                 timer=time.monotonic):
        self.client = client
        self.playlist_ttl = playlist_ttl
        self.segment_ttl = segment_ttl
        self.max_in_flight = max_in_flight
        self.timeout = timeout
        self.chunk_size = chunk_size
        self.timer = timer
        self._entries = ExpiringFIFO(maxsize, timer=timer)
        self._flights = SingleFlight(timeout)
        self._transfers = {}

    @property
    def maxsize(self):
        return self._entries.maxsize

    def __len__(self):
        return len(self._entries)

    @property
    def in_flight(self):
        return len(self._flights) + len(self._transfers)

    @property
    def saturated(self):
        return self.in_flight >= self.max_in_flight

    def get(self, url):
        return self._entries.get(url)

    def put(self, url, payload, headers=None, ttl=None, final_url=""):
        if ttl is None:
            ttl = self.playlist_ttl if isinstance(payload, str) else self.segment_ttl
        entry = ContentEntry(
            url=url,
            payload=payload,
            headers=dict(headers or {}),
            expires_at=self.timer() + ttl,
            final_url=final_url or url,
        )
        return self._entries.set(url, entry, ttl)

    def evict(self, url):
        return self._entries.delete(url)

    def _admit(self):
        # the caller's own flight is already counted
        if self.in_flight > self.max_in_flight:
            logger.warning("Rejecting upstream fetch: %d already in flight", self.in_flight - 1)
            raise ResourceExhausted()

    # ------------------------------------------------------------------
    # buffered text (playlists)
    # ------------------------------------------------------------------

    def fetch_text(self, url, cookies=()):
        entry = self.get(url)
        if entry is not None:
            return entry
        return self._flights.do(("text", url), self._download_text, url, cookies)

    def _download_text(self, url, cookies):
        self._admit()
        page = self.client.get_text(url, CookieStore.hydrate(cookies, url))
        return self.put(url, page.text, page.headers, self.playlist_ttl, final_url=page.url)

    # ------------------------------------------------------------------
    # streamed bytes (segments)
    # ------------------------------------------------------------------

    def stream(self, url, cookies=()):
        """Cached entry, or a running transfer with the caller attached."""
        entry = self.get(url)
        if entry is not None:
            return entry
        transfer = self._transfers.get(url)
        if transfer is None:
            transfer = self._flights.do(("stream", url), self._open_transfer, url, cookies)
        if transfer.cancelled:
            # the last client left before this one attached
            return self.stream(url, cookies)
        return transfer.attach()

    def body(self, source):
        """Response chunks for a cached entry or an attached transfer."""
        if isinstance(source, Transfer):
            return source.chunks()
        return source.chunks(self.chunk_size)

    def _open_transfer(self, url, cookies):
        self._admit()
        handle = self.client.open_stream(url, CookieStore.hydrate(cookies, url))
        transfer = Transfer(url, handle, self._settle_transfer,
                            chunk_size=self.chunk_size, read_timeout=self.timeout)
        self._transfers[url] = transfer
        return transfer.start()

    def _settle_transfer(self, transfer):
        if self._transfers.get(transfer.url) is transfer:
            del self._transfers[transfer.url]
        if not transfer.complete:
            return
        if is_playlist(transfer.url, transfer.content_type):
            ttl = self.playlist_ttl
        else:
            ttl = self.segment_ttl
        self.put(transfer.url, transfer.payload, transfer.headers, ttl, final_url=transfer.final_url)
