import logging
import time
from dataclasses import dataclass, field
from urllib.parse import urljoin, urlparse

from streamrelay.errors import StreamNotFoundError, UpstreamFetchError
from streamrelay.scrape import extract_attribute, extract_pattern
from streamrelay.upstream import CookieStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionMeta:
    event_id: str
    stream_url: str
    cookies: tuple = ()
    created_at: float = field(default_factory=time.time)


def is_http_url(url):
    try:
        parts = urlparse(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


class SessionResolver(object):
    """Landing page -> (iframe) -> stream url plus the landing page cookies."""

    def __init__(self, client, origin, landing_template, input_selector="input#stream-link"):
        self.client = client
        self.origin = origin.rstrip("/")
        self.landing_template = landing_template
        self.input_selector = input_selector

    def landing_url(self, event_id):
        return self.landing_template.format(origin=self.origin, event_id=event_id)

    def _scan_frame(self, page, cookies):
        frame_src = (extract_attribute(page.text, "iframe[src]", "src")
                     or extract_pattern(page.text, "iframe"))
        if not frame_src:
            return None, None
        frame_url = urljoin(page.url, frame_src)
        if not is_http_url(frame_url):
            return None, None
        try:
            frame = self.client.get_text(frame_url, cookies)
        except UpstreamFetchError as e:
            logger.warning("Embedded frame fetch failed (%s), falling back to landing page", e)
            return None, None
        candidate = (extract_attribute(frame.text, self.input_selector, "value")
                     or extract_pattern(frame.text, "playlist_url"))
        return candidate, frame.url

    def resolve(self, event_id):
        start_url = self.landing_url(event_id)
        cookies = CookieStore()
        logger.info("Resolving event %s", event_id)

        page = self.client.get_text(start_url, cookies)
        base = page.url or start_url

        candidate = extract_attribute(page.text, self.input_selector, "value")
        if not candidate:
            candidate, frame_url = self._scan_frame(page, cookies)
            if candidate:
                base = frame_url or base
        if not candidate:
            candidate = extract_pattern(page.text, "playlist_url")

        if not candidate:
            raise StreamNotFoundError(event_id)

        stream_url = urljoin(base, candidate)
        if not is_http_url(stream_url):
            raise StreamNotFoundError(event_id)

        meta = SessionMeta(
            event_id=event_id,
            stream_url=stream_url,
            cookies=cookies.snapshot(start_url),
        )
        logger.info("Resolved event %s (%d cookies)", event_id, len(meta.cookies))
        return meta
