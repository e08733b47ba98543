import logging
from collections import namedtuple
from http.cookiejar import DefaultCookiePolicy
from http.cookies import CookieError, SimpleCookie
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from requests.cookies import MockRequest, RequestsCookieJar, create_cookie, get_cookie_header
from urllib3.util.retry import Retry

from streamrelay.errors import StreamTransportError, UpstreamFetchError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

UpstreamPage = namedtuple("UpstreamPage", "text url headers status_code")


# ======================================================
# COOKIE STORE
# ======================================================

def _domain_matches(host, domain):
    domain = domain.lstrip(".").lower()
    host = (host or "").lower()
    return host == domain or host.endswith("." + domain)


class CookieStore(object):
    """Cookie jar for one resolution attempt or one downstream fetch.

    Cookies enter as Set-Cookie style strings and leave as the same kind of
    strings (``snapshot``), so nothing mutable is shared between requests.
    """

    def __init__(self):
        self.policy = DefaultCookiePolicy()
        self.jar = RequestsCookieJar(policy=self.policy)

    def __len__(self):
        return len(self.jar)

    def add(self, raw, url, rescope=False):
        """Store every cookie in ``raw`` as if ``url`` had set it.

        A ``Domain`` attribute is honoured only if it covers the url's host;
        with ``rescope`` the cookie is pinned to the url's host regardless.
        """
        host = urlparse(url).hostname or ""
        parsed = SimpleCookie()
        try:
            parsed.load(raw)
        except CookieError:
            logger.debug("Skipping unparseable cookie for %s", host)
            return
        for name, morsel in parsed.items():
            domain = morsel["domain"]
            if rescope or not domain or not _domain_matches(host, domain):
                domain = host
            self.jar.set_cookie(create_cookie(
                name,
                morsel.value,
                domain=domain,
                path=morsel["path"] or "/",
                secure=bool(morsel["secure"]),
                rest={"HttpOnly": None} if morsel["httponly"] else {},
            ))

    @classmethod
    def hydrate(cls, cookies, url):
        store = cls()
        for raw in cookies or ():
            store.add(raw, url, rescope=True)
        return store

    def matching(self, url):
        """Cookies the jar would send to ``url``, in jar order."""
        request = MockRequest(requests.Request("GET", url).prepare())
        for cookie in self.jar:
            if not self.policy.domain_return_ok(cookie.domain, request):
                continue
            if not self.policy.path_return_ok(cookie.path, request):
                continue
            if self.policy.return_ok(cookie, request):
                yield cookie

    def snapshot(self, url):
        """Serialized cookies visible to ``url``, in jar order."""
        out = []
        for cookie in self.matching(url):
            text = f"{cookie.name}={cookie.value}; Domain={cookie.domain.lstrip('.')}; Path={cookie.path or '/'}"
            if cookie.secure:
                text += "; Secure"
            out.append(text)
        return tuple(out)

    def header_for(self, url):
        prepared = requests.Request("GET", url).prepare()
        return get_cookie_header(self.jar, prepared) or ""


# ======================================================
# STREAM HANDLE
# ======================================================

class UpstreamStream(object):
    """Open streaming response; ``cancel`` releases the upstream connection."""

    def __init__(self, response, session):
        self._response = response
        self._session = session
        self.url = response.url
        self.status_code = response.status_code
        self.headers = dict(response.headers)
        self.cancelled = False
        self.closed = False

    @property
    def content_type(self):
        return self.headers.get("Content-Type", "")

    def iter_chunks(self, chunk_size):
        try:
            for chunk in self._response.iter_content(chunk_size=chunk_size):
                if self.cancelled:
                    break
                if chunk:
                    yield chunk
        except requests.RequestException as e:
            if self.cancelled:
                return
            raise StreamTransportError(f"upstream read failed: {e}")

    def cancel(self):
        self.cancelled = True
        self.close()

    def close(self):
        if self.closed:
            return
        self.closed = True
        try:
            self._response.close()
        finally:
            self._session.close()


# ======================================================
# SESSION + RETRY
# ======================================================

def create_session(pool_size=200):
    s = requests.Session()
    retry_strategy = Retry(
        total=2,
        backoff_factor=0.2,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["GET"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(
        pool_connections=pool_size,
        pool_maxsize=pool_size,
        max_retries=retry_strategy,
        pool_block=False
    )
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    return s


class UpstreamClient(object):
    """Browser-looking GETs against the provider, one throwaway session each."""

    def __init__(self, user_agent, origin, connect_timeout=5, read_timeout=15):
        self.user_agent = user_agent
        self.origin = origin.rstrip("/")
        self.timeout = (connect_timeout, read_timeout)

    def headers(self):
        return {
            "User-Agent": self.user_agent,
            "Referer": self.origin + "/",
            "Origin": self.origin,
            "Accept": "*/*",
        }

    def _session(self, cookies):
        s = create_session()
        if cookies is not None:
            s.cookies = cookies.jar
        return s

    def _get(self, session, url, stream):
        try:
            return session.get(
                url,
                headers=self.headers(),
                timeout=self.timeout,
                allow_redirects=True,
                stream=stream,
            )
        except requests.Timeout:
            session.close()
            raise UpstreamTimeoutError(url, self.timeout[1])
        except requests.RequestException as e:
            session.close()
            raise UpstreamFetchError(url, reason=str(e))

    def get_text(self, url, cookies=None):
        """Buffered GET; non-2xx raises ``UpstreamFetchError``."""
        s = self._session(cookies)
        resp = self._get(s, url, stream=False)
        try:
            if not 200 <= resp.status_code < 300:
                logger.warning("Upstream answered %s for %s", resp.status_code, urlparse(url).netloc)
                raise UpstreamFetchError(url, upstream_status=resp.status_code)
            return UpstreamPage(resp.text, resp.url, dict(resp.headers), resp.status_code)
        finally:
            s.close()

    def open_stream(self, url, cookies=None):
        """Streaming GET; the caller owns the returned handle."""
        s = self._session(cookies)
        resp = self._get(s, url, stream=True)
        if not 200 <= resp.status_code < 300:
            logger.warning("Upstream answered %s for %s", resp.status_code, urlparse(url).netloc)
            resp.close()
            s.close()
            raise UpstreamFetchError(url, upstream_status=resp.status_code)
        return UpstreamStream(resp, s)
