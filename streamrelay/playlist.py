from urllib.parse import quote, urljoin, urlparse

PLAYLIST_MIMETYPE = "text/vnd.apple.mpegurl"
PLAYLIST_EXTENSION = ".m3u8"


def looks_like_playlist(url):
    try:
        path = urlparse(url).path
    except ValueError:
        return False
    return path.lower().endswith(PLAYLIST_EXTENSION)


def is_playlist(url, content_type=""):
    return looks_like_playlist(url) or "mpegurl" in (content_type or "").lower()


def segment_path(event_id, absolute_url):
    return f"/live/{event_id}/seg?url={quote(absolute_url, safe='')}"


def _resolve(line, base_url):
    try:
        absolute = urljoin(base_url, line)
        parts = urlparse(absolute)
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    return absolute


def rewrite(text, base_url, event_id):
    """Point every uri line of an HLS playlist back at the gateway.

    Blank lines and ``#`` lines (tags and comments) are left alone, as is any
    line that does not resolve to an absolute http(s) url.
    """
    lines = []
    for line in text.split("\n"):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            lines.append(line)
            continue
        absolute = _resolve(stripped, base_url)
        if absolute is None:
            lines.append(line)
            continue
        lines.append(segment_path(event_id, absolute))
    return "\n".join(lines)
