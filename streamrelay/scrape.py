import re

from bs4 import BeautifulSoup

PATTERNS = {
    "playlist_url": re.compile(r'https?://[^\s\'"<>]+\.m3u8'),
    "iframe": re.compile(r'iframe\s+[^>]*?src=[\'"]([^\'"]+)[\'"]', re.IGNORECASE),
}


def extract_attribute(html, selector, attribute):
    """Value of ``attribute`` on the first element matching ``selector``."""
    if not html:
        return None
    node = BeautifulSoup(html, "html.parser").select_one(selector)
    if node is None:
        return None
    value = node.get(attribute)
    if isinstance(value, list):
        value = " ".join(value)
    value = (value or "").strip()
    return value or None


def extract_pattern(text, pattern):
    """First match of ``pattern``; its first group when it has one."""
    if not text:
        return None
    if isinstance(pattern, str):
        pattern = PATTERNS.get(pattern) or re.compile(pattern)
    match = pattern.search(text)
    if not match:
        return None
    value = match.group(1) if pattern.groups else match.group(0)
    return value.strip() or None
