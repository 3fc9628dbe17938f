"""Small HTML helpers used when turning a response into a snapshot."""
import html
import re
from typing import List, Optional
from urllib.parse import urljoin

TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
LINK_TAG_RE = re.compile(r"<link\s[^>]*>", re.IGNORECASE)
REL_ICON_RE = re.compile(r"""rel\s*=\s*["']?[^"'>]*\bicon\b""", re.IGNORECASE)
HREF_RE = re.compile(r"""href\s*=\s*["']?([^"'\s>]+)""", re.IGNORECASE)
META_REFRESH_RE = re.compile(
    r"""<meta[^>]*http-equiv\s*=\s*["']?refresh["']?[^>]*content\s*=\s*["']?\s*\d*\s*;\s*url\s*=\s*['"]?([^"'>\s]+)""",
    re.IGNORECASE,
)
WHITESPACE_RE = re.compile(r"\s+")


def get_title(content: str) -> str:
    """Text of the first <title>, unescaped and whitespace-collapsed."""
    match = TITLE_RE.search(content)
    if not match:
        return ""
    return WHITESPACE_RE.sub(" ", html.unescape(match.group(1))).strip()


def extract_icon_links(content: str, base_url: str) -> List[str]:
    """Absolute URLs of every <link rel="...icon..."> in the page, in order."""
    icons = []
    for tag in LINK_TAG_RE.findall(content):
        if not REL_ICON_RE.search(tag):
            continue
        href = HREF_RE.search(tag)
        if href:
            url = urljoin(base_url, html.unescape(href.group(1)))
            if url not in icons:
                icons.append(url)
    return icons


def extract_meta_refresh(content: str, base_url: str) -> Optional[str]:
    """Target of a <meta http-equiv="refresh"> redirect, if the page has one."""
    match = META_REFRESH_RE.search(content)
    if not match:
        return None
    return urljoin(base_url, html.unescape(match.group(1)))
