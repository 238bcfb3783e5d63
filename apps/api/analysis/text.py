"""
HTML-to-text helpers shared by the linguistic analyzers.
"""

import re
from typing import Optional

from bs4 import BeautifulSoup, Comment, Tag

MAIN_CONTENT_SELECTORS = (
    "main",
    "article",
    "#content",
    ".content",
    "#main",
    ".main",
    ".post-content",
    ".entry-content",
    ".article-content",
)

NON_CONTENT_SELECTORS = (
    "nav, header, footer, aside, script, style, noscript, "
    ".comments, #comments, .sidebar, .widget, .ad, .advertisement"
)

_WHITESPACE_RE = re.compile(r"\s+")


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def element_text(element: Optional[Tag]) -> str:
    """Visible text of an element with whitespace collapsed."""
    if element is None:
        return ""
    return _WHITESPACE_RE.sub(" ", element.get_text(" ")).strip()


def count_words(text: str) -> int:
    return len((text or "").split())


def extract_main_content(html: str) -> str:
    """Return the readable body text of a page, skipping navigation and chrome."""
    soup = parse_html(html)
    container: Optional[Tag] = None
    for selector in MAIN_CONTENT_SELECTORS:
        container = soup.select_one(selector)
        if container is not None:
            break
    if container is None:
        container = soup.body or soup

    for node in container.select(NON_CONTENT_SELECTORS):
        node.decompose()
    for comment in container.find_all(string=lambda value: isinstance(value, Comment)):
        comment.extract()
    return element_text(container)


def truncate(text: str, limit: int = 120) -> str:
    if len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)].rstrip() + "..."
