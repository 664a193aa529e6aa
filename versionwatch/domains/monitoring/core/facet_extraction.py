"""Extract title, description, body text and links from raw HTML."""

from __future__ import annotations

import re

from bs4 import BeautifulSoup

from versionwatch.domains.monitoring.core.errors import ContentParseError
from versionwatch.models.snapshot import Facets, Link

MAX_CONTENT_LENGTH = 10_000_000

_NON_CONTENT_TAGS = ("script", "style", "noscript", "template")
_WHITESPACE = re.compile(r"\s+")


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def extract_facets(content: str) -> Facets:
    """Parse raw HTML into a Facets record.

    Links keep document order and duplicates; an anchor without href gets an
    empty href, which the scorer ignores.
    """
    if not content or not content.strip():
        msg = "content is empty"
        raise ContentParseError(msg)
    if len(content) > MAX_CONTENT_LENGTH:
        msg = f"content exceeds {MAX_CONTENT_LENGTH:,} characters"
        raise ContentParseError(msg)

    soup = BeautifulSoup(content, "html.parser")

    title_tag = soup.find("title")
    title = _collapse(title_tag.get_text()) if title_tag else ""

    description = None
    meta = soup.find("meta", attrs={"name": re.compile(r"^description$", re.IGNORECASE)})
    if meta is not None:
        value = meta.get("content")
        if isinstance(value, list):
            value = " ".join(value)
        description = _collapse(value) if value else None

    links: list[Link] = []
    for anchor in soup.find_all("a"):
        href = anchor.get("href") or ""
        if isinstance(href, list):
            href = href[0] if href else ""
        links.append(Link(href=href.strip(), text=_collapse(anchor.get_text(" "))))

    for tag in soup.find_all(_NON_CONTENT_TAGS):
        tag.decompose()
    body = soup.body or soup
    text = _collapse(body.get_text(" "))

    return Facets(title=title, description=description, text=text, links=links)
