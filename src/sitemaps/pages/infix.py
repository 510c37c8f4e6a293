"""Trimmed copies of pages and indexes under an infix path.

An infix copy carries only ``url`` and ``lastmod``. Page urls get the infix
spliced in front of their path; index entries point at the infix copy of each
page (``<dir>/<infix>/<infix>-<file>``). Infix copies are rebuilt from the
primary document every time and are never read back or recorded in state.
"""

from __future__ import annotations

from typing import Any, Mapping
from urllib.parse import urlsplit, urlunsplit

from .sitemap import SitemapIndex, SitemapPage, SitemapWriteWouldOverflow


def infix_page_url(url: str, infix: str) -> str:
    """``https://host/sitemaps/a.html`` -> ``https://host/<infix>/sitemaps/a.html``."""
    infix = infix.strip("/")
    parts = urlsplit(url)
    path = "/".join(part for part in (infix, parts.path.lstrip("/")) if part)
    if parts.scheme in ("http", "https"):
        return urlunsplit((parts.scheme, parts.netloc, f"/{path}", parts.query, parts.fragment))
    return f"/{path}"


def infix_index_url(url: str, infix: str) -> str:
    """``https://host/sitemaps/w/p.xml`` -> ``https://host/sitemaps/w/<infix>/<infix>-p.xml``."""
    infix = infix.strip("/")
    parts = urlsplit(url)
    directory, _, file_name = parts.path.rpartition("/")
    path = f"{directory}/{infix}/{infix}-{file_name}"
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


def _trimmed(item: Mapping[str, Any], url: str) -> dict[str, Any]:
    trimmed: dict[str, Any] = {"url": url}
    if item.get("lastmod"):
        trimmed["lastmod"] = item["lastmod"]
    return trimmed


def infix_page(page: SitemapPage, infix: str) -> SitemapPage:
    """Entries that would overflow the copy are left out."""
    copy = SitemapPage(
        f"{infix.strip('/')}-{page.filename_root}",
        compress=page.compress,
        limit_count=page.limit_count,
        limit_bytes=page.limit_bytes,
    )
    for item in page.items:
        try:
            copy.write(_trimmed(item, infix_page_url(str(item["url"]), infix)))
        except SitemapWriteWouldOverflow:
            continue
    copy.end()
    return copy


def infix_index(index: SitemapIndex, infix: str) -> SitemapIndex:
    copy = SitemapIndex(
        f"{index.filename_root}-{infix.strip('/')}",
        compress=index.compress,
        limit_count=index.limit_count,
        limit_bytes=index.limit_bytes,
    )
    for item in index.items:
        copy.write(_trimmed(item, infix_index_url(str(item["url"]), infix)), disregard_byte_limit=True, disregard_count_limit=True)
    copy.end()
    return copy
