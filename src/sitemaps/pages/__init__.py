"""Sitemap page codec and blob storage."""

from .infix import infix_index, infix_page
from .sitemap import (
    SitemapIndex,
    SitemapPage,
    SitemapPageMalformed,
    SitemapWriteWouldOverflow,
    scrub_invisible_chars,
)
from .store import LocalPageStore, PageStore, S3PageStore, build_page_store

__all__ = [
    "LocalPageStore",
    "PageStore",
    "S3PageStore",
    "SitemapIndex",
    "SitemapPage",
    "SitemapPageMalformed",
    "SitemapWriteWouldOverflow",
    "build_page_store",
    "infix_index",
    "infix_page",
    "scrub_invisible_chars",
]
