"""Sitemap writer: incremental page appends from the item stream."""

from .engine import SitemapWriterService, TypeResult, TypeWriter

__all__ = ["SitemapWriterService", "TypeResult", "TypeWriter"]
