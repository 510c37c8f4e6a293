"""Sitemap index writer: keeps one index document per type."""

from .service import IndexWriterService, index_key

__all__ = ["IndexWriterService", "index_key"]
