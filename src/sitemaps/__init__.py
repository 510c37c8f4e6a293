"""Incremental sitemap writer, freshener and index writer."""
