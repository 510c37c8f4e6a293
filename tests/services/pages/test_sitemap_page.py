from __future__ import annotations

import gzip

import pytest

from sitemaps.pages import SitemapIndex, SitemapPage, SitemapPageMalformed, SitemapWriteWouldOverflow, scrub_invisible_chars


def test_page_renders_urlset_entries() -> None:
    page = SitemapPage("widget-00001")
    page.write({"url": "https://www.example.com/w/1", "lastmod": "2026-10-01", "changefreq": "daily"})
    page.write({"url": "https://www.example.com/w/2?a=1&b=2"})
    page.end()

    body = page.to_bytes().decode("utf-8")
    assert page.filename == "widget-00001.xml"
    assert body.startswith('<?xml version="1.0" encoding="UTF-8"?>')
    assert '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">' in body
    assert "<loc>https://www.example.com/w/1</loc><lastmod>2026-10-01</lastmod><changefreq>daily</changefreq>" in body
    assert "a=1&amp;b=2" in body
    assert page.size_bytes == len(page.to_bytes())


def test_count_limit_overflow_leaves_page_unchanged() -> None:
    page = SitemapPage("p", limit_count=2)
    page.write({"url": "/1"})
    page.write({"url": "/2"})
    assert page.full
    with pytest.raises(SitemapWriteWouldOverflow) as excinfo:
        page.write({"url": "/3"})
    assert excinfo.value.reason == "count"
    assert page.count == 2
    page.write({"url": "/3"}, disregard_count_limit=True)
    assert page.count == 3


def test_byte_limit_overflow() -> None:
    page = SitemapPage("p", limit_bytes=200)
    page.write({"url": "/short"})
    with pytest.raises(SitemapWriteWouldOverflow) as excinfo:
        page.write({"url": "/" + "x" * 200})
    assert excinfo.value.reason == "bytes"
    assert page.count == 1


def test_write_requires_url() -> None:
    with pytest.raises(ValueError):
        SitemapPage("p").write({"lastmod": "2026-10-01"})


def test_compressed_page_parses_back() -> None:
    page = SitemapPage("p", compress=True)
    page.write({"url": "/1", "lastmod": "2026-10-01"})
    data = page.to_bytes()
    assert page.filename == "p.xml.gz"
    assert data[:2] == b"\x1f\x8b"

    loaded = SitemapPage.from_bytes(data, "p", compress=True)
    assert loaded.items == [{"url": "/1", "lastmod": "2026-10-01"}]
    assert loaded.size_bytes == page.size_bytes


def test_parse_failures_raise_malformed() -> None:
    with pytest.raises(SitemapPageMalformed):
        SitemapPage.from_bytes(b"<urlset><url><loc>/1</loc>", "p")
    with pytest.raises(SitemapPageMalformed):
        SitemapPage.from_bytes(gzip.compress(b"<sitemapindex/>"), "p")
    with pytest.raises(SitemapPageMalformed):
        SitemapPage.from_bytes(b"<urlset><url><lastmod>x</lastmod></url></urlset>", "p")


def test_index_document_uses_sitemap_entries() -> None:
    index = SitemapIndex("widget-index")
    index.write({"url": "https://www.example.com/sitemaps/widget/p1.xml", "lastmod": "2026-10-19"})
    body = index.to_bytes().decode("utf-8")
    assert "<sitemapindex" in body
    assert "<sitemap><loc>https://www.example.com/sitemaps/widget/p1.xml</loc><lastmod>2026-10-19</lastmod></sitemap>" in body
    assert SitemapIndex.from_bytes(index.to_bytes(), "widget-index").items[0]["lastmod"] == "2026-10-19"


def test_scrub_invisible_chars_in_nested_payload() -> None:
    cleaned, count = scrub_invisible_chars({"url": "/a\u200bb", "image": [{"title": "x\u0007y"}], "priority": 0.5})
    assert cleaned == {"url": "/ab", "image": [{"title": "xy"}], "priority": 0.5}
    assert count == 2
