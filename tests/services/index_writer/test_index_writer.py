from __future__ import annotations

from dataclasses import replace

import pytest

from sitemaps.index_writer import IndexWriterService, index_key
from sitemaps.pages import SitemapIndex
from sitemaps.pages.sitemap import SitemapPageMalformed


def _index_msg(file_name: str, *, action: str = "add", lastmod: str = "2026-10-19T12:00:00+00:00", type_name: str = "widget"):
    return {
        "type": type_name,
        "action": action,
        "indexItem": {"url": f"https://www.example.com/sitemaps/{type_name}/{file_name}", "lastmod": lastmod},
    }


def _entries(page_store, key: str) -> list[dict[str, str]]:
    data = page_store.read_bytes_if_exists(key)
    assert data is not None
    return SitemapIndex.from_bytes(data, "index").items


def test_index_key_follows_compression(sitemaps_config) -> None:
    assert index_key(sitemaps_config, "widget") == "sitemaps/widget-index.xml"
    assert index_key(replace(sitemaps_config, compress_sitemap_files=True), "widget") == "sitemaps/widget-index.xml.gz"


def test_new_index_is_written_sorted_by_url(sitemaps_config, page_store, make_event) -> None:
    service = IndexWriterService(sitemaps_config, page_store=page_store)
    summary = service.handle(make_event([_index_msg("widget-001-00001.xml"), _index_msg("widget-000-00001.xml")]))

    assert summary == {"types": {"widget": {"key": "sitemaps/widget-index.xml", "entries": 2}}}
    assert [entry["url"] for entry in _entries(page_store, "sitemaps/widget-index.xml")] == [
        "https://www.example.com/sitemaps/widget/widget-000-00001.xml",
        "https://www.example.com/sitemaps/widget/widget-001-00001.xml",
    ]


def test_existing_index_is_merged_and_updated(sitemaps_config, page_store, make_event) -> None:
    service = IndexWriterService(sitemaps_config, page_store=page_store)
    service.handle(make_event([_index_msg("widget-000-00001.xml", lastmod="2026-10-01T00:00:00+00:00")]))

    service.handle(
        make_event(
            [
                _index_msg("widget-000-00001.xml", action="update", lastmod="2026-10-19T12:00:00+00:00"),
                _index_msg("widget-000-00002.xml"),
            ]
        )
    )

    entries = _entries(page_store, "sitemaps/widget-index.xml")
    assert entries == [
        {"url": "https://www.example.com/sitemaps/widget/widget-000-00001.xml", "lastmod": "2026-10-19T12:00:00+00:00"},
        {"url": "https://www.example.com/sitemaps/widget/widget-000-00002.xml", "lastmod": "2026-10-19T12:00:00+00:00"},
    ]


def test_unknown_actions_and_bad_messages_are_skipped(sitemaps_config, page_store, make_event) -> None:
    service = IndexWriterService(sitemaps_config, page_store=page_store)
    summary = service.handle(
        make_event(
            [
                _index_msg("widget-000-00001.xml", action="delete"),
                {"type": "widget", "action": "add", "indexItem": {}},
                {"action": "add", "indexItem": {"url": "https://www.example.com/x.xml"}},
                b"{broken",
                _index_msg("widget-000-00002.xml"),
            ]
        )
    )

    assert summary["types"]["widget"]["entries"] == 1
    assert [entry["url"] for entry in _entries(page_store, "sitemaps/widget-index.xml")] == [
        "https://www.example.com/sitemaps/widget/widget-000-00002.xml"
    ]


def test_each_type_gets_its_own_index(sitemaps_config, page_store, make_event) -> None:
    service = IndexWriterService(sitemaps_config, page_store=page_store)
    summary = service.handle(make_event([_index_msg("widget-000-00001.xml"), _index_msg("gadget-000-00001.xml", type_name="gadget")]))

    assert sorted(summary["types"]) == ["gadget", "widget"]
    assert len(_entries(page_store, "sitemaps/gadget-index.xml")) == 1


def test_failing_type_does_not_block_the_others(sitemaps_config, page_store, make_event) -> None:
    page_store.write_bytes("sitemaps/gadget-index.xml", b"<sitemapindex><sitemap>")
    service = IndexWriterService(sitemaps_config, page_store=page_store)

    with pytest.raises(SitemapPageMalformed) as excinfo:
        service.handle(make_event([_index_msg("gadget-000-00001.xml", type_name="gadget"), _index_msg("widget-000-00001.xml")]))

    assert excinfo.value.code == "SITEMAP_PAGE_MALFORMED"
    assert len(_entries(page_store, "sitemaps/widget-index.xml")) == 1


def test_infix_index_points_at_infix_pages(sitemaps_config, page_store, make_event) -> None:
    config = replace(sitemaps_config, infix_dirs=("de",))
    service = IndexWriterService(config, page_store=page_store)
    service.handle(make_event([_index_msg("widget-000-00001.xml", lastmod="2026-10-19")]))

    assert index_key(config, "widget", "de") == "sitemaps/widget-index-de.xml"
    assert _entries(page_store, "sitemaps/widget-index-de.xml") == [
        {"url": "https://www.example.com/sitemaps/widget/de/de-widget-000-00001.xml", "lastmod": "2026-10-19"}
    ]
    assert _entries(page_store, "sitemaps/widget-index.xml") == [
        {"url": "https://www.example.com/sitemaps/widget/widget-000-00001.xml", "lastmod": "2026-10-19"}
    ]
