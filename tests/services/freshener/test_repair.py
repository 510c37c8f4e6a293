from __future__ import annotations

from dataclasses import replace

from sitemaps.freshener import FreshenPlan, compile_item_id_pattern, prepare_repair
from sitemaps.metrics import CountMetrics
from sitemaps.pages import SitemapPage
from sitemaps.state_store import ItemRecord, ItemStatus, PersistScope

PAGE = "widget-000-00001.xml"
OTHER = "widget-000-00002.xml"
PATTERN = compile_item_id_pattern(r"/w/(?<ItemID>\w+)$")


def _url(item_id: str) -> str:
    return f"https://www.example.com/w/{item_id}"


def _record(item_id: str, file_name: str) -> ItemRecord:
    return ItemRecord(type="widget", item_id=item_id, file_name=file_name, payload={"url": _url(item_id)})


def _store_page(page_store, ids: list[str]) -> None:
    page = SitemapPage(PAGE[: -len(".xml")])
    for item_id in ids:
        page.write({"url": _url(item_id)})
    page_store.write_bytes(f"sitemaps/widget/{PAGE}", page.to_bytes())


def _seed(state_store) -> None:
    # "b" moved to another page; "d" is on the stored page but was never recorded
    state_store.save_items([_record("a", PAGE), _record("c", PAGE)], PersistScope.BOTH)
    state_store.save_items([_record("b", OTHER)], PersistScope.BOTH)


def _plan(state_store) -> FreshenPlan:
    return FreshenPlan(
        page_records={record.item_id.lower(): record for record in state_store.load_page_items("widget", PAGE)}
    )


def test_conflicting_item_is_released_without_touching_its_owner(sitemaps_config, state_store, page_store) -> None:
    _seed(state_store)
    _store_page(page_store, ["a", "b", "c", "d"])
    plan = _plan(state_store)

    stats = prepare_repair(
        plan,
        config=sitemaps_config,
        type_name="widget",
        file_name=PAGE,
        pattern=PATTERN,
        page_store=page_store,
        state_store=state_store,
        metrics=CountMetrics(scope="test"),
    )

    assert sorted(plan.page_records) == ["a", "c"]
    released = plan.page_scoped_writes["b"]
    assert released.page_scoped_only
    assert released.file_name == PAGE
    assert released.item_status == ItemStatus.REMOVED
    assert released.payload == {"url": _url("b")}
    assert [record.item_id for record in plan.db_writes] == ["d"]
    assert [record.item_id for record in plan.sitemap_writes] == ["d"]
    assert plan.db_writes[0].file_name == PAGE
    assert stats.s3_sitemap_count_before == 4
    assert (stats.s3_item_same_file, stats.s3_item_diff_file, stats.s3_item_not_in_db) == (2, 1, 1)
    assert state_store.load_item("widget", "b").file_name == OTHER


def test_duplicate_urls_on_the_stored_page_are_counted_once(sitemaps_config, state_store, page_store) -> None:
    _seed(state_store)
    _store_page(page_store, ["a", "a", "c"])
    plan = _plan(state_store)
    stats = prepare_repair(
        plan,
        config=sitemaps_config,
        type_name="widget",
        file_name=PAGE,
        pattern=PATTERN,
        page_store=page_store,
        state_store=state_store,
        metrics=CountMetrics(scope="test"),
    )
    assert (stats.s3_sitemap_count_before, stats.s3_sitemap_count_deduped) == (3, 2)
    assert stats.s3_item_same_file == 2


def test_page_record_cross_check_is_gated_by_config(sitemaps_config, state_store, page_store) -> None:
    _seed(state_store)
    # "e" still has a by-page copy here but its canonical copy moved on
    state_store.save_items([_record("e", PAGE)], PersistScope.BY_PAGE)
    state_store.save_items([_record("e", OTHER)], PersistScope.BOTH)
    _store_page(page_store, ["a", "c"])

    plan = _plan(state_store)
    prepare_repair(
        plan,
        config=sitemaps_config,
        type_name="widget",
        file_name=PAGE,
        pattern=PATTERN,
        page_store=page_store,
        state_store=state_store,
        metrics=CountMetrics(scope="test"),
    )
    assert "e" in plan.page_records
    assert plan.page_scoped_writes == {}

    plan = _plan(state_store)
    stats = prepare_repair(
        plan,
        config=replace(sitemaps_config, repair_db_file_item_list=True),
        type_name="widget",
        file_name=PAGE,
        pattern=PATTERN,
        page_store=page_store,
        state_store=state_store,
        metrics=CountMetrics(scope="test"),
    )
    assert sorted(plan.page_records) == ["a", "c"]
    assert plan.page_scoped_writes["e"].item_status == ItemStatus.REMOVED
    assert (stats.db_item_same_file, stats.db_item_diff_file) == (2, 1)
    assert stats.consolidated_item_ids == 3


def test_missing_stored_page_repairs_nothing(sitemaps_config, state_store, page_store) -> None:
    _seed(state_store)
    plan = _plan(state_store)
    stats = prepare_repair(
        plan,
        config=sitemaps_config,
        type_name="widget",
        file_name=PAGE,
        pattern=PATTERN,
        page_store=page_store,
        state_store=state_store,
        metrics=CountMetrics(scope="test"),
    )
    assert stats.s3_sitemap_count_before == 0
    assert sorted(plan.page_records) == ["a", "c"]
    assert plan.db_writes == []
