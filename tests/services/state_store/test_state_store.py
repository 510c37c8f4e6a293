from __future__ import annotations

import pytest

from sitemaps.errors import UnprocessedBatchError
from sitemaps.state_store import FileRecord, ItemRecord, PersistScope, ShardState, SitemapStateStore


def _item(item_id: str, file_name: str = "p1.xml") -> ItemRecord:
    return ItemRecord(type="widget", item_id=item_id, file_name=file_name, payload={"url": f"/w/{item_id}"})


def test_shard_and_file_records_round_trip(state_store: SitemapStateStore) -> None:
    shard = ShardState(type="widget", shard_id=1)
    shard.change_current_file("widget-001-00001.xml")
    state_store.save_shard_state(shard)
    state_store.save_file_record(FileRecord(type="widget", file_name="widget-001-00001.xml"))

    loaded = state_store.load_shard_state("widget", 1)
    assert loaded is not None
    assert loaded.current_file_name == "widget-001-00001.xml"
    assert [state.shard_id for state in state_store.load_shard_states("widget")] == [1]
    assert [record.file_name for record in state_store.load_file_records("widget")] == ["widget-001-00001.xml"]
    assert state_store.load_shard_state("widget", 2) is None


def test_save_items_writes_both_copies(state_store: SitemapStateStore, dynamodb) -> None:
    state_store.save_items([_item("A"), _item("b")], PersistScope.BOTH)
    keys = dynamodb.keys("sitemaps-test")
    assert ("itemID#a#type#widget", "item") in keys
    assert ("fileName#p1.xml#type#widget", "itemID#a") in keys
    assert len(keys) == 4

    loaded = state_store.load_items("widget", ["a", "B", "missing"])
    assert sorted(loaded) == ["a", "b"]
    assert loaded["a"].item_id == "A"
    assert sorted(record.item_id for record in state_store.load_page_items("widget", "p1.xml")) == ["A", "b"]


def test_save_items_by_page_leaves_canonical_copy(state_store: SitemapStateStore) -> None:
    state_store.save_items([_item("a", "owner.xml")], PersistScope.BOTH)
    canonical = state_store.load_item("widget", "a")
    assert canonical is not None
    state_store.save_items([canonical.page_scoped_copy("other.xml")], PersistScope.BY_PAGE)

    assert state_store.load_item("widget", "a").file_name == "owner.xml"
    assert [record.file_name for record in state_store.load_page_items("widget", "other.xml")] == ["other.xml"]


def test_save_items_chunks_to_batch_limit(state_store: SitemapStateStore, dynamodb) -> None:
    state_store.save_items([_item(str(index)) for index in range(30)], PersistScope.BY_ID)
    assert dynamodb.batch_write_calls == [25, 5]


def test_load_items_chunks_to_batch_limit(state_store: SitemapStateStore, dynamodb) -> None:
    state_store.load_items("widget", [str(index) for index in range(150)])
    assert dynamodb.batch_get_calls == [100, 50]


def test_query_follows_pagination(state_store: SitemapStateStore, dynamodb) -> None:
    dynamodb.query_page_size = 2
    state_store.save_items([_item(str(index)) for index in range(5)], PersistScope.BY_PAGE)
    assert len(state_store.load_page_items("widget", "p1.xml")) == 5


def test_unprocessed_items_are_resubmitted(state_store: SitemapStateStore, dynamodb) -> None:
    dynamodb.unprocessed_plan = [3, 1]
    state_store.save_items([_item(str(index)) for index in range(4)], PersistScope.BY_ID)
    assert dynamodb.batch_write_calls == [4, 3, 1]
    assert len(state_store.load_items("widget", [str(index) for index in range(4)])) == 4


def test_unprocessed_items_surface_after_retry_ceiling(dynamodb) -> None:
    store = SitemapStateStore(table_name="sitemaps-test", client=dynamodb, retries=2, base_delay_ms=1, sleep=lambda _: None)
    dynamodb.unprocessed_plan = [1, 1, 1]
    with pytest.raises(UnprocessedBatchError) as excinfo:
        store.save_items([_item("a")], PersistScope.BY_ID)
    assert excinfo.value.remaining == 1


def test_unprocessed_keys_surface_after_retry_ceiling(dynamodb) -> None:
    store = SitemapStateStore(table_name="sitemaps-test", client=dynamodb, retries=1, base_delay_ms=1, sleep=lambda _: None)
    dynamodb.unprocessed_plan = [2, 2]
    with pytest.raises(UnprocessedBatchError) as excinfo:
        store.load_items("widget", ["a", "b", "c"])
    assert excinfo.value.operation == "batch_get"
    assert excinfo.value.remaining == 2


def test_save_item_puts_each_scoped_copy(state_store: SitemapStateStore, dynamodb) -> None:
    state_store.save_item(_item("c"), PersistScope.BY_ID)
    assert dynamodb.keys("sitemaps-test") == [("itemID#c#type#widget", "item")]
    assert state_store.load_page_items("widget", "p1.xml") == []

    scoped = _item("c", "p2.xml").page_scoped_copy("p2.xml")
    state_store.save_item(scoped, PersistScope.BY_PAGE)
    assert state_store.load_item("widget", "c").file_name == "p1.xml"
    assert [record.item_id for record in state_store.load_page_items("widget", "p2.xml")] == ["c"]
