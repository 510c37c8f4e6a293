"""Ownership repair of one page against the canonical item records.

The stored page and the page's by-page records are cross-checked against the
by-id records. An id whose canonical record points at another page is a
conflict: this page gives the item up through a page-scoped copy flipped to
``removed``, and the canonical copy is never written. Ids on the stored page
with no record for this page are re-adopted with both keys.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import logging
import re
from typing import Any

from sitemaps.batching import prefetch_batches
from sitemaps.config import SitemapsConfig
from sitemaps.metrics import CountMetrics
from sitemaps.pages import PageStore
from sitemaps.state_store import ItemRecord, ItemStatus, SitemapStateStore
from sitemaps.state_store.batch import chunked

from .item_ids import extract_item_ids, read_stored_page_items


logger = logging.getLogger("sitemaps.freshener.repair")

REPAIR_LOOKUP_BATCH = 50
REPAIR_LOOKUP_CONCURRENCY = 2
REPAIR_LOOKUP_MAX_UNREAD = 6


@dataclass
class RepairStats:
    s3_sitemap_count_before: int = 0
    s3_sitemap_count_deduped: int = 0
    s3_item_same_file: int = 0
    s3_item_diff_file: int = 0
    s3_item_not_in_db: int = 0
    consolidated_item_ids: int = 0
    db_item_same_file: int = 0
    db_item_diff_file: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class FreshenPlan:
    """Working sets for one page; ``page_records`` is keyed by lower-cased item id."""

    page_records: dict[str, ItemRecord]
    db_writes: list[ItemRecord] = field(default_factory=list)
    page_scoped_writes: dict[str, ItemRecord] = field(default_factory=dict)
    sitemap_writes: list[ItemRecord] = field(default_factory=list)
    stats: RepairStats = field(default_factory=RepairStats)


def prepare_repair(
    plan: FreshenPlan,
    *,
    config: SitemapsConfig,
    type_name: str,
    file_name: str,
    pattern: re.Pattern[str],
    page_store: PageStore,
    state_store: SitemapStateStore,
    metrics: CountMetrics,
) -> RepairStats:
    stats = plan.stats
    extracted = extract_item_ids(read_stored_page_items(page_store, config, type_name, file_name), pattern)
    stats.s3_sitemap_count_before = len(extracted)
    stored_items: dict[str, Any] = {}
    for entry in extracted:
        stored_items[entry.item_id.lower()] = entry
    stats.s3_sitemap_count_deduped = len(stored_items)
    logger.info(
        "Repair loaded stored page type=%s file=%s count=%s deduped=%s",
        type_name,
        file_name,
        stats.s3_sitemap_count_before,
        stats.s3_sitemap_count_deduped,
    )

    lookup_ids = [entry.item_id for entry in stored_items.values()]
    if config.repair_db_file_item_list:
        lookup_ids.extend(
            record.item_id for key, record in plan.page_records.items() if key not in stored_items
        )
    stats.consolidated_item_ids = len(lookup_ids)
    canonical = _load_canonical(state_store, type_name, lookup_ids)

    for key, entry in stored_items.items():
        owner = canonical.get(key)
        if owner is not None and not _same_page(owner.file_name, file_name):
            stats.s3_item_diff_file += 1
            metrics.bump("RepairStoredItemOwnedElsewhere")
            plan.page_records.pop(key, None)
            plan.page_scoped_writes[key] = _release(owner, file_name, entry.item)
            logger.info(
                "Repair releasing item type=%s id=%s file=%s owner=%s",
                type_name,
                entry.item_id,
                file_name,
                owner.file_name,
            )
        elif key in plan.page_records:
            stats.s3_item_same_file += 1
        else:
            stats.s3_item_not_in_db += 1
            metrics.bump("RepairStoredItemNotInDb")
            record = ItemRecord(
                type=type_name,
                item_id=entry.item_id,
                file_name=file_name,
                payload=dict(entry.item),
                item_status=ItemStatus.WRITTEN,
            )
            if owner is not None:
                record.time_first_seen = owner.time_first_seen
            plan.db_writes.append(record)
            plan.sitemap_writes.append(record)

    if config.repair_db_file_item_list:
        for key, record in list(plan.page_records.items()):
            if record.item_status == ItemStatus.REMOVED:
                continue
            owner = canonical.get(key)
            if owner is not None and not _same_page(owner.file_name, file_name):
                stats.db_item_diff_file += 1
                metrics.bump("RepairPageRecordOwnedElsewhere")
                plan.page_records.pop(key)
                plan.page_scoped_writes[key] = _release(owner, file_name, record.payload)
            else:
                stats.db_item_same_file += 1

    logger.info("Repair planned type=%s file=%s stats=%s", type_name, file_name, stats.as_dict())
    return stats


def _load_canonical(state_store: SitemapStateStore, type_name: str, item_ids: list[str]) -> dict[str, ItemRecord]:
    found: dict[str, ItemRecord] = {}
    batches = chunked(item_ids, REPAIR_LOOKUP_BATCH)
    for loaded in prefetch_batches(
        batches,
        lambda batch: state_store.load_items(type_name, batch),
        concurrency=REPAIR_LOOKUP_CONCURRENCY,
        max_unread=REPAIR_LOOKUP_MAX_UNREAD,
    ):
        found.update(loaded)
    return found


def _release(owner: ItemRecord, file_name: str, payload: dict[str, Any] | None) -> ItemRecord:
    scoped = owner.page_scoped_copy(file_name)
    scoped.mark_toremove()
    scoped.clear_dirty()
    scoped.payload = dict(payload) if payload is not None else None
    return scoped


def _same_page(left: str, right: str) -> bool:
    return left.lower() == right.lower()
