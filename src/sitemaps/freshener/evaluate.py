"""Write guards for a rebuilt page and the ordered state-store flush."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Iterable

from sitemaps.batching import BackgroundQueue, Chunker, json_size
from sitemaps.config import SitemapsConfig
from sitemaps.metrics import CountMetrics
from sitemaps.pages import PageStore, SitemapPage, infix_page
from sitemaps.state_store import FileRecord, ItemRecord, PersistScope, SitemapStateStore
from sitemaps.state_store.batch import BATCH_WRITE_MAX_ITEMS
from sitemaps.writer.naming import page_key

from .repair import FreshenPlan


logger = logging.getLogger("sitemaps.freshener.evaluate")

TOO_SMALL_SUBDIR = "freshen-too-small"
TOO_BIG_BYTES_SUBDIR = "freshen-too-big-bytes"
TOO_BIG_COUNT_SUBDIR = "freshen-too-big-count"
TOO_SMALL_RATIO = 0.5
FLUSH_MAX_BYTES = int(16 * 1024 * 1024 * 0.8)


@dataclass
class EvaluationResult:
    destination_key: str | None = None
    guard: str | None = None
    uploaded: bool = False
    db_flushed: bool = False
    skipped: str | None = None
    local_size: int = 0
    remote_size: int | None = None
    infix_keys: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "destinationKey": self.destination_key,
            "guard": self.guard,
            "uploaded": self.uploaded,
            "dbFlushed": self.db_flushed,
            "skipped": self.skipped,
            "localSize": self.local_size,
            "remoteSize": self.remote_size,
            "infixKeys": list(self.infix_keys),
        }


def evaluate_and_write_results(
    *,
    config: SitemapsConfig,
    type_name: str,
    file_name: str,
    page: SitemapPage,
    file_record: FileRecord,
    plan: FreshenPlan,
    dry_run: bool,
    dry_run_db: bool,
    s3_directory_override: str | None,
    page_store: PageStore,
    state_store: SitemapStateStore,
    metrics: CountMetrics,
) -> EvaluationResult:
    prefix = "DRYRUN: " if dry_run else ("DRYRUNDB: " if dry_run_db else "")
    result = EvaluationResult()
    body = page.to_bytes()
    result.local_size = len(body)
    result.remote_size = page_store.size(page_key(config.sitemaps_directory, type_name, file_name))
    if result.remote_size is None:
        logger.warning("%sStored page does not exist type=%s file=%s", prefix, type_name, file_name)

    if page.count == 0 and result.remote_size:
        metrics.bump("FileFreshenLocalEmpty")
        logger.error(
            "%sRebuilt page is empty but stored page is not type=%s file=%s remote_size=%s",
            prefix,
            type_name,
            file_name,
            result.remote_size,
        )
        result.skipped = "local_empty"
        return result

    if result.remote_size and result.local_size < result.remote_size * TOO_SMALL_RATIO:
        result.guard = TOO_SMALL_SUBDIR
        metrics.bump("FileFreshenTooSmall")
    elif page.size_bytes > page.limit_bytes:
        result.guard = TOO_BIG_BYTES_SUBDIR
        metrics.bump("FileFreshenTooBigBytes")
    elif page.count > page.limit_count:
        result.guard = TOO_BIG_COUNT_SUBDIR
        metrics.bump("FileFreshenTooBigCount")
    if result.guard:
        logger.warning(
            "%sRebuilt page failed a size guard type=%s file=%s guard=%s count=%s local_size=%s remote_size=%s",
            prefix,
            type_name,
            file_name,
            result.guard,
            page.count,
            result.local_size,
            result.remote_size,
        )

    if page.count == 0:
        logger.info("%sRebuilt page has no entries, skipping upload type=%s file=%s", prefix, type_name, file_name)
        result.skipped = "empty"
        return result

    subdirs = (result.guard,) if result.guard else ()
    result.destination_key = page_key(s3_directory_override or config.sitemaps_directory, type_name, file_name, *subdirs)
    if dry_run:
        metrics.bump("FileFreshenDryRunToS3")
        logger.info("%sWould upload rebuilt page key=%s count=%s", prefix, result.destination_key, page.count)
        return result

    page_store.write_bytes(result.destination_key, body)
    result.uploaded = True
    for infix in config.infix_dirs:
        copy = infix_page(page, infix)
        infix_key = page_key(s3_directory_override or config.sitemaps_directory, type_name, copy.filename, *subdirs, infix)
        page_store.write_bytes(infix_key, copy.to_bytes())
        result.infix_keys.append(infix_key)
    metrics.bump("FileFreshenWrittenToS3")
    logger.info("Rebuilt page uploaded key=%s count=%s bytes=%s", result.destination_key, page.count, result.local_size)

    if dry_run_db:
        logger.info("%sNot writing to state store type=%s file=%s", prefix, type_name, file_name)
        return result
    flush_to_state_store(
        config=config,
        plan=plan,
        file_record=file_record,
        page=page,
        state_store=state_store,
    )
    result.db_flushed = True
    return result


def flush_to_state_store(
    *,
    config: SitemapsConfig,
    plan: FreshenPlan,
    file_record: FileRecord,
    page: SitemapPage,
    state_store: SitemapStateStore,
) -> None:
    """Page-scoped releases land first, then both-key records, then the FileRecord."""
    page_scoped = list(plan.page_scoped_writes.values())
    if page_scoped:
        logger.info("Flushing page-scoped records type=%s file=%s count=%s", file_record.type, file_record.file_name, len(page_scoped))
        _save_all(state_store, page_scoped, PersistScope.BY_PAGE, concurrency=config.dynamodb_concurrent_writes)
    logger.info("Flushing item records type=%s file=%s count=%s", file_record.type, file_record.file_name, len(plan.db_writes))
    _save_all(state_store, plan.db_writes, PersistScope.BOTH, concurrency=config.dynamodb_concurrent_writes)

    file_record.count_written = page.count
    file_record.clear_dirty()
    state_store.save_file_record(file_record)
    logger.info(
        "File record refreshed type=%s file=%s count=%s status=%s",
        file_record.type,
        file_record.file_name,
        file_record.count_written,
        file_record.file_status.value,
    )


def _save_all(
    state_store: SitemapStateStore,
    records: Iterable[ItemRecord],
    scope: PersistScope,
    *,
    concurrency: int,
) -> None:
    queue = BackgroundQueue(f"freshen-db-{scope.value}", concurrency=concurrency)
    chunker: Chunker[ItemRecord] = Chunker(
        count_limit=BATCH_WRITE_MAX_ITEMS,
        size_limit=FLUSH_MAX_BYTES,
        writer=lambda chunk: queue.enqueue(state_store.save_items, chunk, scope),
        sizer=lambda record: sum(json_size(item) for item in record.db_items(scope)),
    )
    try:
        for record in records:
            chunker.enqueue(record)
            queue.raise_if_failed()
        chunker.flush()
        queue.join()
    finally:
        queue.close()
