"""Sitemap writer: turns a shard's batch of item events into appended sitemap pages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any, Callable, Iterable, Mapping

from sitemaps.batching import BackgroundQueue, Chunker, json_size, prefetch_batches
from sitemaps.config import SitemapsConfig
from sitemaps.errors import reason_code
from sitemaps.event_bus import StreamEntry, StreamPublisher, StreamWriter, decode_stream_records
from sitemaps.metrics import CountMetrics
from sitemaps.pages import PageStore
from sitemaps.state_store import FileStatus, ItemRecord, PersistScope, ShardState, SitemapStateStore
from sitemaps.state_store.batch import BATCH_GET_MAX_KEYS, BATCH_WRITE_MAX_ITEMS, chunked

from .events import WriterMessage, dedupe_last_wins, group_by_type
from .recovery import load_initial_page
from .rotation import OpenPage, PageContext, PageUploader, rotate_page, utc_clock, write_or_rotate_and_write


logger = logging.getLogger("sitemaps.writer")

DB_WRITE_MAX_BYTES = int(16 * 1024 * 1024 * 0.95)


@dataclass
class TypeResult:
    type: str
    items_received: int = 0
    items_unique: int = 0
    items_written: int = 0
    duplicates: int = 0
    compacted: int = 0
    files: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "items_received": self.items_received,
            "items_unique": self.items_unique,
            "items_written": self.items_written,
            "duplicates": self.duplicates,
            "compacted": self.compacted,
            "files": list(self.files),
        }


def _item_record_size(record: ItemRecord) -> int:
    return sum(json_size(item) for item in record.db_items(PersistScope.BOTH))


class TypeWriter:
    """Process one type's de-duplicated items for one shard.

    The open page is acquired lazily through ``_ensure_page`` so that a batch
    of pure duplicates never touches the page store or the shard state.
    """

    def __init__(
        self,
        *,
        config: SitemapsConfig,
        type_name: str,
        shard_id: int,
        state_store: SitemapStateStore,
        page_store: PageStore,
        publisher: StreamPublisher,
        compaction_writer: StreamWriter | None,
        metrics: CountMetrics,
        clock: Callable[[], datetime] = utc_clock,
    ) -> None:
        self.config = config
        self.type_name = type_name
        self.shard_id = shard_id
        self._state_store = state_store
        self._page_store = page_store
        self._compaction_writer = compaction_writer
        self._metrics = metrics
        self._clock = clock
        self._uploader = PageUploader(
            config=config,
            type_name=type_name,
            page_store=page_store,
            state_store=state_store,
            publisher=publisher,
            metrics=metrics,
            clock=clock,
        )
        self._db_queue = BackgroundQueue(f"db-write-{type_name}", concurrency=config.dynamodb_concurrent_writes)
        self._item_chunker: Chunker[ItemRecord] = Chunker(
            count_limit=BATCH_WRITE_MAX_ITEMS,
            size_limit=DB_WRITE_MAX_BYTES,
            writer=lambda records: self._db_queue.enqueue(self._state_store.save_items, records, PersistScope.BOTH),
            sizer=_item_record_size,
        )
        self._shard_state: ShardState | None = None
        self._ctx: PageContext | None = None
        self._open: OpenPage | None = None
        self._cache: dict[str, ItemRecord] = {}
        self._dirty_pages: set[str] = set()
        # pages opened during this run, keyed by file name; their FileRecords stay in memory
        self._pages: dict[str, OpenPage] = {}
        self._result = TypeResult(type=type_name)

    @property
    def open_page(self) -> OpenPage | None:
        return self._open

    def run(self, messages: list[WriterMessage]) -> TypeResult:
        self._result.items_received = len(messages)
        unique = dedupe_last_wins(messages, self._metrics)
        self._result.items_unique = len(unique)
        try:
            self._process(unique)
        except Exception as exc:
            self._metrics.bump("TypeFailed")
            logger.error(
                "Type failed type=%s shard=%s code=%s detail=%s",
                self.type_name,
                self.shard_id,
                reason_code(exc),
                str(exc)[:256],
            )
            try:
                self._finish()
            except Exception as cleanup_exc:
                logger.error(
                    "Type cleanup failed after error type=%s code=%s detail=%s",
                    self.type_name,
                    reason_code(cleanup_exc),
                    str(cleanup_exc)[:256],
                )
            raise
        else:
            self._finish()
            self._metrics.bump("TypeDone")
        finally:
            self._uploader.close()
            self._db_queue.close()
        return self._result

    def _process(self, unique: list[WriterMessage]) -> None:
        self._shard_state = self._state_store.load_shard_state(self.type_name, self.shard_id) or ShardState(
            type=self.type_name, shard_id=self.shard_id
        )
        self._ctx = PageContext(
            config=self.config,
            type_name=self.type_name,
            shard_state=self._shard_state,
            state_store=self._state_store,
            page_store=self._page_store,
            uploader=self._uploader,
            metrics=self._metrics,
            clock=self._clock,
        )
        if not unique:
            self._metrics.bump("NoItems")
            logger.warning("Type has no items type=%s shard=%s", self.type_name, self.shard_id)
            return
        logger.info("Type started type=%s shard=%s items=%s", self.type_name, self.shard_id, len(unique))
        for batch, states in self._lookups(unique):
            for message in batch:
                self._raise_if_background_failed()
                existing = self._cache.get(message.key) or states.get(message.key)
                self._process_item(message, existing)
        self._raise_if_background_failed()

    def _lookups(self, unique: list[WriterMessage]) -> Iterable[tuple[list[WriterMessage], Mapping[str, ItemRecord]]]:
        batches = chunked(unique, BATCH_GET_MAX_KEYS)
        if not self.config.store_item_state_in_db:
            return ((batch, {}) for batch in batches)

        def fetch(batch: list[WriterMessage]) -> tuple[list[WriterMessage], Mapping[str, ItemRecord]]:
            return batch, self._state_store.load_items(self.type_name, [message.custom_id for message in batch])

        return prefetch_batches(
            batches,
            fetch,
            concurrency=self.config.dynamodb_concurrent_reads,
            max_unread=self.config.dynamodb_prefetch_max_unread,
        )

    def _process_item(self, message: WriterMessage, existing: ItemRecord | None) -> None:
        version = self.config.incoming_compact_version
        compact = version > 0 and (message.compact_version is None or message.compact_version < version)
        assert self._shard_state is not None

        if existing is not None:
            self._result.duplicates += 1
            if compact:
                self._metrics.bump("DuplicateCompacted")
            elif existing.file_name != self._shard_state.current_file_name:
                self._metrics.bump("DuplicateSkipped")
            else:
                self._metrics.bump("DuplicateSkippedSameFile")
            self._refresh_duplicate(message, existing)
            return

        if compact:
            self._metrics.bump("UniqueCompacted")
            self._result.compacted += 1
            if self._compaction_writer is None:
                raise RuntimeError("COMPACTION_WRITER_MISSING")
            republished = {**message.raw, "compactVersion": version}
            self._compaction_writer.enqueue(StreamEntry(partition_key=message.partition_key, payload=republished))
            return

        opened = self._ensure_page()
        assert self._ctx is not None
        if opened.page.full:
            opened = rotate_page(self._ctx, opened)
        opened = write_or_rotate_and_write(self._ctx, opened, message.sitemap_item)
        self._track_open(opened)
        self._shard_state.add_file_item()
        opened.record.add_file_item()

        record = ItemRecord(
            type=self.type_name,
            item_id=message.custom_id,
            file_name=self._shard_state.current_file_name,
            payload=message.sitemap_item,
        )
        self._cache[message.key] = record
        if self.config.store_item_state_in_db:
            self._item_chunker.enqueue(record)
        self._metrics.bump("SitemapItemWritten")
        self._result.items_written += 1

    def _refresh_duplicate(self, message: WriterMessage, existing: ItemRecord) -> None:
        """Store a changed payload under the item's existing owner; never repoint ownership."""
        if existing.payload_equals(message.sitemap_item):
            self._metrics.bump("DuplicateUnchanged")
            return
        existing.payload = dict(message.sitemap_item)
        existing.mark_towrite()
        self._cache[message.key] = existing
        self._dirty_pages.add(existing.file_name)
        if self.config.store_item_state_in_db:
            self._item_chunker.enqueue(existing)

    def _ensure_page(self) -> OpenPage:
        if self._open is None:
            assert self._ctx is not None
            self._track_open(load_initial_page(self._ctx))
        assert self._open is not None
        return self._open

    def _track_open(self, opened: OpenPage) -> None:
        if self._open is not opened:
            self._open = opened
            self._pages[opened.file_name] = opened
            self._result.files.append(opened.file_name)

    def _raise_if_background_failed(self) -> None:
        self._uploader.raise_if_failed()
        self._db_queue.raise_if_failed()
        if self._compaction_writer is not None:
            self._compaction_writer.raise_if_failed()

    def _finish(self) -> None:
        opened = self._open
        if opened is not None and self._shard_state is not None:
            if opened.record.file_status == FileStatus.EMPTY and opened.page.count == 0:
                logger.warning("Open page has no items, not uploading type=%s file=%s", self.type_name, opened.file_name)
                opened.page.end()
            else:
                self._uploader.enqueue(opened)
        # uploads save their FileRecords; dirty marks go on top once every upload has landed
        self._uploader.join()
        self._mark_dirty_pages()
        if opened is not None and self._shard_state is not None:
            self._state_store.save_shard_state(self._shard_state)
            self._state_store.save_file_record(opened.record)
        self._item_chunker.on_idle()
        self._db_queue.join()

    def _mark_dirty_pages(self) -> None:
        for file_name in sorted(self._dirty_pages):
            tracked = self._pages.get(file_name)
            record = tracked.record if tracked is not None else self._state_store.load_file_record(self.type_name, file_name)
            if record is None or record.malformed:
                self._metrics.bump("DirtyPageSkipped")
                continue
            record.mark_dirty()
            if tracked is None or tracked is not self._open:
                self._state_store.save_file_record(record)
            self._metrics.bump("FileMarkedDirty")
        self._dirty_pages.clear()


class SitemapWriterService:
    def __init__(
        self,
        config: SitemapsConfig,
        *,
        state_store: SitemapStateStore,
        page_store: PageStore,
        publisher: StreamPublisher,
        clock: Callable[[], datetime] = utc_clock,
    ) -> None:
        self.config = config
        self._state_store = state_store
        self._page_store = page_store
        self._publisher = publisher
        self._clock = clock

    def handle(self, event: Mapping[str, Any]) -> dict[str, Any]:
        metrics = CountMetrics(scope="sitemap_writer")
        metrics.bump("EventReceived")
        compaction_writer = (
            StreamWriter(self._publisher, self.config.kinesis_self_stream_name)
            if self.config.incoming_compact_version > 0
            else None
        )
        results: list[TypeResult] = []
        try:
            batch = decode_stream_records(event)
            metrics.bump("MsgReceived", len(batch.records) + batch.skipped)
            metrics.bump("MsgSkipped", batch.skipped)
            grouped = group_by_type(
                batch.records,
                throw_on_compact_version=self.config.throw_on_compact_version,
                metrics=metrics,
            )
            for type_name, messages in grouped.items():
                type_metrics = CountMetrics(scope="sitemap_writer_type", dimensions={"SitemapType": type_name})
                type_metrics.bump("TypeStarted")
                writer = TypeWriter(
                    config=self.config,
                    type_name=type_name,
                    shard_id=batch.shard_id,
                    state_store=self._state_store,
                    page_store=self._page_store,
                    publisher=self._publisher,
                    compaction_writer=compaction_writer,
                    metrics=type_metrics,
                    clock=self._clock,
                )
                try:
                    results.append(writer.run(messages))
                finally:
                    type_metrics.flush()
            if compaction_writer is not None:
                compaction_writer.join()
            metrics.bump("EventComplete")
        except Exception as exc:
            metrics.bump("EventFailed")
            logger.error("Sitemap writer invocation failed code=%s detail=%s", reason_code(exc), str(exc)[:256])
            if compaction_writer is not None:
                try:
                    compaction_writer.join()
                except Exception as cleanup_exc:
                    logger.error("Compaction writer drain failed code=%s", reason_code(cleanup_exc))
            raise
        finally:
            if compaction_writer is not None:
                compaction_writer.close()
            metrics.flush()
        return {"types": [result.as_dict() for result in results]}
