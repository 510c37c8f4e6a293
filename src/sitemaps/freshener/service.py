"""Sitemap freshener: rebuilds pages from item state and repairs ownership drift."""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, Callable, Mapping

from sitemaps.config import SitemapsConfig
from sitemaps.errors import PreconditionError, reason_code
from sitemaps.event_bus import StreamEntry, StreamPublisher, StreamWriter
from sitemaps.metrics import CountMetrics
from sitemaps.pages import PageStore, SitemapPage, scrub_invisible_chars
from sitemaps.state_store import FileRecord, ItemStatus, SitemapStateStore
from sitemaps.state_store.records import parse_time
from sitemaps.writer.naming import filename_root
from sitemaps.writer.rotation import utc_clock

from .evaluate import evaluate_and_write_results
from .item_ids import ItemWithId, compile_item_id_pattern, validate_item_id_pattern
from .messages import (
    OPERATION_FRESHEN_FILE,
    OPERATION_START,
    FreshenerMessage,
    compute_dry_run,
    parse_freshener_event,
)
from .repair import FreshenPlan, prepare_repair


logger = logging.getLogger("sitemaps.freshener")

ACTIVE_PAGE_WINDOW = timedelta(hours=24)
ITEM_ID_SAMPLE_SIZE = 10


def freshen_partition_key(type_name: str, file_name: str) -> str:
    return f"operation#{OPERATION_FRESHEN_FILE}#type#{type_name}#filename#{file_name}#"


class SitemapFreshenerService:
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

    def handle(self, event: Mapping[str, Any]) -> list[dict[str, Any]]:
        metrics = CountMetrics(scope="sitemap_freshener")
        typed_metrics: dict[str, CountMetrics] = {}
        stream_writer = StreamWriter(self._publisher, self.config.kinesis_self_stream_name)
        results: list[dict[str, Any]] = []
        try:
            messages, direct = parse_freshener_event(event)
            metrics.bump("MsgReceived", len(messages))
            logger.info("Freshener invocation messages=%s direct=%s", len(messages), direct)
            for message in messages:
                type_metrics = typed_metrics.setdefault(
                    message.type,
                    CountMetrics(scope="sitemap_freshener_type", dimensions={"SitemapType": message.type}),
                )
                results.append(self._handle_message(message, stream_writer, type_metrics))
        except Exception as exc:
            metrics.bump("EventFailed")
            logger.error("Freshener invocation failed code=%s detail=%s", reason_code(exc), str(exc)[:256])
            try:
                stream_writer.join()
            except Exception as cleanup_exc:
                logger.error("Freshener stream drain failed code=%s", reason_code(cleanup_exc))
            raise
        else:
            stream_writer.join()
            metrics.bump("EventComplete")
        finally:
            stream_writer.close()
            for type_metrics in typed_metrics.values():
                type_metrics.flush()
            metrics.flush()
        return results

    def _handle_message(
        self,
        message: FreshenerMessage,
        stream_writer: StreamWriter,
        metrics: CountMetrics,
    ) -> dict[str, Any]:
        dry_run, dry_run_db = compute_dry_run(message, non_dry_run_allowed=self.config.non_dry_run_allowed)
        requested = True if message.dry_run is None else message.dry_run
        if dry_run != requested:
            metrics.bump("MsgDryRunMismatch")
            logger.error(
                "Dry run mismatch, skipping message type=%s operation=%s requested=%s computed=%s",
                message.type,
                message.operation,
                message.dry_run,
                dry_run,
            )
            return {
                "message": message.raw,
                "computedDryRun": dry_run,
                "computedDryRunDB": dry_run_db,
                "incomingDryRun": message.dry_run,
                "error": "dryRun mismatch - skipping this message",
            }
        metrics.bump(f"Op{message.operation[:1].upper()}{message.operation[1:]}")
        if message.operation == OPERATION_START:
            return self.start(message, dry_run=dry_run, dry_run_db=dry_run_db, stream_writer=stream_writer, metrics=metrics)
        if message.operation == OPERATION_FRESHEN_FILE:
            return self.freshen_file(message, dry_run=dry_run, dry_run_db=dry_run_db, metrics=metrics)
        raise PreconditionError("FRESHENER_OPERATION_UNKNOWN", message.operation or "<missing>")

    def start(
        self,
        message: FreshenerMessage,
        *,
        dry_run: bool,
        dry_run_db: bool,
        stream_writer: StreamWriter,
        metrics: CountMetrics,
    ) -> dict[str, Any]:
        """Fan a type out into one ``freshenFile`` message per page."""
        type_name = message.type
        files = self._state_store.load_file_records(type_name)
        if not files:
            raise PreconditionError("FRESHENER_NO_FILES", type_name)
        result: dict[str, Any] = {"message": message.raw, "filesOfType": len(files)}

        if message.repair_db:
            sample = self._validate_pattern(type_name, files, message.item_id_regex)
            result["urlRegexValid"] = True
            result["itemIDsSample"] = [
                {"itemID": entry.item_id, "url": entry.item.get("url")} for entry in sample[:ITEM_ID_SAMPLE_SIZE]
            ]

        shards_by_file = {state.current_file_name: state for state in self._state_store.load_shard_states(type_name)}
        now = self._clock()
        written = skipped_active = skipped_malformed = 0
        for file_record in files:
            if file_record.malformed:
                skipped_malformed += 1
                metrics.bump("FileOpSkippedMalformed")
                logger.info("Skipping malformed page type=%s file=%s", type_name, file_record.file_name)
                continue
            shard = shards_by_file.get(file_record.file_name)
            last_written = parse_time(shard.time_last_written) if shard is not None else None
            if last_written is not None and now - last_written < ACTIVE_PAGE_WINDOW:
                skipped_active += 1
                metrics.bump("FileOpSkippedActive")
                logger.info(
                    "Skipping page a shard is writing type=%s file=%s shard=%s",
                    type_name,
                    file_record.file_name,
                    shard.shard_id,
                )
                continue
            stream_writer.enqueue(
                StreamEntry(
                    partition_key=freshen_partition_key(type_name, file_record.file_name),
                    payload=message.freshen_file_payload(file_record.file_name, dry_run=dry_run, dry_run_db=dry_run_db),
                )
            )
            stream_writer.raise_if_failed()
            metrics.bump("FileOpWritten")
            written += 1

        result.update(filesWritten=written, filesSkippedActive=skipped_active, filesSkippedMalformed=skipped_malformed)
        logger.info(
            "Freshen fan-out type=%s files=%s written=%s skipped_active=%s skipped_malformed=%s",
            type_name,
            len(files),
            written,
            skipped_active,
            skipped_malformed,
        )
        return result

    def _validate_pattern(self, type_name: str, files: list[FileRecord], pattern: str | None) -> list[ItemWithId]:
        """Check the pattern against the first well-formed page that has stored entries."""
        compile_item_id_pattern(pattern)
        for file_record in files:
            if file_record.malformed:
                continue
            _, sample = validate_item_id_pattern(
                self._page_store,
                self.config,
                type_name=type_name,
                file_name=file_record.file_name,
                pattern=pattern,
                quiet=True,
            )
            if sample:
                logger.info("Item id pattern validated type=%s file=%s sample=%s", type_name, file_record.file_name, len(sample))
                return sample
        logger.warning("No stored page to validate the item id pattern against type=%s files=%s", type_name, len(files))
        return []

    def freshen_file(
        self,
        message: FreshenerMessage,
        *,
        dry_run: bool,
        dry_run_db: bool,
        metrics: CountMetrics,
    ) -> dict[str, Any]:
        """Rebuild one page from its item records, repairing ownership first when asked."""
        type_name = message.type
        file_name = message.filename
        if not file_name:
            raise PreconditionError("FRESHENER_FILENAME_REQUIRED", type_name)
        result: dict[str, Any] = {"message": message.raw}

        file_record = self._state_store.load_file_record(type_name, file_name)
        if file_record is None:
            raise PreconditionError("FRESHENER_FILE_RECORD_MISSING", f"{type_name}/{file_name}")
        if file_record.malformed:
            metrics.bump("FileSkippedMalformed")
            logger.warning("Page is malformed, not freshening type=%s file=%s", type_name, file_name)
            result["skipped"] = "malformed"
            return result

        page_records = {record.item_id.lower(): record for record in self._state_store.load_page_items(type_name, file_name)}
        metrics.bump("ItemReceivedFromDB", len(page_records))
        logger.info("Freshening page type=%s file=%s records=%s", type_name, file_name, len(page_records))
        plan = FreshenPlan(page_records=page_records)

        if message.repair_db:
            prepare_repair(
                plan,
                config=self.config,
                type_name=type_name,
                file_name=file_name,
                pattern=compile_item_id_pattern(message.item_id_regex),
                page_store=self._page_store,
                state_store=self._state_store,
                metrics=metrics,
            )

        for record in plan.page_records.values():
            if record.item_status == ItemStatus.REMOVED:
                metrics.bump("ItemAlreadyRemoved")
                continue
            if record.item_status == ItemStatus.TOREMOVE:
                record.clear_dirty()
                plan.db_writes.append(record)
                file_record.remove_file_item()
                metrics.bump("ItemRemoved")
                continue
            if record.item_status == ItemStatus.TOWRITE:
                record.clear_dirty()
                plan.db_writes.append(record)
                metrics.bump("ItemRewritten")
            plan.sitemap_writes.append(record)

        page = SitemapPage(filename_root(file_name), compress=file_name.endswith(".gz"))
        for record in plan.sitemap_writes:
            if not record.payload or not record.payload.get("url"):
                metrics.bump("ItemMissingPayload")
                logger.warning("Item has no stored payload, leaving it off the page type=%s id=%s", type_name, record.item_id)
                continue
            cleaned, scrubbed = scrub_invisible_chars(record.payload)
            if scrubbed:
                metrics.bump("InvisibleCharsScrubbed", scrubbed)
                record.payload = cleaned
            page.write(cleaned, disregard_byte_limit=True, disregard_count_limit=True)
        page.end()
        logger.info(
            "Page rebuilt type=%s file=%s count=%s bytes=%s db_writes=%s page_scoped_writes=%s",
            type_name,
            file_name,
            page.count,
            page.size_bytes,
            len(plan.db_writes),
            len(plan.page_scoped_writes),
        )

        evaluation = evaluate_and_write_results(
            config=self.config,
            type_name=type_name,
            file_name=file_name,
            page=page,
            file_record=file_record,
            plan=plan,
            dry_run=dry_run,
            dry_run_db=dry_run_db,
            s3_directory_override=message.s3_directory_override,
            page_store=self._page_store,
            state_store=self._state_store,
            metrics=metrics,
        )
        result.update(
            count=page.count,
            repairStats=plan.stats.as_dict(),
            dbWrites=len(plan.db_writes),
            pageScopedWrites=len(plan.page_scoped_writes),
            **evaluation.as_dict(),
        )
        return result
