"""Page allocation, rotation on overflow and background page upload."""

from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Mapping

from sitemaps.batching import BackgroundQueue
from sitemaps.config import SitemapsConfig
from sitemaps.event_bus import StreamEntry, StreamPublisher
from sitemaps.metrics import CountMetrics
from sitemaps.pages import PageStore, SitemapPage, SitemapWriteWouldOverflow, infix_page
from sitemaps.state_store import FileRecord, ShardState, SitemapStateStore

from .naming import page_key, page_name_root


logger = logging.getLogger("sitemaps.writer.rotation")


def utc_clock() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class OpenPage:
    page: SitemapPage
    record: FileRecord
    existing: bool = False

    @property
    def file_name(self) -> str:
        return self.page.filename


class PageUploader:
    """Background upload of finished pages followed by an index notification."""

    def __init__(
        self,
        *,
        config: SitemapsConfig,
        type_name: str,
        page_store: PageStore,
        state_store: SitemapStateStore,
        publisher: StreamPublisher,
        metrics: CountMetrics,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.type_name = type_name
        self._page_store = page_store
        self._state_store = state_store
        self._publisher = publisher
        self._metrics = metrics
        self._clock = clock or utc_clock
        self._queue = BackgroundQueue(f"page-upload-{type_name}", concurrency=config.s3_concurrent_writes)

    @property
    def errors(self) -> list[BaseException]:
        return self._queue.errors

    def enqueue(self, open_page: OpenPage) -> Future:
        return self._queue.enqueue(self.upload, open_page)

    def raise_if_failed(self) -> None:
        self._queue.raise_if_failed()

    def join(self) -> None:
        self._queue.join()

    def close(self) -> None:
        self._queue.close()

    def upload(self, open_page: OpenPage) -> str:
        page = open_page.page
        page.end()
        key = page_key(self.config.sitemaps_directory, self.type_name, page.filename)
        try:
            location = self._page_store.write_bytes(key, page.to_bytes())
            self._write_infix_copies(page)
            self._state_store.save_file_record(open_page.record)
            message = index_message(
                self.config,
                type_name=self.type_name,
                file_name=page.filename,
                lastmod=self._clock().isoformat(),
                existing=open_page.existing,
            )
            self._publisher.put_records(
                self.config.kinesis_index_writer_stream_name,
                [StreamEntry(partition_key=self.type_name, payload=message)],
            )
        except Exception:
            logger.error("Page upload failed type=%s file=%s", self.type_name, page.filename)
            raise
        self._metrics.bump("SitemapFileUploaded")
        logger.info(
            "Page uploaded type=%s file=%s location=%s count=%s bytes=%s",
            self.type_name,
            page.filename,
            location,
            page.count,
            page.size_bytes,
        )
        return location

    def _write_infix_copies(self, page: SitemapPage) -> None:
        for infix in self.config.infix_dirs:
            copy = infix_page(page, infix)
            self._page_store.write_bytes(
                page_key(self.config.sitemaps_directory, self.type_name, copy.filename, infix),
                copy.to_bytes(),
            )
            self._metrics.bump("SitemapInfixFileUploaded")


@dataclass
class PageContext:
    config: SitemapsConfig
    type_name: str
    shard_state: ShardState
    state_store: SitemapStateStore
    page_store: PageStore
    uploader: PageUploader
    metrics: CountMetrics
    clock: Callable[[], datetime] = utc_clock

    @property
    def shard_id(self) -> int:
        return self.shard_state.shard_id

    def new_page(self, root: str) -> SitemapPage:
        return SitemapPage(
            root,
            compress=self.config.compress_sitemap_files,
            limit_count=self.config.items_per_sitemap_limit,
            limit_bytes=self.config.bytes_per_sitemap_limit,
        )


def index_message(
    config: SitemapsConfig,
    *,
    type_name: str,
    file_name: str,
    lastmod: str,
    existing: bool,
) -> dict[str, Any]:
    return {
        "type": type_name,
        "indexItem": {"url": f"{config.sitemap_base_url}/{type_name}/{file_name}", "lastmod": lastmod},
        "action": "update" if existing else "add",
    }


def create_new_page(ctx: PageContext) -> OpenPage:
    """Allocate the next page name, persist its empty FileRecord, then point the shard at it."""
    root = page_name_root(
        ctx.type_name,
        ctx.shard_id,
        ctx.shard_state.file_count,
        ctx.config.sitemap_file_naming_scheme,
        today=ctx.clock().date(),
    )
    page = ctx.new_page(root)
    record = FileRecord(type=ctx.type_name, file_name=page.filename)
    ctx.state_store.save_file_record(record)
    ctx.shard_state.change_current_file(page.filename)
    ctx.state_store.save_shard_state(ctx.shard_state)
    ctx.metrics.bump("SitemapFileCreated")
    return OpenPage(page=page, record=record, existing=False)


def rotate_page(ctx: PageContext, current: OpenPage, *, skip_upload: bool = False) -> OpenPage:
    if not skip_upload:
        ctx.uploader.enqueue(current)
    replacement = create_new_page(ctx)
    logger.info(
        "Page rotated type=%s shard=%s prior_file=%s prior_count=%s prior_bytes=%s file=%s skip_upload=%s",
        ctx.type_name,
        ctx.shard_id,
        current.file_name,
        current.page.count,
        current.page.size_bytes,
        replacement.file_name,
        skip_upload,
    )
    return replacement


def write_or_rotate_and_write(ctx: PageContext, current: OpenPage, item: Mapping[str, Any]) -> OpenPage:
    """Append ``item``; on overflow rotate and append it as the first entry of the new page."""
    try:
        current.page.write(item)
        return current
    except SitemapWriteWouldOverflow:
        replacement = rotate_page(ctx, current)
        replacement.page.write(item)
        return replacement
