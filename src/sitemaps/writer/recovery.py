"""Reconstruct the open page of a shard when a type is first touched."""

from __future__ import annotations

import logging

from sitemaps.pages import SitemapPage, SitemapPageMalformed
from sitemaps.state_store import FileRecord, FileStatus

from .naming import filename_root, page_key
from .rotation import OpenPage, PageContext, create_new_page, rotate_page


logger = logging.getLogger("sitemaps.writer.recovery")


def load_initial_page(ctx: PageContext) -> OpenPage:
    shard = ctx.shard_state
    current_name = shard.current_file_name

    if shard.file_count == 1 and current_name:
        record = ctx.state_store.load_file_record(ctx.type_name, current_name)
        if record is not None and record.file_status == FileStatus.EMPTY and record.count_written == 0:
            # page #1 was allocated but never uploaded: hand out the same name again
            shard.reset_for_reuse()
            opened = create_new_page(ctx)
            ctx.metrics.bump("SitemapFile1Recreated")
            ctx.metrics.bump("SitemapLast1Empty")
            logger.warning(
                "Page 1 was empty, reusing its name type=%s shard=%s file=%s",
                ctx.type_name,
                ctx.shard_id,
                opened.file_name,
            )
            return opened

    if shard.file_count > 0 and current_name:
        ctx.metrics.bump("SitemapLastFetch")
        data = ctx.page_store.read_bytes_if_exists(page_key(ctx.config.sitemaps_directory, ctx.type_name, current_name))
        if data is None:
            ctx.metrics.bump("SitemapLastFetchFailed")
            logger.error(
                "Last page missing from store, starting next page type=%s shard=%s file=%s",
                ctx.type_name,
                ctx.shard_id,
                current_name,
            )
            return create_new_page(ctx)

        try:
            page = SitemapPage.from_bytes(
                data,
                filename_root(current_name),
                compress=current_name.endswith(".gz"),
                limit_count=ctx.config.items_per_sitemap_limit,
                limit_bytes=ctx.config.bytes_per_sitemap_limit,
            )
        except SitemapPageMalformed as exc:
            ctx.metrics.bump("SitemapLastParseFailed")
            logger.error(
                "Last page could not be parsed, marking malformed type=%s shard=%s file=%s detail=%s",
                ctx.type_name,
                ctx.shard_id,
                current_name,
                exc.detail,
            )
            record = ctx.state_store.load_file_record(ctx.type_name, current_name) or FileRecord(
                type=ctx.type_name, file_name=current_name
            )
            record.mark_malformed()
            ctx.state_store.save_file_record(record)
            return create_new_page(ctx)

        record = ctx.state_store.load_file_record(ctx.type_name, current_name)
        if record is None:
            ctx.metrics.bump("SitemapLastFileRecordFailed")
            logger.error(
                "Last page has no file record, starting next page type=%s shard=%s file=%s",
                ctx.type_name,
                ctx.shard_id,
                current_name,
            )
            return create_new_page(ctx)
        if record.malformed:
            logger.warning("Last page already malformed, starting next page type=%s file=%s", ctx.type_name, current_name)
            return create_new_page(ctx)

        ctx.metrics.bump("SitemapLastFetchDone")
        opened = OpenPage(page=page, record=record, existing=True)
        if page.full:
            ctx.metrics.bump("SitemapLastFull")
            logger.info(
                "Last page is full, rotating type=%s shard=%s file=%s count=%s bytes=%s",
                ctx.type_name,
                ctx.shard_id,
                current_name,
                page.count,
                page.size_bytes,
            )
            return rotate_page(ctx, opened, skip_upload=True)
        logger.info(
            "Resuming last page type=%s shard=%s file=%s count=%s",
            ctx.type_name,
            ctx.shard_id,
            current_name,
            page.count,
        )
        return opened

    return create_new_page(ctx)
