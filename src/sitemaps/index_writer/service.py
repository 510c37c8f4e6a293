"""Apply page add/update notifications to each type's sitemap index."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from sitemaps.config import SitemapsConfig
from sitemaps.errors import reason_code
from sitemaps.event_bus import StreamRecord, decode_stream_records
from sitemaps.metrics import CountMetrics
from sitemaps.pages import PageStore, SitemapIndex, infix_index


logger = logging.getLogger("sitemaps.index_writer")

ACTIONS = ("add", "update")


def index_key(config: SitemapsConfig, type_name: str, infix: str | None = None) -> str:
    suffix = ".xml.gz" if config.compress_sitemap_files else ".xml"
    directory = config.sitemaps_directory.strip("/")
    name = f"{type_name}-index-{infix}{suffix}" if infix else f"{type_name}-index{suffix}"
    return f"{directory}/{name}" if directory else name


class IndexWriterService:
    def __init__(self, config: SitemapsConfig, *, page_store: PageStore) -> None:
        self.config = config
        self._page_store = page_store

    def handle(self, event: Mapping[str, Any]) -> dict[str, Any]:
        metrics = CountMetrics(scope="index_writer")
        batch = decode_stream_records(event)
        metrics.bump("MsgReceived", len(batch.records) + batch.skipped)
        grouped = self._group_by_type(batch.records, metrics)
        failures: list[Exception] = []
        summary: dict[str, Any] = {}
        try:
            for type_name, messages in grouped.items():
                type_metrics = CountMetrics(scope="index_writer_type", dimensions={"SitemapType": type_name})
                try:
                    summary[type_name] = self.apply(type_name, messages, type_metrics)
                except Exception as exc:
                    type_metrics.bump("TypeFailed")
                    logger.error(
                        "Index update failed type=%s code=%s detail=%s",
                        type_name,
                        reason_code(exc),
                        str(exc)[:256],
                    )
                    failures.append(exc)
                finally:
                    type_metrics.flush()
        finally:
            metrics.flush()
        if failures:
            raise failures[0]
        return {"types": summary}

    def apply(self, type_name: str, messages: list[Mapping[str, Any]], metrics: CountMetrics) -> dict[str, Any]:
        """Merge messages into the stored index; entries are keyed and sorted by url."""
        key = index_key(self.config, type_name)
        data = self._page_store.read_bytes_if_exists(key)
        root = f"{type_name}-index"
        entries: dict[str, dict[str, Any]] = {}
        if data is not None:
            existing = SitemapIndex.from_bytes(data, root, compress=self.config.compress_sitemap_files)
            for item in existing.items:
                entries[item["url"]] = item
        logger.info("Index loaded type=%s key=%s existing=%s entries=%s", type_name, key, data is not None, len(entries))

        for message in messages:
            action = message.get("action")
            index_item = message.get("indexItem") or {}
            if action not in ACTIONS:
                metrics.bump("ActionUnknown")
                logger.warning("Unknown index action, skipping type=%s action=%s", type_name, action)
                continue
            if not index_item.get("url"):
                metrics.bump("IndexItemInvalid")
                logger.warning("Index message without url, skipping type=%s", type_name)
                continue
            metrics.bump("ActionUpdate" if action == "update" else "ActionAdd")
            entries[index_item["url"]] = {"url": index_item["url"], "lastmod": index_item.get("lastmod")}

        index = SitemapIndex(root, compress=self.config.compress_sitemap_files)
        for url in sorted(entries):
            index.write(entries[url])
        index.end()
        location = self._page_store.write_bytes(key, index.to_bytes())
        metrics.bump("IndexWritten")
        for infix in self.config.infix_dirs:
            self._page_store.write_bytes(index_key(self.config, type_name, infix), infix_index(index, infix).to_bytes())
            metrics.bump("IndexInfixWritten")
        logger.info("Index written type=%s location=%s entries=%s", type_name, location, index.count)
        return {"key": key, "entries": index.count}

    def _group_by_type(self, records: list[StreamRecord], metrics: CountMetrics) -> dict[str, list[Mapping[str, Any]]]:
        grouped: dict[str, list[Mapping[str, Any]]] = {}
        for record in records:
            type_name = record.payload.get("type")
            if not type_name:
                metrics.bump("MsgSkipped")
                logger.warning("Index message without type, skipping seq=%s", record.sequence_number)
                continue
            grouped.setdefault(str(type_name), []).append(record.payload)
        return grouped
