"""Writer message parsing, grouping by type and in-batch de-duplication."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Iterable, Mapping

from sitemaps.errors import CompactVersionHalt
from sitemaps.event_bus import StreamRecord
from sitemaps.metrics import CountMetrics


logger = logging.getLogger("sitemaps.writer.events")


@dataclass(frozen=True)
class WriterMessage:
    type: str
    custom_id: str
    sitemap_item: dict[str, Any]
    compact_version: int | None
    partition_key: str
    raw: dict[str, Any]

    @property
    def key(self) -> str:
        return self.custom_id.lower()


def parse_writer_message(record: StreamRecord) -> WriterMessage | None:
    payload = record.payload
    sitemap_item = payload.get("sitemapItem")
    type_name = payload.get("type")
    custom_id = payload.get("customId")
    if not isinstance(sitemap_item, Mapping) or not sitemap_item.get("url"):
        return None
    if not type_name or custom_id is None or str(custom_id) == "":
        return None
    compact_version = payload.get("compactVersion")
    if compact_version is not None:
        try:
            compact_version = int(compact_version)
        except (TypeError, ValueError):
            logger.warning("Message has an invalid compactVersion seq=%s value=%r", record.sequence_number, compact_version)
            return None
    return WriterMessage(
        type=str(type_name),
        custom_id=str(custom_id),
        sitemap_item=dict(sitemap_item),
        compact_version=compact_version,
        partition_key=record.partition_key or str(custom_id),
        raw=dict(payload),
    )


def group_by_type(
    records: Iterable[StreamRecord],
    *,
    throw_on_compact_version: int,
    metrics: CountMetrics,
) -> dict[str, list[WriterMessage]]:
    """Group messages by type, preserving stream order within each type.

    A message carrying ``throw_on_compact_version`` aborts the invocation so an
    operator can intervene before compacted records are consumed.
    """
    grouped: dict[str, list[WriterMessage]] = {}
    for record in records:
        if throw_on_compact_version > 0 and record.payload.get("compactVersion") == throw_on_compact_version:
            metrics.bump("ExceptionCompactVersion")
            raise CompactVersionHalt(throw_on_compact_version)
        message = parse_writer_message(record)
        if message is None:
            metrics.bump("MsgSkipped")
            continue
        grouped.setdefault(message.type, []).append(message)
    return grouped


def dedupe_last_wins(messages: Iterable[WriterMessage], metrics: CountMetrics | None = None) -> list[WriterMessage]:
    """Keep the last message per item id at the position where the id was first seen."""
    unique: dict[str, WriterMessage] = {}
    for message in messages:
        if message.key in unique and metrics is not None:
            metrics.bump("DuplicateSkippedInput")
        unique[message.key] = message
    return list(unique.values())
