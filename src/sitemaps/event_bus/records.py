"""Decoding of Kinesis Lambda event records."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
import json
import logging
import zlib
from typing import Any, Mapping

from sitemaps.errors import MixedShardError, PreconditionError


logger = logging.getLogger("sitemaps.event_bus.records")

_ZLIB_FIRST_BYTE = 0x78


@dataclass(frozen=True)
class StreamRecord:
    shard_id: int
    sequence_number: str
    partition_key: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class DecodedBatch:
    shard_id: int
    records: list[StreamRecord]
    skipped: int


def parse_shard_id(event_id: str) -> int:
    """``shardId-000000000007:4962...`` -> 7."""
    token = str(event_id or "").split(":", 1)[0].split("-")[-1]
    try:
        return int(token)
    except ValueError as exc:
        raise PreconditionError("EVENT_ID_INVALID", str(event_id)[:128]) from exc


def decode_data(data: str | bytes) -> bytes:
    raw = base64.b64decode(data)
    if raw and raw[0] == _ZLIB_FIRST_BYTE:
        return zlib.decompress(raw)
    return raw


def encode_data(payload: Mapping[str, Any]) -> bytes:
    return json.dumps(payload, ensure_ascii=True, separators=(",", ":")).encode("utf-8")


def is_kinesis_event(event: Any) -> bool:
    records = event.get("Records") if isinstance(event, Mapping) else None
    return isinstance(records, list) and all(isinstance(row, Mapping) and "kinesis" in row for row in records)


def decode_stream_records(event: Mapping[str, Any]) -> DecodedBatch:
    """Decode every record of one invocation; all records must come from one shard.

    Records whose data cannot be decoded or parsed as a JSON object are
    dropped and counted in ``skipped``.
    """
    rows = event.get("Records") or []
    shard_id: int | None = None
    records: list[StreamRecord] = []
    skipped = 0
    for row in rows:
        this_shard = parse_shard_id(row.get("eventID", "shardId-000000000000"))
        if shard_id is None:
            shard_id = this_shard
        elif this_shard != shard_id:
            raise MixedShardError(shard_id, this_shard)
        kinesis = row.get("kinesis") or {}
        try:
            payload = json.loads(decode_data(kinesis.get("data") or b"").decode("utf-8"))
        except (binascii.Error, zlib.error, UnicodeDecodeError, ValueError) as exc:
            logger.warning(
                "Stream record skipped shard=%s seq=%s reason=%s",
                this_shard,
                kinesis.get("sequenceNumber", ""),
                str(exc)[:256],
            )
            skipped += 1
            continue
        if not isinstance(payload, dict):
            skipped += 1
            continue
        records.append(
            StreamRecord(
                shard_id=this_shard,
                sequence_number=str(kinesis.get("sequenceNumber") or ""),
                partition_key=str(kinesis.get("partitionKey") or ""),
                payload=payload,
            )
        )
    return DecodedBatch(shard_id=shard_id or 0, records=records, skipped=skipped)
