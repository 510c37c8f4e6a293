"""Freshener operation messages and invocation decoding."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any, Mapping

from sitemaps.errors import PreconditionError
from sitemaps.event_bus.records import decode_data


logger = logging.getLogger("sitemaps.freshener.messages")

OPERATION_START = "start"
OPERATION_FRESHEN_FILE = "freshenFile"
OPERATIONS = (OPERATION_START, OPERATION_FRESHEN_FILE)


@dataclass(frozen=True)
class FreshenerMessage:
    operation: str
    type: str
    filename: str | None = None
    dry_run: bool | None = None
    dry_run_db: bool | None = None
    s3_directory_override: str | None = None
    item_id_regex: str | None = None
    repair_db: bool = False
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "FreshenerMessage":
        return cls(
            operation=str(payload.get("operation") or ""),
            type=str(payload.get("type") or ""),
            filename=payload.get("filename") or None,
            dry_run=_optional_bool(payload.get("dryRun")),
            dry_run_db=_optional_bool(payload.get("dryRunDB")),
            s3_directory_override=payload.get("s3DirectoryOverride") or None,
            item_id_regex=payload.get("itemIDRegex") or None,
            repair_db=_optional_bool(payload.get("repairDB")) or False,
            raw=dict(payload),
        )

    def freshen_file_payload(self, file_name: str, *, dry_run: bool, dry_run_db: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "operation": OPERATION_FRESHEN_FILE,
            "dryRun": dry_run,
            "dryRunDB": dry_run_db,
            "type": self.type,
            "filename": file_name,
            "repairDB": self.repair_db,
        }
        if self.s3_directory_override:
            payload["s3DirectoryOverride"] = self.s3_directory_override
        if self.item_id_regex:
            payload["itemIDRegex"] = self.item_id_regex
        return payload


def compute_dry_run(message: FreshenerMessage, *, non_dry_run_allowed: bool) -> tuple[bool, bool]:
    """Both flags default to true; a disallowed non-dry run is forced back to dry run."""
    requested = True if message.dry_run is None else message.dry_run
    dry_run = requested if non_dry_run_allowed else True
    dry_run_db = dry_run or (True if message.dry_run_db is None else message.dry_run_db)
    return dry_run, dry_run_db


def parse_freshener_event(event: Mapping[str, Any]) -> tuple[list[FreshenerMessage], bool]:
    """Decode an invocation into messages; returns ``(messages, direct)``.

    An invocation carries either Kinesis records or direct messages, never both.
    """
    rows = event.get("Records") or []
    messages: list[FreshenerMessage] = []
    saw_kinesis = False
    saw_direct = False
    for row in rows:
        kinesis = row.get("kinesis") if isinstance(row, Mapping) else None
        if kinesis and kinesis.get("data"):
            saw_kinesis = True
            if saw_direct:
                raise PreconditionError("FRESHENER_MIXED_PAYLOAD", "kinesis record after direct message")
            try:
                payload = json.loads(decode_data(kinesis["data"]).decode("utf-8"))
            except ValueError as exc:
                raise PreconditionError("FRESHENER_MESSAGE_INVALID", str(exc)[:256]) from exc
        elif isinstance(row, Mapping) and row.get("type"):
            saw_direct = True
            if saw_kinesis:
                raise PreconditionError("FRESHENER_MIXED_PAYLOAD", "direct message after kinesis record")
            payload = row
        else:
            raise PreconditionError("FRESHENER_MESSAGE_INVALID", "record is neither a kinesis record nor a message")
        if not isinstance(payload, Mapping):
            raise PreconditionError("FRESHENER_MESSAGE_INVALID", "payload is not an object")
        messages.append(FreshenerMessage.from_payload(payload))
    return messages, saw_direct


def _optional_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "on"}
    return bool(value)
