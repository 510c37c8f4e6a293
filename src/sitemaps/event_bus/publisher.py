"""Stream publisher interface + local file-stream adapter."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import os
from pathlib import Path
import threading
from typing import Any, Protocol


@dataclass(frozen=True)
class StreamEntry:
    partition_key: str
    payload: dict[str, Any]


class StreamPublisher(Protocol):
    def put_records(self, stream_name: str, entries: list[StreamEntry]) -> int:
        ...


class FileStreamPublisher:
    """Local append-only stream for development runs; one jsonl file per stream."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def put_records(self, stream_name: str, entries: list[StreamEntry]) -> int:
        log_path = self.root / f"{stream_name}.jsonl"
        published_at = datetime.now(tz=timezone.utc).isoformat()
        with self._lock, log_path.open("a", encoding="utf-8") as handle:
            for entry in entries:
                record = {
                    "partition_key": entry.partition_key,
                    "payload": entry.payload,
                    "published_at_utc": published_at,
                }
                handle.write(json.dumps(record, ensure_ascii=True, separators=(",", ":")) + "\n")
            handle.flush()
            os.fsync(handle.fileno())
        return len(entries)

    def read(self, stream_name: str) -> list[dict[str, Any]]:
        log_path = self.root / f"{stream_name}.jsonl"
        if not log_path.exists():
            return []
        with log_path.open("r", encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]
