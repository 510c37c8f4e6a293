"""Size and count bounded record chunking."""

from __future__ import annotations

import json
from typing import Any, Callable, Generic, TypeVar


T = TypeVar("T")


def json_size(record: Any) -> int:
    return len(json.dumps(record, ensure_ascii=True, separators=(",", ":"), default=str).encode("utf-8"))


class Chunker(Generic[T]):
    """Accumulate records and hand a chunk to ``writer`` before either limit would be exceeded."""

    def __init__(
        self,
        *,
        count_limit: int,
        size_limit: int,
        writer: Callable[[list[T]], Any],
        sizer: Callable[[T], int] = json_size,
    ) -> None:
        if count_limit < 1 or size_limit < 1:
            raise ValueError("CHUNKER_LIMITS_INVALID")
        self.count_limit = count_limit
        self.size_limit = size_limit
        self._writer = writer
        self._sizer = sizer
        self._pending: list[T] = []
        self._pending_bytes = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def pending_bytes(self) -> int:
        return self._pending_bytes

    def enqueue(self, record: T) -> None:
        size = self._sizer(record)
        if size > self.size_limit:
            raise ValueError(f"CHUNKER_RECORD_TOO_LARGE:size={size} limit={self.size_limit}")
        if self._pending and (
            len(self._pending) + 1 > self.count_limit or self._pending_bytes + size > self.size_limit
        ):
            self._emit()
        self._pending.append(record)
        self._pending_bytes += size
        if len(self._pending) >= self.count_limit:
            self._emit()

    def flush(self) -> None:
        if self._pending:
            self._emit()

    def on_idle(self) -> None:
        self.flush()

    def _emit(self) -> None:
        chunk = self._pending
        self._pending = []
        self._pending_bytes = 0
        self._writer(chunk)
