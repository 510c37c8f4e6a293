"""Flat counters flushed to the log at the end of a unit of work."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
from typing import Any


logger = logging.getLogger("sitemaps.metrics")


@dataclass
class CountMetrics:
    scope: str
    dimensions: dict[str, str] = field(default_factory=dict)
    counters: dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def bump(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self.counters[key] = int(self.counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        return int(self.counters.get(key, 0))

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            counters = dict(self.counters)
        return {"scope": self.scope, "dimensions": dict(self.dimensions), "metrics": counters}

    def flush(self) -> dict[str, Any]:
        payload = self.snapshot()
        dims = " ".join(f"{key}={value}" for key, value in sorted(self.dimensions.items()))
        counters = " ".join(f"{key}={value}" for key, value in sorted(payload["metrics"].items()))
        logger.info("Metrics scope=%s %s %s", self.scope, dims, counters)
        with self._lock:
            self.counters.clear()
        return payload
