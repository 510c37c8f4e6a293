from __future__ import annotations

import threading
import time

import pytest

from sitemaps.batching import prefetch_batches
from sitemaps.errors import PrefetchError


def test_results_arrive_in_input_order() -> None:
    def fetch(batch: list[int]) -> list[int]:
        # later batches finish first
        time.sleep(0.02 * (3 - batch[0]))
        return [value * 10 for value in batch]

    results = list(prefetch_batches([[0], [1], [2]], fetch, concurrency=3, max_unread=3))
    assert results == [[0], [10], [20]]


def test_read_ahead_is_bounded() -> None:
    fetched: list[int] = []
    lock = threading.Lock()

    def fetch(batch: int) -> int:
        with lock:
            fetched.append(batch)
        return batch

    iterator = prefetch_batches(range(10), fetch, concurrency=1, max_unread=2)
    assert next(iterator) == 0
    time.sleep(0.05)
    with lock:
        assert len(fetched) <= 3
    assert list(iterator) == list(range(1, 10))


def test_fetch_failure_is_wrapped_with_batch_index() -> None:
    def fetch(batch: int) -> int:
        if batch == 1:
            raise RuntimeError("READ_FAILED")
        return batch

    iterator = prefetch_batches([0, 1, 2], fetch, concurrency=1, max_unread=1)
    assert next(iterator) == 0
    with pytest.raises(PrefetchError) as excinfo:
        next(iterator)
    assert excinfo.value.batch_index == 1
