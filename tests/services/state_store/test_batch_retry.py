from __future__ import annotations

from sitemaps.state_store.batch import backoff_delay_seconds, batch_write_with_retry, chunked


def test_backoff_window_grows_exponentially() -> None:
    seen: list[tuple[float, float]] = []

    def fake_uniform(low: float, high: float) -> float:
        seen.append((low, high))
        return high

    assert backoff_delay_seconds(1, 2000, rand=fake_uniform) == 4.0
    assert backoff_delay_seconds(3, 2000, rand=fake_uniform) == 16.0
    assert seen == [(2000.0, 4000.0), (2000.0, 16000.0)]


def test_batch_write_sleeps_between_resubmissions(dynamodb) -> None:
    sleeps: list[float] = []
    dynamodb.unprocessed_plan = [1, 1]
    requests = [
        {"PutRequest": {"Item": {"PK": {"S": f"pk{index}"}, "SK": {"S": "item"}}}} for index in range(2)
    ]
    remaining = batch_write_with_retry(dynamodb, {"t": requests}, retries=5, base_delay_ms=10, sleep=sleeps.append)
    assert remaining == {}
    assert len(sleeps) == 2
    assert 0.01 <= sleeps[0] <= 0.02
    assert 0.01 <= sleeps[1] <= 0.04
    assert dynamodb.keys("t") == [("pk0", "item"), ("pk1", "item")]


def test_chunked_keeps_order() -> None:
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert chunked([], 25) == []
