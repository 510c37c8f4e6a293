"""Ordered read-ahead over batched lookups."""

from __future__ import annotations

from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Iterable, Iterator, TypeVar

from sitemaps.errors import PrefetchError


B = TypeVar("B")
R = TypeVar("R")


def prefetch_batches(
    batches: Iterable[B],
    fetch: Callable[[B], R],
    *,
    concurrency: int,
    max_unread: int,
) -> Iterator[R]:
    """Yield ``fetch(batch)`` results in input order.

    At most ``concurrency`` fetches run at once and at most ``max_unread``
    results are fetched ahead of the consumer. A failed fetch raises
    ``PrefetchError`` when its batch is consumed.
    """
    window = max(1, max_unread)
    source = iter(batches)
    pending: deque[tuple[int, Future]] = deque()
    index = 0
    with ThreadPoolExecutor(max_workers=max(1, concurrency), thread_name_prefix="sitemaps-prefetch") as executor:
        try:
            while True:
                while len(pending) < window:
                    try:
                        batch = next(source)
                    except StopIteration:
                        break
                    pending.append((index, executor.submit(fetch, batch)))
                    index += 1
                if not pending:
                    return
                batch_index, future = pending.popleft()
                try:
                    result = future.result()
                except Exception as exc:
                    raise PrefetchError(batch_index, exc) from exc
                yield result
        finally:
            for _, future in pending:
                future.cancel()
