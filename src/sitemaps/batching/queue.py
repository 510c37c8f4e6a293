"""Bounded-concurrency background queue with backpressure."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
import logging
import threading
from typing import Any, Callable

from sitemaps.errors import BackgroundWriterError, reason_code


logger = logging.getLogger("sitemaps.batching.queue")


class BackgroundQueue:
    """Run jobs on a thread pool; ``enqueue`` blocks once ``concurrency + backlog`` jobs are in flight.

    Every job returns a ``Future``. Failures are also collected in ``errors`` so
    producers can fail fast with ``raise_if_failed`` between enqueues, and
    ``join`` waits for every job and raises the first failure in submission
    order.
    """

    def __init__(self, name: str, *, concurrency: int, backlog: int | None = None) -> None:
        if concurrency < 1:
            raise ValueError("BACKGROUND_QUEUE_CONCURRENCY_INVALID")
        self.name = name
        self.concurrency = concurrency
        self.backlog = concurrency if backlog is None else max(0, backlog)
        self._executor = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix=f"sitemaps-{name}")
        self._slots = threading.BoundedSemaphore(concurrency + self.backlog)
        self._lock = threading.Lock()
        self._futures: list[Future] = []
        self._errors: list[BaseException] = []

    @property
    def errors(self) -> list[BaseException]:
        with self._lock:
            return list(self._errors)

    def enqueue(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        self._slots.acquire()
        try:
            future = self._executor.submit(func, *args, **kwargs)
        except BaseException:
            self._slots.release()
            raise
        with self._lock:
            self._futures.append(future)
        future.add_done_callback(self._on_done)
        return future

    def raise_if_failed(self) -> None:
        errors = self.errors
        if errors:
            raise BackgroundWriterError(self.name, errors[0]) from errors[0]

    def join(self) -> None:
        with self._lock:
            futures = list(self._futures)
        wait(futures)
        with self._lock:
            self._futures = [future for future in self._futures if not future.done()]
        for future in futures:
            exc = future.exception()
            if exc is not None:
                raise BackgroundWriterError(self.name, exc) from exc

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def _on_done(self, future: Future) -> None:
        self._slots.release()
        if future.cancelled():
            return
        exc = future.exception()
        if exc is None:
            return
        logger.error("Background job failed queue=%s code=%s detail=%s", self.name, reason_code(exc), str(exc)[:256])
        with self._lock:
            self._errors.append(exc)
