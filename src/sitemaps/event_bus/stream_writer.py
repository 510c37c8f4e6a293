"""Chunked background writes into a stream."""

from __future__ import annotations

from concurrent.futures import Future
import logging

from sitemaps.batching import BackgroundQueue, Chunker

from .kinesis import PUT_RECORDS_MAX_BYTES, PUT_RECORDS_MAX_ENTRIES
from .publisher import StreamEntry, StreamPublisher
from .records import encode_data


logger = logging.getLogger("sitemaps.event_bus.stream_writer")


def entry_size(entry: StreamEntry) -> int:
    return len(encode_data(entry.payload)) + len(entry.partition_key.encode("utf-8"))


class StreamWriter:
    """Chunk entries to Kinesis batch limits and publish them on a single background worker."""

    def __init__(
        self,
        publisher: StreamPublisher,
        stream_name: str,
        *,
        concurrency: int = 1,
        count_limit: int = PUT_RECORDS_MAX_ENTRIES,
        size_limit: int = int(PUT_RECORDS_MAX_BYTES * 0.95),
    ) -> None:
        self.stream_name = stream_name
        self._publisher = publisher
        self._queue = BackgroundQueue(f"stream-{stream_name}", concurrency=concurrency)
        self._chunker: Chunker[StreamEntry] = Chunker(
            count_limit=count_limit,
            size_limit=size_limit,
            writer=self._submit,
            sizer=entry_size,
        )
        self.enqueued = 0

    @property
    def errors(self) -> list[BaseException]:
        return self._queue.errors

    def enqueue(self, entry: StreamEntry) -> None:
        self._chunker.enqueue(entry)
        self.enqueued += 1

    def raise_if_failed(self) -> None:
        self._queue.raise_if_failed()

    def join(self) -> None:
        self._chunker.flush()
        self._queue.join()

    def close(self) -> None:
        self._queue.close()

    def _submit(self, chunk: list[StreamEntry]) -> Future:
        logger.debug("Stream chunk submitted stream=%s records=%s", self.stream_name, len(chunk))
        return self._queue.enqueue(self._publisher.put_records, self.stream_name, chunk)
