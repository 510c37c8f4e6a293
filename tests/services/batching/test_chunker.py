from __future__ import annotations

import pytest

from sitemaps.batching import Chunker


def _collecting_chunker(count_limit: int, size_limit: int) -> tuple[Chunker[str], list[list[str]]]:
    chunks: list[list[str]] = []
    return Chunker(count_limit=count_limit, size_limit=size_limit, writer=chunks.append, sizer=len), chunks


def test_emits_when_count_limit_reached() -> None:
    chunker, chunks = _collecting_chunker(count_limit=2, size_limit=100)
    for record in ("a", "b", "c"):
        chunker.enqueue(record)
    assert chunks == [["a", "b"]]
    assert chunker.pending_count == 1
    chunker.flush()
    assert chunks == [["a", "b"], ["c"]]


def test_emits_before_size_limit_would_be_exceeded() -> None:
    chunker, chunks = _collecting_chunker(count_limit=10, size_limit=5)
    chunker.enqueue("aaa")
    chunker.enqueue("bb")
    chunker.enqueue("c")
    assert chunks == [["aaa", "bb"]]
    assert chunker.pending_bytes == 1
    chunker.on_idle()
    assert chunks == [["aaa", "bb"], ["c"]]


def test_rejects_record_larger_than_size_limit() -> None:
    chunker, chunks = _collecting_chunker(count_limit=10, size_limit=3)
    with pytest.raises(ValueError, match="CHUNKER_RECORD_TOO_LARGE"):
        chunker.enqueue("toolong")
    assert chunks == []


def test_flush_without_pending_is_a_no_op() -> None:
    chunker, chunks = _collecting_chunker(count_limit=2, size_limit=10)
    chunker.flush()
    assert chunks == []
