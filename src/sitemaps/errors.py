"""Sitemaps error taxonomy and helpers."""

from __future__ import annotations


class SitemapsError(RuntimeError):
    """Stable error surfaced as a reason code."""

    def __init__(self, code: str, detail: str | None = None) -> None:
        self.code = code
        self.detail = detail
        message = f"{code}:{detail}" if detail else code
        super().__init__(message)


class PreconditionError(SitemapsError):
    """Caller-supplied input violates a contract; never retried."""


class MixedShardError(PreconditionError):
    def __init__(self, expected: int, found: int) -> None:
        super().__init__("MIXED_SHARD_IDS", f"expected={expected} found={found}")
        self.expected = expected
        self.found = found


class CompactVersionHalt(SitemapsError):
    def __init__(self, version: int) -> None:
        super().__init__("COMPACT_VERSION_HALT", f"compact_version={version}")
        self.version = version


class InvalidItemIdPattern(PreconditionError):
    pass


class InvalidStatusTransition(SitemapsError):
    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__("INVALID_STATUS_TRANSITION", f"{entity}:{current}->{target}")
        self.entity = entity
        self.current = current
        self.target = target


class UnprocessedBatchError(SitemapsError):
    def __init__(self, operation: str, remaining: int) -> None:
        super().__init__("UNPROCESSED_BATCH", f"{operation} remaining={remaining}")
        self.operation = operation
        self.remaining = remaining


class BackgroundWriterError(SitemapsError):
    def __init__(self, queue_name: str, cause: BaseException) -> None:
        super().__init__("BACKGROUND_WRITER_FAILED", f"{queue_name}:{reason_code(cause)}")
        self.queue_name = queue_name
        self.cause = cause


class PrefetchError(SitemapsError):
    def __init__(self, batch_index: int, cause: BaseException) -> None:
        super().__init__("PREFETCH_FAILED", f"batch={batch_index}:{reason_code(cause)}")
        self.batch_index = batch_index
        self.cause = cause


class StreamPublishError(SitemapsError):
    def __init__(self, stream_name: str, failed: int) -> None:
        super().__init__("STREAM_PUBLISH_FAILED", f"stream={stream_name} failed={failed}")
        self.stream_name = stream_name
        self.failed = failed


def reason_code(exc: BaseException) -> str:
    if isinstance(exc, SitemapsError):
        return exc.code
    text = str(exc or "").strip()
    if text.isupper():
        return text
    if ":" in text:
        head = text.split(":", 1)[0].strip()
        if head.isupper():
            return head
    return "INTERNAL_ERROR"
