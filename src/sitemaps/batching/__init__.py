"""Chunking, background queues and prefetch."""

from .chunker import Chunker, json_size
from .prefetch import prefetch_batches
from .queue import BackgroundQueue

__all__ = ["BackgroundQueue", "Chunker", "json_size", "prefetch_batches"]
