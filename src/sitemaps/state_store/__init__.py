"""State store for shard, file and item records."""

from .records import FileRecord, FileStatus, ItemRecord, ItemStatus, PersistScope, ShardState
from .store import SitemapStateStore, build_state_store

__all__ = [
    "FileRecord",
    "FileStatus",
    "ItemRecord",
    "ItemStatus",
    "PersistScope",
    "ShardState",
    "SitemapStateStore",
    "build_state_store",
]
