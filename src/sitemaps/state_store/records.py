"""Shard, file and item state records with explicit status transitions.

Every record lives in one DynamoDB table using a single-table key layout:

* shard state  ``PK=shardList#type#<type>``            ``SK=shardId#<shard>``
* file record  ``PK=fileList#type#<type>``             ``SK=fileName#<file>``
* item by id   ``PK=itemID#<id>#type#<type>``          ``SK=item``
* item by page ``PK=fileName#<file>#type#<type>``      ``SK=itemID#<id>``

Identifiers are lower-cased in keys and kept verbatim in attributes.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
import json
from typing import Any, Mapping

from sitemaps.errors import InvalidStatusTransition, PreconditionError


class FileStatus(str, Enum):
    EMPTY = "empty"
    WRITTEN = "written"
    DIRTY = "dirty"
    MALFORMED = "malformed"


class ItemStatus(str, Enum):
    WRITTEN = "written"
    TOWRITE = "towrite"
    TOREMOVE = "toremove"
    REMOVED = "removed"


class PersistScope(str, Enum):
    BY_ID = "by_id"
    BY_PAGE = "by_page"
    BOTH = "both"


FILE_TRANSITIONS: dict[FileStatus, frozenset[FileStatus]] = {
    FileStatus.EMPTY: frozenset({FileStatus.WRITTEN, FileStatus.DIRTY, FileStatus.MALFORMED}),
    FileStatus.WRITTEN: frozenset({FileStatus.DIRTY, FileStatus.EMPTY, FileStatus.MALFORMED}),
    FileStatus.DIRTY: frozenset({FileStatus.WRITTEN, FileStatus.EMPTY, FileStatus.MALFORMED}),
    FileStatus.MALFORMED: frozenset(),
}

ITEM_TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.WRITTEN: frozenset({ItemStatus.TOWRITE, ItemStatus.TOREMOVE}),
    ItemStatus.TOWRITE: frozenset({ItemStatus.WRITTEN, ItemStatus.TOREMOVE}),
    ItemStatus.TOREMOVE: frozenset({ItemStatus.REMOVED, ItemStatus.TOWRITE}),
    ItemStatus.REMOVED: frozenset({ItemStatus.TOWRITE, ItemStatus.TOREMOVE}),
}


def utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def shard_key(type_name: str, shard_id: int) -> dict[str, str]:
    return {"PK": f"shardList#type#{type_name.lower()}", "SK": f"shardId#{shard_id}"}


def shard_partition(type_name: str) -> str:
    return f"shardList#type#{type_name.lower()}"


def file_key(type_name: str, file_name: str) -> dict[str, str]:
    return {"PK": file_partition(type_name), "SK": f"fileName#{file_name.lower()}"}


def file_partition(type_name: str) -> str:
    return f"fileList#type#{type_name.lower()}"


def item_id_key(type_name: str, item_id: str) -> dict[str, str]:
    return {"PK": f"itemID#{item_id.lower()}#type#{type_name.lower()}", "SK": "item"}


def item_page_key(type_name: str, file_name: str, item_id: str) -> dict[str, str]:
    return {"PK": page_partition(type_name, file_name), "SK": f"itemID#{item_id.lower()}"}


def page_partition(type_name: str, file_name: str) -> str:
    return f"fileName#{file_name.lower()}#type#{type_name.lower()}"


@dataclass
class ShardState:
    type: str
    shard_id: int
    current_file_name: str = ""
    current_file_item_count: int = 0
    total_item_count: int = 0
    file_count: int = 0
    time_first_seen: str = field(default_factory=utc_now)
    time_last_written: str = field(default_factory=utc_now)

    def change_current_file(self, file_name: str) -> None:
        self.current_file_name = file_name
        self.current_file_item_count = 0
        self.file_count += 1

    def add_file_item(self) -> None:
        self.current_file_item_count += 1
        self.total_item_count += 1

    def reset_for_reuse(self) -> None:
        """Forget an allocated page that was never uploaded so its name is allocated again."""
        self.file_count = 0
        self.current_file_name = ""
        self.current_file_item_count = 0

    def touch(self) -> None:
        self.time_last_written = utc_now()

    def key(self) -> dict[str, str]:
        return shard_key(self.type, self.shard_id)

    def to_item(self) -> dict[str, Any]:
        return {
            **self.key(),
            "Type": self.type,
            "ShardId": self.shard_id,
            "CurrentFileName": self.current_file_name,
            "CurrentFileItemCount": self.current_file_item_count,
            "TotalItemCount": self.total_item_count,
            "FileCount": self.file_count,
            "TimeFirstSeen": self.time_first_seen,
            "TimeLastWritten": self.time_last_written,
        }

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "ShardState":
        return cls(
            type=str(item["Type"]),
            shard_id=int(item["ShardId"]),
            current_file_name=str(item.get("CurrentFileName") or ""),
            current_file_item_count=int(item.get("CurrentFileItemCount") or 0),
            total_item_count=int(item.get("TotalItemCount") or 0),
            file_count=int(item.get("FileCount") or 0),
            time_first_seen=str(item.get("TimeFirstSeen") or utc_now()),
            time_last_written=str(item.get("TimeLastWritten") or utc_now()),
        )


@dataclass
class FileRecord:
    type: str
    file_name: str
    file_status: FileStatus = FileStatus.EMPTY
    count_written: int = 0
    time_first_seen: str = field(default_factory=utc_now)
    time_last_written: str = field(default_factory=utc_now)
    time_dirtied: str | None = None

    def _transition(self, target: FileStatus) -> None:
        if target == self.file_status:
            return
        if target not in FILE_TRANSITIONS[self.file_status]:
            raise InvalidStatusTransition("file", self.file_status.value, target.value)
        self.file_status = target

    @property
    def malformed(self) -> bool:
        return self.file_status == FileStatus.MALFORMED

    def add_file_item(self) -> None:
        self.count_written += 1

    def remove_file_item(self) -> None:
        self.count_written = max(0, self.count_written - 1)

    def mark_dirty(self) -> None:
        self._transition(FileStatus.DIRTY)
        self.time_dirtied = utc_now()

    def clear_dirty(self) -> None:
        self._transition(FileStatus.EMPTY if self.count_written == 0 else FileStatus.WRITTEN)
        self.time_dirtied = None

    def mark_malformed(self) -> None:
        self._transition(FileStatus.MALFORMED)

    def prepare_for_save(self) -> None:
        if self.file_status == FileStatus.EMPTY and self.count_written > 0:
            self._transition(FileStatus.WRITTEN)
        if not self.malformed:
            self.time_last_written = utc_now()

    def key(self) -> dict[str, str]:
        return file_key(self.type, self.file_name)

    def to_item(self) -> dict[str, Any]:
        item = {
            **self.key(),
            "Type": self.type,
            "FileName": self.file_name,
            "FileStatus": self.file_status.value,
            "CountWritten": self.count_written,
            "TimeFirstSeen": self.time_first_seen,
            "TimeLastWritten": self.time_last_written,
        }
        if self.time_dirtied:
            item["TimeDirtied"] = self.time_dirtied
        return item

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "FileRecord":
        return cls(
            type=str(item["Type"]),
            file_name=str(item["FileName"]),
            file_status=FileStatus(str(item.get("FileStatus") or FileStatus.EMPTY.value)),
            count_written=int(item.get("CountWritten") or 0),
            time_first_seen=str(item.get("TimeFirstSeen") or utc_now()),
            time_last_written=str(item.get("TimeLastWritten") or utc_now()),
            time_dirtied=item.get("TimeDirtied") or None,
        )


@dataclass
class ItemRecord:
    """One logical item persisted under a by-id key and a by-page key.

    ``db_items`` is the only place the physical copies are rendered. A copy
    produced by ``page_scoped_copy`` may only be persisted under its page key,
    which keeps reconciliation from repointing the canonical by-id copy.
    """

    type: str
    item_id: str
    file_name: str
    payload: dict[str, Any] | None = None
    item_status: ItemStatus = ItemStatus.WRITTEN
    time_first_seen: str = field(default_factory=utc_now)
    time_last_written: str = field(default_factory=utc_now)
    time_dirtied: str | None = None
    page_scoped_only: bool = field(default=False, compare=False)

    def _transition(self, target: ItemStatus) -> None:
        if target == self.item_status:
            return
        if target not in ITEM_TRANSITIONS[self.item_status]:
            raise InvalidStatusTransition("item", self.item_status.value, target.value)
        self.item_status = target

    def mark_towrite(self) -> None:
        self._transition(ItemStatus.TOWRITE)
        self.time_dirtied = utc_now()

    def mark_toremove(self) -> None:
        self._transition(ItemStatus.TOREMOVE)
        self.time_dirtied = utc_now()

    def clear_dirty(self) -> None:
        if self.item_status == ItemStatus.TOWRITE:
            self._transition(ItemStatus.WRITTEN)
        elif self.item_status == ItemStatus.TOREMOVE:
            self._transition(ItemStatus.REMOVED)
        self.time_dirtied = None

    def payload_equals(self, payload: Mapping[str, Any] | None) -> bool:
        return _canonical_json(self.payload) == _canonical_json(payload)

    def page_scoped_copy(self, file_name: str) -> "ItemRecord":
        return replace(self, file_name=file_name, page_scoped_only=True)

    def touch(self) -> None:
        self.time_last_written = utc_now()

    def db_items(self, scope: PersistScope) -> list[dict[str, Any]]:
        if self.page_scoped_only and scope != PersistScope.BY_PAGE:
            raise PreconditionError("PAGE_SCOPED_RECORD", f"type={self.type} item_id={self.item_id} scope={scope.value}")
        attrs = self._attributes()
        items: list[dict[str, Any]] = []
        if scope in (PersistScope.BY_ID, PersistScope.BOTH):
            items.append({**item_id_key(self.type, self.item_id), **attrs})
        if scope in (PersistScope.BY_PAGE, PersistScope.BOTH):
            items.append({**item_page_key(self.type, self.file_name, self.item_id), **attrs})
        return items

    def _attributes(self) -> dict[str, Any]:
        attrs: dict[str, Any] = {
            "Type": self.type,
            "ItemID": self.item_id,
            "FileName": self.file_name,
            "ItemStatus": self.item_status.value,
            "TimeFirstSeen": self.time_first_seen,
            "TimeLastWritten": self.time_last_written,
        }
        if self.payload is not None:
            attrs["ItemPayload"] = _canonical_json(self.payload)
        if self.time_dirtied:
            attrs["TimeDirtied"] = self.time_dirtied
        return attrs

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "ItemRecord":
        raw_payload = item.get("ItemPayload")
        payload = json.loads(raw_payload) if isinstance(raw_payload, str) and raw_payload else None
        return cls(
            type=str(item["Type"]),
            item_id=str(item["ItemID"]),
            file_name=str(item.get("FileName") or ""),
            payload=payload,
            item_status=ItemStatus(str(item.get("ItemStatus") or ItemStatus.WRITTEN.value)),
            time_first_seen=str(item.get("TimeFirstSeen") or utc_now()),
            time_last_written=str(item.get("TimeLastWritten") or utc_now()),
            time_dirtied=item.get("TimeDirtied") or None,
        )


def _canonical_json(payload: Mapping[str, Any] | None) -> str | None:
    if payload is None:
        return None
    return json.dumps(payload, sort_keys=True, ensure_ascii=True, separators=(",", ":"))
