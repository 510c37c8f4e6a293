"""DynamoDB-backed state store for shards, files and items."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.config import Config

from sitemaps.config import SitemapsConfig
from sitemaps.errors import UnprocessedBatchError

from .batch import (
    BATCH_GET_MAX_KEYS,
    BATCH_WRITE_MAX_ITEMS,
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_RETRIES,
    batch_get_with_retry,
    batch_write_with_retry,
    chunked,
)
from .records import (
    FileRecord,
    ItemRecord,
    PersistScope,
    ShardState,
    file_key,
    file_partition,
    item_id_key,
    page_partition,
    shard_key,
    shard_partition,
)


logger = logging.getLogger("sitemaps.state_store")

_SERIALIZER = TypeSerializer()
_DESERIALIZER = TypeDeserializer()


class SitemapStateStore:
    def __init__(
        self,
        *,
        table_name: str,
        client: Any,
        retries: int = DEFAULT_RETRIES,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.table_name = table_name
        self._client = client
        self._retries = retries
        self._base_delay_ms = base_delay_ms
        self._sleep = sleep

    # Shard state

    def load_shard_state(self, type_name: str, shard_id: int) -> ShardState | None:
        item = self._get(shard_key(type_name, shard_id))
        return ShardState.from_item(item) if item else None

    def load_shard_states(self, type_name: str) -> list[ShardState]:
        return [ShardState.from_item(item) for item in self._query(shard_partition(type_name))]

    def save_shard_state(self, state: ShardState) -> None:
        state.touch()
        self._put(state.to_item())

    # File records

    def load_file_record(self, type_name: str, file_name: str) -> FileRecord | None:
        item = self._get(file_key(type_name, file_name))
        return FileRecord.from_item(item) if item else None

    def load_file_records(self, type_name: str) -> list[FileRecord]:
        return [FileRecord.from_item(item) for item in self._query(file_partition(type_name))]

    def save_file_record(self, record: FileRecord) -> None:
        record.prepare_for_save()
        self._put(record.to_item())

    # Items

    def load_item(self, type_name: str, item_id: str) -> ItemRecord | None:
        item = self._get(item_id_key(type_name, item_id))
        return ItemRecord.from_item(item) if item else None

    def load_items(self, type_name: str, item_ids: Iterable[str]) -> dict[str, ItemRecord]:
        """Batch-load canonical by-id records, keyed by lower-cased item id."""
        unique: dict[str, str] = {}
        for item_id in item_ids:
            unique.setdefault(item_id.lower(), item_id)
        found: dict[str, ItemRecord] = {}
        for chunk in chunked(list(unique.values()), BATCH_GET_MAX_KEYS):
            keys = [_serialize(item_id_key(type_name, item_id)) for item_id in chunk]
            responses, unprocessed = batch_get_with_retry(
                self._client,
                {self.table_name: {"Keys": keys, "ConsistentRead": True}},
                retries=self._retries,
                base_delay_ms=self._base_delay_ms,
                sleep=self._sleep,
            )
            if unprocessed:
                remaining = sum(len(spec.get("Keys") or []) for spec in unprocessed.values())
                raise UnprocessedBatchError("batch_get", remaining)
            for row in responses.get(self.table_name, []):
                record = ItemRecord.from_item(_deserialize(row))
                found[record.item_id.lower()] = record
        return found

    def load_page_items(self, type_name: str, file_name: str) -> list[ItemRecord]:
        return [ItemRecord.from_item(item) for item in self._query(page_partition(type_name, file_name))]

    def save_item(self, record: ItemRecord, scope: PersistScope = PersistScope.BOTH) -> None:
        record.touch()
        for item in record.db_items(scope):
            self._put(item)

    def save_items(self, records: Iterable[ItemRecord], scope: PersistScope = PersistScope.BOTH) -> None:
        """Write records in batches of 25; by-id copies land before by-page copies."""
        records = list(records)
        for record in records:
            record.touch()
        if scope == PersistScope.BOTH:
            phases = (PersistScope.BY_ID, PersistScope.BY_PAGE)
        else:
            phases = (scope,)
        for phase in phases:
            rendered: dict[tuple[str, str], dict[str, Any]] = {}
            for record in records:
                for item in record.db_items(phase):
                    rendered[(item["PK"], item["SK"])] = item
            for chunk in chunked(list(rendered.values()), BATCH_WRITE_MAX_ITEMS):
                requests = [{"PutRequest": {"Item": _serialize(item)}} for item in chunk]
                unprocessed = batch_write_with_retry(
                    self._client,
                    {self.table_name: requests},
                    retries=self._retries,
                    base_delay_ms=self._base_delay_ms,
                    sleep=self._sleep,
                )
                if unprocessed:
                    raise UnprocessedBatchError("batch_write", sum(len(rows) for rows in unprocessed.values()))
            logger.debug("State store saved items table=%s scope=%s count=%s", self.table_name, phase.value, len(rendered))

    # Low-level helpers

    def _get(self, key: dict[str, str]) -> dict[str, Any] | None:
        response = self._client.get_item(TableName=self.table_name, Key=_serialize(key), ConsistentRead=True)
        item = response.get("Item")
        return _deserialize(item) if item else None

    def _put(self, item: dict[str, Any]) -> None:
        self._client.put_item(TableName=self.table_name, Item=_serialize(item))

    def _query(self, partition: str) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        kwargs: dict[str, Any] = {
            "TableName": self.table_name,
            "KeyConditionExpression": "PK = :pk",
            "ExpressionAttributeValues": {":pk": {"S": partition}},
            "ConsistentRead": True,
        }
        while True:
            response = self._client.query(**kwargs)
            rows.extend(_deserialize(item) for item in response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return rows
            kwargs["ExclusiveStartKey"] = last_key


def build_state_store(config: SitemapsConfig, *, client: Any | None = None) -> SitemapStateStore:
    if client is None:
        client = boto3.client(
            "dynamodb",
            region_name=config.region,
            endpoint_url=config.endpoint_url,
            config=Config(retries={"max_attempts": 16, "mode": "standard"}),
        )
    return SitemapStateStore(
        table_name=config.table_name,
        client=client,
        retries=config.dynamodb_batch_retries,
        base_delay_ms=config.dynamodb_batch_base_delay_ms,
    )


def _serialize(item: dict[str, Any]) -> dict[str, Any]:
    return {key: _SERIALIZER.serialize(value) for key, value in item.items()}


def _deserialize(item: dict[str, Any]) -> dict[str, Any]:
    return {key: _DESERIALIZER.deserialize(value) for key, value in item.items()}
