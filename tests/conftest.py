from __future__ import annotations

import base64
import copy
from datetime import datetime, timezone
import json
from pathlib import Path
import threading
from typing import Any, Callable

import pytest

from sitemaps.config import SitemapsConfig
from sitemaps.event_bus import FileStreamPublisher
from sitemaps.pages import LocalPageStore
from sitemaps.state_store import SitemapStateStore


FIXED_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeDynamoDBClient:
    """In-memory stand-in for the low-level DynamoDB client calls the state store makes."""

    def __init__(self) -> None:
        self.tables: dict[str, dict[tuple[str, str], dict[str, Any]]] = {}
        self.query_page_size = 1000
        # each batch call holds back the next planned number of keys/items
        self.unprocessed_plan: list[int] = []
        self.batch_write_error: Exception | None = None
        self.batch_get_calls: list[int] = []
        self.batch_write_calls: list[int] = []
        self._lock = threading.Lock()

    def _table(self, name: str) -> dict[tuple[str, str], dict[str, Any]]:
        return self.tables.setdefault(name, {})

    def _hold_back(self, size: int) -> int:
        if not self.unprocessed_plan:
            return 0
        return min(size, self.unprocessed_plan.pop(0))

    def get_item(self, *, TableName: str, Key: dict[str, Any], ConsistentRead: bool = False) -> dict[str, Any]:
        with self._lock:
            item = self._table(TableName).get((Key["PK"]["S"], Key["SK"]["S"]))
            return {"Item": copy.deepcopy(item)} if item else {}

    def put_item(self, *, TableName: str, Item: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self._table(TableName)[(Item["PK"]["S"], Item["SK"]["S"])] = copy.deepcopy(Item)
        return {}

    def query(self, **kwargs: Any) -> dict[str, Any]:
        partition = kwargs["ExpressionAttributeValues"][":pk"]["S"]
        start = kwargs.get("ExclusiveStartKey")
        with self._lock:
            keys = sorted(key for key in self._table(kwargs["TableName"]) if key[0] == partition)
            if start:
                keys = [key for key in keys if key > (start["PK"]["S"], start["SK"]["S"])]
            page = keys[: self.query_page_size]
            response: dict[str, Any] = {"Items": [copy.deepcopy(self._table(kwargs["TableName"])[key]) for key in page]}
        if len(keys) > len(page):
            last = page[-1]
            response["LastEvaluatedKey"] = {"PK": {"S": last[0]}, "SK": {"S": last[1]}}
        return response

    def batch_get_item(self, *, RequestItems: dict[str, dict[str, Any]]) -> dict[str, Any]:
        responses: dict[str, list[dict[str, Any]]] = {}
        unprocessed: dict[str, dict[str, Any]] = {}
        with self._lock:
            for table_name, spec in RequestItems.items():
                keys = list(spec["Keys"])
                self.batch_get_calls.append(len(keys))
                held = self._hold_back(len(keys))
                served = keys[: len(keys) - held]
                if held:
                    unprocessed[table_name] = {**spec, "Keys": keys[len(keys) - held :]}
                table = self._table(table_name)
                rows = []
                for key in served:
                    item = table.get((key["PK"]["S"], key["SK"]["S"]))
                    if item:
                        rows.append(copy.deepcopy(item))
                responses[table_name] = rows
        return {"Responses": responses, "UnprocessedKeys": unprocessed}

    def batch_write_item(self, *, RequestItems: dict[str, list[dict[str, Any]]]) -> dict[str, Any]:
        if self.batch_write_error is not None:
            raise self.batch_write_error
        unprocessed: dict[str, list[dict[str, Any]]] = {}
        with self._lock:
            for table_name, requests in RequestItems.items():
                self.batch_write_calls.append(len(requests))
                held = self._hold_back(len(requests))
                applied = requests[: len(requests) - held]
                if held:
                    unprocessed[table_name] = requests[len(requests) - held :]
                table = self._table(table_name)
                for request in applied:
                    item = request["PutRequest"]["Item"]
                    table[(item["PK"]["S"], item["SK"]["S"])] = copy.deepcopy(item)
        return {"UnprocessedItems": unprocessed}

    def keys(self, table_name: str, partition_prefix: str = "") -> list[tuple[str, str]]:
        return sorted(key for key in self._table(table_name) if key[0].startswith(partition_prefix))


class FakeKinesisClient:
    def __init__(self, failures: list[int] | None = None) -> None:
        # number of leading records to fail on each successive call
        self.failures = list(failures or [])
        self.calls: list[list[dict[str, Any]]] = []

    def put_records(self, *, StreamName: str, Records: list[dict[str, Any]]) -> dict[str, Any]:
        self.calls.append(list(Records))
        failing = min(len(Records), self.failures.pop(0)) if self.failures else 0
        results = []
        for index, _ in enumerate(Records):
            if index < failing:
                results.append({"ErrorCode": "ProvisionedThroughputExceededException", "ErrorMessage": "slow down"})
            else:
                results.append({"SequenceNumber": str(len(self.calls) * 1000 + index), "ShardId": "shardId-000000000000"})
        return {"FailedRecordCount": failing, "Records": results}


def kinesis_event(payloads: list[Any], *, shard_id: int = 0, partition_key: str = "pk") -> dict[str, Any]:
    records = []
    for index, payload in enumerate(payloads):
        raw = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        records.append(
            {
                "eventID": f"shardId-{shard_id:012d}:{49600000000000000000 + index}",
                "kinesis": {
                    "data": base64.b64encode(raw).decode("ascii"),
                    "partitionKey": partition_key,
                    "sequenceNumber": str(49600000000000000000 + index),
                },
            }
        )
    return {"Records": records}


@pytest.fixture
def dynamodb() -> FakeDynamoDBClient:
    return FakeDynamoDBClient()


@pytest.fixture
def state_store(dynamodb: FakeDynamoDBClient) -> SitemapStateStore:
    return SitemapStateStore(table_name="sitemaps-test", client=dynamodb, base_delay_ms=1, sleep=lambda _: None)


@pytest.fixture
def page_root(tmp_path: Path) -> Path:
    return tmp_path / "pages"


@pytest.fixture
def page_store(page_root: Path) -> LocalPageStore:
    return LocalPageStore(page_root)


@pytest.fixture
def publisher(tmp_path: Path) -> FileStreamPublisher:
    return FileStreamPublisher(tmp_path / "streams")


@pytest.fixture
def sitemaps_config(tmp_path: Path, page_root: Path) -> SitemapsConfig:
    return SitemapsConfig(
        site_base_url="https://www.example.com",
        site_base_sitemap_path="sitemaps",
        page_store_root=str(page_root),
        sitemaps_directory="sitemaps",
        sitemap_file_naming_scheme="index",
        table_name="sitemaps-test",
        stream_kind="file",
        stream_root=str(tmp_path / "streams"),
        kinesis_index_writer_stream_name="sitemap-index-writer",
        kinesis_self_stream_name="sitemaps",
        dynamodb_concurrent_writes=2,
        s3_concurrent_writes=2,
    )


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def make_event() -> Callable[..., dict[str, Any]]:
    return kinesis_event


@pytest.fixture
def kinesis_client_factory() -> Callable[..., FakeKinesisClient]:
    return FakeKinesisClient
