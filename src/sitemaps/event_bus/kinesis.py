"""Kinesis publish adapter with resubmission of failed records."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
import random
import time
from typing import Any, Callable

import boto3
from botocore.config import Config

from sitemaps.errors import StreamPublishError

from .publisher import StreamEntry
from .records import encode_data


logger = logging.getLogger("sitemaps.event_bus")

PUT_RECORDS_MAX_ENTRIES = 500
PUT_RECORDS_MAX_BYTES = 5 * 1024 * 1024


@dataclass(frozen=True)
class KinesisConfig:
    region: str | None
    endpoint_url: str | None
    attempts: int = 8
    base_delay_seconds: float = 0.1
    max_delay_seconds: float = 5.0


class KinesisStreamPublisher:
    def __init__(self, config: KinesisConfig, *, sleep: Callable[[float], None] = time.sleep) -> None:
        self.config = config
        self._sleep = sleep
        self._client = boto3.client(
            "kinesis",
            region_name=config.region,
            endpoint_url=config.endpoint_url,
            config=Config(retries={"max_attempts": 10, "mode": "standard"}),
        )

    def put_records(self, stream_name: str, entries: list[StreamEntry]) -> int:
        if not stream_name:
            raise RuntimeError("KINESIS_STREAM_NAME_MISSING")
        if len(entries) > PUT_RECORDS_MAX_ENTRIES:
            raise ValueError(f"KINESIS_PUT_RECORDS_TOO_MANY:{len(entries)}")
        pending = [{"Data": encode_data(entry.payload), "PartitionKey": entry.partition_key} for entry in entries]
        attempt = 0
        while pending:
            response = self._client.put_records(StreamName=stream_name, Records=pending)
            failed_count = int(response.get("FailedRecordCount") or 0)
            if failed_count == 0:
                break
            results = response.get("Records") or []
            retry = [record for record, result in zip(pending, results) if result.get("ErrorCode")]
            attempt += 1
            logger.warning(
                "Kinesis put_records partial failure stream=%s failed=%s attempt=%s code=%s",
                stream_name,
                len(retry),
                attempt,
                _first_error_code(results),
            )
            if attempt >= self.config.attempts:
                raise StreamPublishError(stream_name, len(retry))
            delay = min(self.config.base_delay_seconds * (2 ** (attempt - 1)), self.config.max_delay_seconds)
            self._sleep(random.uniform(delay / 2, delay))
            pending = retry
        logger.info("Kinesis put_records stream=%s records=%s", stream_name, len(entries))
        return len(entries)


def build_kinesis_publisher(*, region: str | None = None, endpoint_url: str | None = None) -> KinesisStreamPublisher:
    region = region or os.getenv("AWS_DEFAULT_REGION") or os.getenv("AWS_REGION")
    endpoint = endpoint_url or os.getenv("AWS_ENDPOINT_URL") or os.getenv("KINESIS_ENDPOINT_URL")
    return KinesisStreamPublisher(KinesisConfig(region=region, endpoint_url=endpoint))


def _first_error_code(results: list[dict[str, Any]]) -> str:
    for result in results:
        code = result.get("ErrorCode")
        if code:
            return str(code)
    return ""
