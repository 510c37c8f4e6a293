"""Batch get/write helpers that resubmit unprocessed keys and items."""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable


logger = logging.getLogger("sitemaps.state_store.batch")

BATCH_GET_MAX_KEYS = 100
BATCH_WRITE_MAX_ITEMS = 25
DEFAULT_RETRIES = 11
DEFAULT_BASE_DELAY_MS = 2000


def backoff_delay_seconds(attempt: int, base_delay_ms: int, *, rand: Callable[[float, float], float] = random.uniform) -> float:
    """Jittered exponential delay in ``[base, base * 2**attempt)``."""
    low = float(base_delay_ms)
    high = float(base_delay_ms) * (2 ** attempt)
    return rand(low, high) / 1000.0


def batch_get_with_retry(
    client: Any,
    request_items: dict[str, dict[str, Any]],
    *,
    retries: int = DEFAULT_RETRIES,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[dict[str, list[dict[str, Any]]], dict[str, dict[str, Any]]]:
    """Return ``(responses, unprocessed_keys)``; the remainder is non-empty only once retries are exhausted."""
    responses: dict[str, list[dict[str, Any]]] = {}
    pending = request_items
    attempt = 0
    while True:
        response = client.batch_get_item(RequestItems=pending)
        for table, rows in (response.get("Responses") or {}).items():
            responses.setdefault(table, []).extend(rows)
        unprocessed = _non_empty_keys(response.get("UnprocessedKeys") or {})
        if not unprocessed:
            return responses, {}
        if attempt >= retries:
            logger.warning(
                "Batch get retries exhausted attempts=%s remaining=%s",
                attempt + 1,
                _count_keys(unprocessed),
            )
            return responses, unprocessed
        attempt += 1
        delay = backoff_delay_seconds(attempt, base_delay_ms)
        logger.info("Batch get unprocessed remaining=%s attempt=%s delay=%.3f", _count_keys(unprocessed), attempt, delay)
        sleep(delay)
        pending = unprocessed


def batch_write_with_retry(
    client: Any,
    request_items: dict[str, list[dict[str, Any]]],
    *,
    retries: int = DEFAULT_RETRIES,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, list[dict[str, Any]]]:
    """Return the unprocessed write requests left after retries are exhausted."""
    pending = request_items
    attempt = 0
    while True:
        response = client.batch_write_item(RequestItems=pending)
        unprocessed = {table: rows for table, rows in (response.get("UnprocessedItems") or {}).items() if rows}
        if not unprocessed:
            return {}
        if attempt >= retries:
            logger.warning(
                "Batch write retries exhausted attempts=%s remaining=%s",
                attempt + 1,
                sum(len(rows) for rows in unprocessed.values()),
            )
            return unprocessed
        attempt += 1
        delay = backoff_delay_seconds(attempt, base_delay_ms)
        logger.info(
            "Batch write unprocessed remaining=%s attempt=%s delay=%.3f",
            sum(len(rows) for rows in unprocessed.values()),
            attempt,
            delay,
        )
        sleep(delay)
        pending = unprocessed


def chunked(values: list[Any], size: int) -> list[list[Any]]:
    return [values[index : index + size] for index in range(0, len(values), size)]


def _non_empty_keys(unprocessed: dict[str, dict[str, Any]]) -> dict[str, dict[str, Any]]:
    return {table: spec for table, spec in unprocessed.items() if spec and spec.get("Keys")}


def _count_keys(unprocessed: dict[str, dict[str, Any]]) -> int:
    return sum(len(spec.get("Keys") or []) for spec in unprocessed.values())
