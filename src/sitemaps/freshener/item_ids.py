"""Item id extraction from stored page urls."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Any, Iterable, Mapping

from sitemaps.config import SitemapsConfig
from sitemaps.errors import InvalidItemIdPattern
from sitemaps.pages import PageStore, SitemapPage
from sitemaps.writer.naming import filename_root, page_key


logger = logging.getLogger("sitemaps.freshener.item_ids")

ITEM_ID_GROUP = "ItemID"

# JavaScript-style named groups, excluding lookbehind assertions
_JS_NAMED_GROUP = re.compile(r"\(\?<(?![=!])")


@dataclass(frozen=True)
class ItemWithId:
    item_id: str
    item: dict[str, Any]


def compile_item_id_pattern(pattern: str | None) -> re.Pattern[str]:
    """Compile an id pattern; ``(?<ItemID>...)`` is accepted as ``(?P<ItemID>...)``."""
    if not pattern:
        raise InvalidItemIdPattern("ITEM_ID_PATTERN_REQUIRED", "itemIDRegex is required")
    normalized = _JS_NAMED_GROUP.sub("(?P<", pattern)
    if f"(?P<{ITEM_ID_GROUP}>" not in normalized:
        raise InvalidItemIdPattern("ITEM_ID_GROUP_MISSING", pattern)
    try:
        return re.compile(normalized)
    except re.error as exc:
        raise InvalidItemIdPattern("ITEM_ID_PATTERN_INVALID", f"{pattern}:{exc}") from exc


def extract_item_ids(items: Iterable[Mapping[str, Any]], pattern: re.Pattern[str]) -> list[ItemWithId]:
    extracted: list[ItemWithId] = []
    for item in items:
        url = str(item.get("url") or "")
        match = pattern.search(url)
        if match is None:
            raise InvalidItemIdPattern("ITEM_ID_NOT_MATCHED", url)
        item_id = match.groupdict().get(ITEM_ID_GROUP)
        if not item_id:
            raise InvalidItemIdPattern("ITEM_ID_NOT_CAPTURED", url)
        extracted.append(ItemWithId(item_id=item_id, item=dict(item)))
    return extracted


def read_stored_page_items(
    page_store: PageStore,
    config: SitemapsConfig,
    type_name: str,
    file_name: str,
) -> list[dict[str, Any]]:
    """Entries of the stored page, or an empty list when the blob does not exist."""
    data = page_store.read_bytes_if_exists(page_key(config.sitemaps_directory, type_name, file_name))
    if data is None:
        logger.warning("Stored page missing type=%s file=%s", type_name, file_name)
        return []
    page = SitemapPage.from_bytes(data, filename_root(file_name), compress=file_name.endswith(".gz"))
    return page.items


def validate_item_id_pattern(
    page_store: PageStore,
    config: SitemapsConfig,
    *,
    type_name: str,
    file_name: str,
    pattern: str | None,
    quiet: bool = False,
) -> tuple[re.Pattern[str], list[ItemWithId]]:
    compiled = compile_item_id_pattern(pattern)
    extracted = extract_item_ids(read_stored_page_items(page_store, config, type_name, file_name), compiled)
    if not extracted and not quiet:
        raise InvalidItemIdPattern("ITEM_ID_VALIDATION_PAGE_EMPTY", f"{type_name}/{file_name}")
    return compiled, extracted
