"""Sitemap page naming schemes."""

from __future__ import annotations

from datetime import date, datetime, timezone
import uuid
from typing import Callable


def page_name_root(
    type_name: str,
    shard_id: int,
    file_count: int,
    scheme: str,
    *,
    today: date | None = None,
    uuid_factory: Callable[[], uuid.UUID] = uuid.uuid4,
) -> str:
    """Root filename (no extension) for the next page of a shard.

    ``index`` -> ``<type>-<shard:03>-<n:05>``, ``date+index`` ->
    ``<type>-<YYYY-MM-DD>-<shard:03>-<n:05>`` and ``uuidv4`` ->
    ``<type>-<shard:03>-<uuid>``, where ``n = file_count + 1``.
    """
    padded_shard = f"{shard_id:03d}"
    if scheme == "uuidv4":
        return f"{type_name}-{padded_shard}-{uuid_factory()}"
    padded_index = f"{file_count + 1:05d}"
    if scheme == "index":
        return f"{type_name}-{padded_shard}-{padded_index}"
    if scheme == "date+index":
        day = today or datetime.now(tz=timezone.utc).date()
        return f"{type_name}-{day.isoformat()}-{padded_shard}-{padded_index}"
    raise ValueError(f"SITEMAP_FILE_NAMING_SCHEME_INVALID:{scheme}")


def filename_root(file_name: str) -> str:
    for suffix in (".xml.gz", ".xml"):
        if file_name.endswith(suffix):
            return file_name[: -len(suffix)]
    return file_name


def page_key(sitemaps_directory: str, type_name: str, file_name: str, *subdirs: str) -> str:
    parts = [part.strip("/") for part in (sitemaps_directory, type_name, *subdirs) if part and part.strip("/")]
    return "/".join([*parts, file_name])
