"""Runtime configuration shared by the writer, freshener and index writer."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import re
from typing import Any, Callable, Mapping

import yaml


_ENV_PATTERN = re.compile(r"^\$\{([^}:]+)(?::-([^}]*))?\}$")

NAMING_SCHEMES = ("index", "date+index", "uuidv4")
STREAM_KINDS = ("kinesis", "file")

DEFAULT_BYTES_PER_SITEMAP = 50 * 1024 * 1024


@dataclass(frozen=True)
class SitemapsConfig:
    site_base_url: str = "https://www.example.com"
    site_base_sitemap_path: str = "sitemaps"
    page_store_root: str = "s3://doc-example-bucket"
    sitemaps_directory: str = "sitemaps"
    compress_sitemap_files: bool = False
    sitemap_file_naming_scheme: str = "date+index"
    table_name: str = "sitemaps"
    store_item_state_in_db: bool = True
    items_per_sitemap_limit: int = 50000
    bytes_per_sitemap_limit: int = DEFAULT_BYTES_PER_SITEMAP
    stream_kind: str = "kinesis"
    stream_root: str = "runs/sitemaps/streams"
    kinesis_index_writer_stream_name: str = "sitemap-index-writer"
    kinesis_self_stream_name: str = "sitemaps"
    dynamodb_concurrent_writes: int = 5
    dynamodb_concurrent_reads: int = 2
    dynamodb_prefetch_max_unread: int = 4
    s3_concurrent_writes: int = 4
    incoming_compact_version: int = 0
    throw_on_compact_version: int = 0
    repair_db_file_item_list: bool = False
    non_dry_run_allowed: bool = True
    infix_dirs: tuple[str, ...] = ()
    dynamodb_batch_retries: int = 11
    dynamodb_batch_base_delay_ms: int = 2000
    region: str | None = None
    endpoint_url: str | None = None
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.sitemap_file_naming_scheme not in NAMING_SCHEMES:
            raise ValueError(f"SITEMAP_FILE_NAMING_SCHEME_INVALID:{self.sitemap_file_naming_scheme}")
        if self.stream_kind not in STREAM_KINDS:
            raise ValueError(f"STREAM_KIND_INVALID:{self.stream_kind}")
        if self.items_per_sitemap_limit <= 0:
            raise ValueError("ITEMS_PER_SITEMAP_LIMIT_INVALID")
        if self.bytes_per_sitemap_limit <= 0:
            raise ValueError("BYTES_PER_SITEMAP_LIMIT_INVALID")
        for name in (
            "dynamodb_concurrent_writes",
            "dynamodb_concurrent_reads",
            "dynamodb_prefetch_max_unread",
            "s3_concurrent_writes",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name.upper()}_INVALID")
        if self.incoming_compact_version < 0 or self.throw_on_compact_version < 0:
            raise ValueError("COMPACT_VERSION_INVALID")

    @property
    def sitemap_base_url(self) -> str:
        base = self.site_base_url.rstrip("/")
        path = self.site_base_sitemap_path.strip("/")
        return f"{base}/{path}" if path else base


def _as_str(value: Any) -> str:
    return str(value).strip()


def _as_int(value: Any) -> int:
    return int(str(value).strip())


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_optional_str(value: Any) -> str | None:
    return _none_if_blank(value)


def _as_str_tuple(value: Any) -> tuple[str, ...]:
    items = value if isinstance(value, (list, tuple)) else str(value).split(",")
    return tuple(str(item).strip().strip("/") for item in items if str(item).strip().strip("/"))


# (field, env var, parser)
_FIELDS: tuple[tuple[str, str, Callable[[Any], Any]], ...] = (
    ("site_base_url", "SITE_BASE_URL", _as_str),
    ("site_base_sitemap_path", "SITE_BASE_SITEMAP_PATH", _as_str),
    ("page_store_root", "SITEMAPS_STORE_ROOT", _as_str),
    ("sitemaps_directory", "S3_DIRECTORY", _as_str),
    ("compress_sitemap_files", "COMPRESS_SITEMAP_FILES", _as_bool),
    ("sitemap_file_naming_scheme", "SITEMAP_FILE_NAMING_SCHEME", _as_str),
    ("table_name", "TABLE_NAME", _as_str),
    ("store_item_state_in_db", "ITEM_STATE_IN_DYNAMODB", _as_bool),
    ("items_per_sitemap_limit", "ITEMS_PER_SITEMAP_LIMIT", _as_int),
    ("bytes_per_sitemap_limit", "BYTES_PER_SITEMAP_LIMIT", _as_int),
    ("stream_kind", "SITEMAPS_STREAM_KIND", _as_str),
    ("stream_root", "SITEMAPS_STREAM_ROOT", _as_str),
    ("kinesis_index_writer_stream_name", "KINESIS_INDEX_WRITER_NAME", _as_str),
    ("kinesis_self_stream_name", "KINESIS_SELF_STREAM_NAME", _as_str),
    ("dynamodb_concurrent_writes", "DYNAMODB_CONCURRENT_WRITES", _as_int),
    ("dynamodb_concurrent_reads", "DYNAMODB_CONCURRENT_READS", _as_int),
    ("dynamodb_prefetch_max_unread", "DYNAMODB_PREFETCH_MAX_UNREAD", _as_int),
    ("s3_concurrent_writes", "S3_CONCURRENT_WRITES", _as_int),
    ("incoming_compact_version", "INCOMING_COMPACT_VERSION", _as_int),
    ("throw_on_compact_version", "THROW_ON_COMPACT_VERSION", _as_int),
    ("repair_db_file_item_list", "REPAIR_DB_FILE_ITEM_LIST", _as_bool),
    ("non_dry_run_allowed", "NON_DRY_RUN_ALLOWED", _as_bool),
    ("infix_dirs", "INFIX_DIRS", _as_str_tuple),
    ("dynamodb_batch_retries", "DYNAMODB_BATCH_RETRIES", _as_int),
    ("dynamodb_batch_base_delay_ms", "DYNAMODB_BATCH_BASE_DELAY_MS", _as_int),
    ("region", "AWS_REGION", _as_optional_str),
    ("endpoint_url", "AWS_ENDPOINT_URL", _as_optional_str),
    ("log_level", "LOG_LEVEL", _as_str),
)


def load_config(profile_path: Path | None = None, *, environ: Mapping[str, str] | None = None) -> SitemapsConfig:
    """Build the config from defaults, an optional YAML profile, then env overrides.

    The profile's ``sitemaps:`` section may use ``${VAR:-default}`` tokens.
    Environment variables win over the profile so a deployed function can be
    tuned without shipping a new profile.
    """
    env = os.environ if environ is None else environ
    section: Mapping[str, Any] = {}
    if profile_path is not None:
        payload = yaml.safe_load(Path(profile_path).read_text(encoding="utf-8"))
        if not isinstance(payload, Mapping):
            raise RuntimeError("SITEMAPS_PROFILE_INVALID")
        raw = payload.get("sitemaps")
        if raw is not None and not isinstance(raw, Mapping):
            raise RuntimeError("SITEMAPS_PROFILE_SECTION_INVALID")
        section = raw or {}

    values: dict[str, Any] = {}
    for name, env_name, parse in _FIELDS:
        raw_value: Any = None
        if name in section:
            raw_value = _env(section[name], env)
        override = env.get(env_name)
        if override is not None and str(override).strip() != "":
            raw_value = override
        if raw_value is None or (isinstance(raw_value, str) and raw_value.strip() == "" and parse is not _as_optional_str):
            continue
        try:
            values[name] = parse(raw_value)
        except ValueError as exc:
            raise ValueError(f"{name.upper()}_INVALID:{raw_value}") from exc
    if values.get("region") is None:
        values["region"] = _none_if_blank(env.get("AWS_DEFAULT_REGION"))
    return SitemapsConfig(**values)


def _env(value: Any, environ: Mapping[str, str]) -> Any:
    if not isinstance(value, str):
        return value
    token = value.strip()
    match = _ENV_PATTERN.fullmatch(token)
    if not match:
        return value
    return environ.get(match.group(1), match.group(2) or "")


def _none_if_blank(value: Any) -> str | None:
    text = str(value or "").strip()
    return text or None
