"""Entry points for the sitemap writer (Lambda + local CLI)."""

from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
from typing import Any

from sitemaps.config import SitemapsConfig, load_config
from sitemaps.event_bus import build_stream_publisher
from sitemaps.logging_utils import configure_logging
from sitemaps.pages import build_page_store
from sitemaps.state_store import build_state_store

from .engine import SitemapWriterService


logger = logging.getLogger("sitemaps.writer.handler")

_SERVICE: SitemapWriterService | None = None


def build_writer_service(config: SitemapsConfig) -> SitemapWriterService:
    return SitemapWriterService(
        config,
        state_store=build_state_store(config),
        page_store=build_page_store(config.page_store_root, endpoint_url=config.endpoint_url, region_name=config.region),
        publisher=build_stream_publisher(config),
    )


def lambda_handler(event: dict[str, Any], _context: Any) -> dict[str, Any]:
    global _SERVICE
    if _SERVICE is None:
        profile = os.getenv("SITEMAPS_PROFILE")
        config = load_config(Path(profile) if profile else None)
        configure_logging(config.log_level)
        logger.info(
            "Sitemap writer config table=%s store_root=%s naming=%s items_limit=%s compact_version=%s",
            config.table_name,
            config.page_store_root,
            config.sitemap_file_naming_scheme,
            config.items_per_sitemap_limit,
            config.incoming_compact_version,
        )
        _SERVICE = build_writer_service(config)
    return _SERVICE.handle(event)


def main() -> None:
    parser = argparse.ArgumentParser(description="Sitemap writer")
    parser.add_argument("--profile", default=None, help="Path to sitemaps profile YAML")
    parser.add_argument("--event", required=True, help="Path to a Kinesis event JSON file")
    args = parser.parse_args()

    config = load_config(Path(args.profile) if args.profile else None)
    configure_logging(config.log_level)
    event = json.loads(Path(args.event).read_text(encoding="utf-8"))
    summary = build_writer_service(config).handle(event)
    print(json.dumps(summary, sort_keys=True, ensure_ascii=True, indent=2))


if __name__ == "__main__":
    main()
