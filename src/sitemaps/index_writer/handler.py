"""Entry points for the sitemap index writer (Lambda + local CLI)."""

from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
from typing import Any

from sitemaps.config import SitemapsConfig, load_config
from sitemaps.logging_utils import configure_logging
from sitemaps.pages import build_page_store

from .service import IndexWriterService


logger = logging.getLogger("sitemaps.index_writer.handler")

_SERVICE: IndexWriterService | None = None


def build_index_writer_service(config: SitemapsConfig) -> IndexWriterService:
    return IndexWriterService(
        config,
        page_store=build_page_store(config.page_store_root, endpoint_url=config.endpoint_url, region_name=config.region),
    )


def lambda_handler(event: dict[str, Any], _context: Any) -> dict[str, Any]:
    global _SERVICE
    if _SERVICE is None:
        profile = os.getenv("SITEMAPS_PROFILE")
        config = load_config(Path(profile) if profile else None)
        configure_logging(config.log_level)
        logger.info("Index writer config store_root=%s directory=%s", config.page_store_root, config.sitemaps_directory)
        _SERVICE = build_index_writer_service(config)
    return _SERVICE.handle(event)


def main() -> None:
    parser = argparse.ArgumentParser(description="Sitemap index writer")
    parser.add_argument("--profile", default=None, help="Path to sitemaps profile YAML")
    parser.add_argument("--event", required=True, help="Path to a Kinesis event JSON file")
    args = parser.parse_args()

    config = load_config(Path(args.profile) if args.profile else None)
    configure_logging(config.log_level)
    event = json.loads(Path(args.event).read_text(encoding="utf-8"))
    summary = build_index_writer_service(config).handle(event)
    print(json.dumps(summary, sort_keys=True, ensure_ascii=True, indent=2))


if __name__ == "__main__":
    main()
