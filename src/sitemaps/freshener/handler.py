"""Entry points for the sitemap freshener (Lambda + local CLI)."""

from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
from typing import Any

from sitemaps.config import SitemapsConfig, load_config
from sitemaps.event_bus import build_stream_publisher, is_kinesis_event
from sitemaps.logging_utils import configure_logging
from sitemaps.pages import build_page_store
from sitemaps.state_store import build_state_store

from .service import SitemapFreshenerService


logger = logging.getLogger("sitemaps.freshener.handler")

_SERVICE: SitemapFreshenerService | None = None


def build_freshener_service(config: SitemapsConfig) -> SitemapFreshenerService:
    return SitemapFreshenerService(
        config,
        state_store=build_state_store(config),
        page_store=build_page_store(config.page_store_root, endpoint_url=config.endpoint_url, region_name=config.region),
        publisher=build_stream_publisher(config),
    )


def lambda_handler(event: dict[str, Any], _context: Any) -> list[dict[str, Any]] | None:
    global _SERVICE
    if _SERVICE is None:
        profile = os.getenv("SITEMAPS_PROFILE")
        config = load_config(Path(profile) if profile else None)
        configure_logging(config.log_level)
        logger.info(
            "Sitemap freshener config table=%s store_root=%s self_stream=%s non_dry_run_allowed=%s",
            config.table_name,
            config.page_store_root,
            config.kinesis_self_stream_name,
            config.non_dry_run_allowed,
        )
        _SERVICE = build_freshener_service(config)
    results = _SERVICE.handle(event)
    # Kinesis invocations report nothing back to the trigger
    return None if is_kinesis_event(event) else results


def main() -> None:
    parser = argparse.ArgumentParser(description="Sitemap freshener")
    parser.add_argument("--profile", default=None, help="Path to sitemaps profile YAML")
    parser.add_argument("--type", required=True, help="Sitemap type to freshen")
    parser.add_argument("--filename", default=None, help="Freshen a single page instead of fanning out")
    parser.add_argument("--no-dry-run", action="store_true", help="Upload rebuilt pages")
    parser.add_argument("--no-dry-run-db", action="store_true", help="Write repaired state (requires --no-dry-run)")
    parser.add_argument("--repair-db", action="store_true", help="Cross-check ownership before rebuilding")
    parser.add_argument("--item-id-regex", default=None, help="Pattern with an ItemID named group")
    parser.add_argument("--directory-override", default=None, help="Upload rebuilt pages under this directory")
    args = parser.parse_args()

    config = load_config(Path(args.profile) if args.profile else None)
    configure_logging(config.log_level)
    message: dict[str, Any] = {
        "operation": "freshenFile" if args.filename else "start",
        "type": args.type,
        "dryRun": not args.no_dry_run,
        "dryRunDB": not args.no_dry_run_db,
        "repairDB": args.repair_db,
    }
    if args.filename:
        message["filename"] = args.filename
    if args.item_id_regex:
        message["itemIDRegex"] = args.item_id_regex
    if args.directory_override:
        message["s3DirectoryOverride"] = args.directory_override
    results = build_freshener_service(config).handle({"Records": [message]})
    print(json.dumps(results, sort_keys=True, ensure_ascii=True, indent=2, default=str))


if __name__ == "__main__":
    main()
