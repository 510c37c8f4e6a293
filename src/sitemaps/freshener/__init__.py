"""Sitemap freshener: page rebuilds and ownership repair."""

from .item_ids import ItemWithId, compile_item_id_pattern, extract_item_ids, validate_item_id_pattern
from .messages import FreshenerMessage, compute_dry_run, parse_freshener_event
from .repair import FreshenPlan, RepairStats, prepare_repair
from .service import SitemapFreshenerService, freshen_partition_key

__all__ = [
    "FreshenPlan",
    "FreshenerMessage",
    "ItemWithId",
    "RepairStats",
    "SitemapFreshenerService",
    "compile_item_id_pattern",
    "compute_dry_run",
    "extract_item_ids",
    "freshen_partition_key",
    "parse_freshener_event",
    "prepare_repair",
    "validate_item_id_pattern",
]
