"""Utility modules for Listing Sync."""

from .config import Settings, get_settings
from .timestamps import utcnow, parse_timestamp
from .text import normalize_keyword, keyword_stat_id

__all__ = [
    "Settings",
    "get_settings",
    "utcnow",
    "parse_timestamp",
    "normalize_keyword",
    "keyword_stat_id",
]
