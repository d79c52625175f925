"""
Keyword metric helpers.

Competition arrives either as a 0-1 number or as a coarse label; volume
history is stored oldest first.
"""

from typing import Any, Iterable, List, Optional, Sequence

from ..utils.text import normalize_keyword

COMPETITION_LABELS = {
    "low": 0.2,
    "medium": 0.5,
    "high": 0.8,
}
DEFAULT_COMPETITION = 0.5

TREND_FLAT_BAND = 5.0  # Percent change treated as flat


def competition_score(value: Any) -> float:
    """
    Numeric competition in 0-1 for sorting and display.

    Numbers (or numeric strings) pass through; Low/Medium/High map to
    0.2/0.5/0.8; anything else is 0.5.
    """
    if value is None:
        return DEFAULT_COMPETITION
    try:
        return float(value)
    except (TypeError, ValueError):
        pass
    return COMPETITION_LABELS.get(str(value).strip().lower(), DEFAULT_COMPETITION)


def format_competition(value: Any) -> Optional[str]:
    """Stored form of competition: text, None when absent."""
    if value is None or value == "":
        return None
    return str(value)


def trend_percent(history: Sequence[int]) -> Optional[float]:
    """
    Percent change from the oldest to the newest volume.

    A zero starting volume is treated as 1 so the result stays finite.
    """
    if not history:
        return None
    first = history[0] or 1
    last = history[-1] or 0
    return ((last - first) / first) * 100


def trend_direction(history: Sequence[int]) -> str:
    """Direction of a volume history: up, down or flat."""
    change = trend_percent(history)
    if change is None or abs(change) < TREND_FLAT_BAND:
        return "flat"
    return "up" if change > 0 else "down"


def volume_history_from_monthly(monthly_searches: Optional[Iterable[dict]]) -> List[int]:
    """
    Volume history from a newest-first monthly_searches list, oldest first.
    """
    if not monthly_searches:
        return []
    volumes = [int(month.get("search_volume") or 0) for month in monthly_searches]
    volumes.reverse()
    return volumes


def contains_keyword(stats: Iterable[Any], tag: str) -> bool:
    """Case-insensitive membership test over keyword records."""
    target = normalize_keyword(tag)
    return any(normalize_keyword(stat.tag) == target for stat in stats)
