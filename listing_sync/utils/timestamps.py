"""
Timestamp helpers.

All timestamps inside the engine are naive UTC datetimes, which is what the
store hands back on both PostgreSQL and SQLite.
"""

from datetime import datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Coerce a timestamp from a row or a pub/sub message to naive UTC.

    Accepts datetimes (aware or naive) and ISO 8601 strings, including the
    trailing "Z" form. Returns None for anything unparseable.
    """
    if value is None:
        return None

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            return None

    if not isinstance(value, datetime):
        return None

    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
