"""
Detached row records.

The store hands these out instead of ORM instances so callers never touch a
session. They are frozen: a change to a row produces a new record.
"""

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Dict, Optional, Tuple


def _column_values(cls, row) -> Dict[str, Any]:
    values = {}
    for f in fields(cls):
        value = getattr(row, f.name, None)
        if isinstance(value, list):
            value = tuple(value)
        values[f.name] = value
    return values


@dataclass(frozen=True)
class ListingRecord:
    id: str
    user_id: Optional[str] = None
    image_url: Optional[str] = None
    theme: Optional[str] = None
    niche: Optional[str] = None
    sub_niche: Optional[str] = None
    user_description: Optional[str] = None
    status: str = "new"
    competitor_seed: Optional[str] = None
    generated_title: Optional[str] = None
    generated_description: Optional[str] = None
    status_label: Optional[str] = None
    strategic_verdict: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "ListingRecord":
        return cls(**_column_values(cls, row))


@dataclass(frozen=True)
class ListingStatusSnapshot:
    """What the completion poll reads."""
    listing_id: str
    status: str
    updated_at: Optional[datetime]


@dataclass(frozen=True)
class EvaluationRecord:
    id: str
    listing_id: str
    seo_mode: str

    strength: Optional[float] = None
    visibility: Optional[float] = None
    relevance: Optional[float] = None
    conversion: Optional[float] = None
    competition: Optional[float] = None
    profit: Optional[float] = None
    raw_visibility_index: Optional[float] = None

    justification_strength: Optional[str] = None
    justification_visibility: Optional[str] = None
    justification_relevance: Optional[str] = None
    justification_conversion: Optional[str] = None
    justification_competition: Optional[str] = None
    justification_profit: Optional[str] = None

    improvement_plan_remove: Tuple[str, ...] = ()
    improvement_plan_add: Tuple[str, ...] = ()
    improvement_plan_primary_action: Optional[str] = None

    status_label: Optional[str] = None
    strategic_verdict: Optional[str] = None

    param_volume: Optional[float] = None
    param_competition: Optional[float] = None
    param_transaction: Optional[float] = None
    param_niche: Optional[float] = None
    param_cpc: Optional[float] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "EvaluationRecord":
        values = _column_values(cls, row)
        values["improvement_plan_remove"] = values["improvement_plan_remove"] or ()
        values["improvement_plan_add"] = values["improvement_plan_add"] or ()
        return cls(**values)


@dataclass(frozen=True)
class KeywordStatRecord:
    id: str
    listing_id: str
    tag: str
    evaluation_id: Optional[str] = None
    position: int = 0

    search_volume: Optional[int] = None
    competition: Optional[str] = None
    opportunity_score: Optional[float] = None
    cpc: Optional[float] = None
    volume_history: Tuple[int, ...] = ()

    is_trending: bool = False
    is_evergreen: bool = False
    is_promising: bool = False

    insight: Optional[str] = None
    is_top: Optional[bool] = None

    transactional_score: Optional[float] = None
    niche_score: Optional[float] = None
    intent_label: Optional[str] = None
    relevance_label: Optional[str] = None

    is_competition: bool = False
    is_current_pool: bool = False
    is_current_eval: bool = False

    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "KeywordStatRecord":
        values = _column_values(cls, row)
        values["volume_history"] = values["volume_history"] or ()
        return cls(**values)


# Scalar evaluation columns a caller may write through upsert/update
EVALUATION_FIELDS = frozenset(
    f.name for f in fields(EvaluationRecord)
    if f.name not in ("id", "listing_id", "seo_mode", "created_at", "updated_at")
)

# Keyword columns a caller may write on insert
KEYWORD_FIELDS = frozenset(
    f.name for f in fields(KeywordStatRecord)
    if f.name not in ("id", "listing_id", "evaluation_id", "created_at")
)

LISTING_FIELDS = frozenset(
    f.name for f in fields(ListingRecord)
    if f.name not in ("id", "created_at", "updated_at")
)
