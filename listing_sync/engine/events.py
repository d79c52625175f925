"""
Worker Output Normalization

The worker reports results in two shapes:

    Batched (full analysis), several modes keyed by name:
        {"title": ..., "balanced": {...}, "sniper": {...}}

    Single mode (pool reset, score recalculation):
        {"seo_mode": "balanced", "listing_strength": 72, "keywords": [...]}

Both are validated with pydantic and normalized here into ModeCompletion
events, so nothing downstream branches on payload shape.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from ..database.models import StrategyMode
from ..errors import PayloadError
from .keywords import format_competition, volume_history_from_monthly
from .strategy import StrategyParameters

logger = logging.getLogger(__name__)

# Top-level keys of a batched payload that are never strategy modes
RESERVED_KEYS = frozenset({
    "metadata",
    "parameters",
    "shop_context",
    "breakdown",
    "stats",
    "improvement_plan",
    "justifications",
    "score_justification",
})

SUB_SCORES = ("visibility", "relevance", "conversion", "competition", "profit")

# The mode whose verdict copy is mirrored onto the listing
DEFAULT_MODE = StrategyMode.BALANCED.value


# =============================================================================
# PAYLOAD MODELS
# =============================================================================

class KeywordStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    trending: bool = False
    evergreen: bool = False
    promising: bool = False


class WorkerKeyword(BaseModel):
    """One keyword record as the worker reports it."""
    model_config = ConfigDict(extra="ignore")

    keyword: str = Field(validation_alias=AliasChoices("keyword", "tag"))
    search_volume: Optional[int] = None
    competition: Optional[Any] = None
    opportunity_score: Optional[float] = None
    cpc: Optional[float] = None
    monthly_searches: Optional[List[Dict[str, Any]]] = None
    volumes_history: Optional[List[int]] = Field(
        default=None,
        validation_alias=AliasChoices("volumes_history", "volume_history"),
    )
    status: KeywordStatus = Field(default_factory=KeywordStatus)
    insight: Optional[str] = None
    is_top: Optional[bool] = None
    transactional_score: Optional[float] = None
    niche_score: Optional[float] = None
    intent_label: Optional[str] = None
    relevance_label: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        """Translate into keyword_stats column values."""
        if self.monthly_searches:
            history = volume_history_from_monthly(self.monthly_searches)
        else:
            history = list(self.volumes_history or [])

        return {
            "tag": self.keyword.strip(),
            "search_volume": self.search_volume or 0,
            "competition": format_competition(self.competition),
            "opportunity_score": self.opportunity_score,
            "cpc": self.cpc,
            "volume_history": history,
            "is_trending": self.status.trending,
            "is_evergreen": self.status.evergreen,
            "is_promising": self.status.promising,
            "insight": self.insight,
            "is_top": self.is_top,
            "transactional_score": self.transactional_score,
            "niche_score": self.niche_score,
            "intent_label": self.intent_label,
            "relevance_label": self.relevance_label,
        }


class ImprovementPlan(BaseModel):
    model_config = ConfigDict(extra="ignore")

    remove: List[str] = Field(default_factory=list)
    add: List[str] = Field(default_factory=list)
    primary_action: Optional[str] = None


class ModeResult(BaseModel):
    """One strategy mode's result block."""
    model_config = ConfigDict(extra="ignore")

    listing_strength: Optional[float] = None
    global_strength: Optional[float] = None
    breakdown: Dict[str, Optional[float]] = Field(default_factory=dict)
    stats: Dict[str, Any] = Field(default_factory=dict)
    justifications: Dict[str, Optional[str]] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("justifications", "score_justification"),
    )
    improvement_plan: ImprovementPlan = Field(default_factory=ImprovementPlan)
    status_label: Optional[str] = None
    strategic_verdict: Optional[str] = None
    parameters: Optional[Dict[str, float]] = None
    keywords: Optional[List[WorkerKeyword]] = None

    def evaluation_fields(self, fallback_strength: Optional[float] = None) -> Dict[str, Any]:
        """Scalar evaluation columns reported for this mode."""
        strength = self.listing_strength
        if strength is None:
            strength = self.global_strength
        if strength is None:
            strength = fallback_strength

        fields = {
            "strength": strength,
            "raw_visibility_index": self.stats.get("raw_visibility_index"),
            "improvement_plan_remove": list(self.improvement_plan.remove),
            "improvement_plan_add": list(self.improvement_plan.add),
            "improvement_plan_primary_action": self.improvement_plan.primary_action,
            "status_label": self.status_label,
            "strategic_verdict": self.strategic_verdict,
        }
        for name in SUB_SCORES:
            fields[name] = self.breakdown.get(name)
        for name in SUB_SCORES + ("strength",):
            fields[f"justification_{name}"] = self.justifications.get(name)
        if self.parameters is not None:
            fields.update(StrategyParameters.from_payload(self.parameters).to_columns())
        # Fields the worker did not report keep their stored value
        return {key: value for key, value in fields.items() if value is not None}


# =============================================================================
# NORMALIZED EVENTS
# =============================================================================

@dataclass(frozen=True)
class ModeCompletion:
    """
    One strategy mode's finished result.

    keywords is None when the worker did not report a keyword list for the
    mode (a score-only recalculation); an empty tuple means an empty pool.
    """
    mode: str
    evaluation_fields: Dict[str, Any]
    keywords: Optional[Tuple[Dict[str, Any], ...]] = None


@dataclass(frozen=True)
class JobOutput:
    completions: Tuple[ModeCompletion, ...]
    listing_fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def modes(self) -> List[str]:
        return [completion.mode for completion in self.completions]


def _unwrap(raw: Any) -> Dict[str, Any]:
    # The worker sometimes wraps the result object in a one-element list
    if isinstance(raw, list):
        if not raw:
            raise PayloadError("Worker output is an empty list")
        raw = raw[0]
    if not isinstance(raw, dict):
        raise PayloadError(f"Worker output must be an object, got {type(raw).__name__}")
    return raw


def _mode_blocks(raw: Dict[str, Any], mode: Optional[str]) -> Dict[str, Dict[str, Any]]:
    single_mode = raw.get("seo_mode") or raw.get("mode")
    if single_mode:
        return {str(single_mode): raw}

    blocks = {
        key: value for key, value in raw.items()
        if isinstance(value, dict) and key not in RESERVED_KEYS
    }
    if blocks:
        return blocks

    if mode and ("keywords" in raw or "breakdown" in raw or "listing_strength" in raw):
        return {mode: raw}
    return {}


def normalize_job_output(raw: Any, mode: Optional[str] = None) -> JobOutput:
    """
    Normalize any worker output into ModeCompletion events.

    Args:
        raw: Worker output, batched or single-mode, optionally list-wrapped
        mode: Mode to assume for a single-mode payload that does not name one

    Raises:
        PayloadError: If the output is malformed or reports no mode
    """
    raw = _unwrap(raw)
    blocks = _mode_blocks(raw, mode)
    if not blocks:
        raise PayloadError("Worker output reports no strategy mode")

    fallback_strength = raw.get("global_listing_strength")
    completions = []
    for mode_name, block in blocks.items():
        try:
            result = ModeResult.model_validate(block)
        except ValidationError as e:
            raise PayloadError(f"Invalid result for mode '{mode_name}': {e}") from e

        keywords = None
        if result.keywords is not None:
            keywords = tuple(keyword.to_row() for keyword in result.keywords)

        completions.append(ModeCompletion(
            mode=mode_name,
            evaluation_fields=result.evaluation_fields(fallback_strength),
            keywords=keywords,
        ))

    listing_fields = {}
    if raw.get("title"):
        listing_fields["generated_title"] = raw["title"]
    if raw.get("description"):
        listing_fields["generated_description"] = raw["description"]

    status_label = raw.get("status_label")
    strategic_verdict = raw.get("strategic_verdict")
    default_block = blocks.get(DEFAULT_MODE) or {}
    status_label = default_block.get("status_label") or status_label
    strategic_verdict = default_block.get("strategic_verdict") or strategic_verdict
    if status_label:
        listing_fields["status_label"] = status_label
    if strategic_verdict:
        listing_fields["strategic_verdict"] = strategic_verdict

    logger.debug(f"Normalized worker output into modes {[c.mode for c in completions]}")
    return JobOutput(completions=tuple(completions), listing_fields=listing_fields)


def competitor_rows(raw_keywords: List[Any]) -> List[Dict[str, Any]]:
    """Validate a competitor scan's keyword list into keyword_stats rows."""
    rows = []
    for item in raw_keywords or []:
        try:
            rows.append(WorkerKeyword.model_validate(item).to_row())
        except ValidationError as e:
            raise PayloadError(f"Invalid competitor keyword: {e}") from e
    return rows
