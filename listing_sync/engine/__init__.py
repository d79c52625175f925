"""
Synchronization engine: payload normalization, strategy parameters, mode
selection, in-memory views and the reconciler that keeps them in step with
the store.
"""

from .events import (
    ModeCompletion,
    JobOutput,
    ModeResult,
    WorkerKeyword,
    normalize_job_output,
    competitor_rows,
)
from .strategy import StrategyParameters, nearest_level
from .selector import (
    ProjectedResult,
    Unavailable,
    available_modes,
    find_evaluation,
    select_mode,
)
from .views import EvaluationChanged, KeywordSetReplaced, ListingViews
from .reconciler import EvaluationReconciler, ListingContext, persist_keyword_metrics, persist_mode_completion

__all__ = [
    # Events
    "ModeCompletion",
    "JobOutput",
    "ModeResult",
    "WorkerKeyword",
    "normalize_job_output",
    "competitor_rows",
    # Strategy
    "StrategyParameters",
    "nearest_level",
    # Selector
    "ProjectedResult",
    "Unavailable",
    "available_modes",
    "find_evaluation",
    "select_mode",
    # Views
    "EvaluationChanged",
    "KeywordSetReplaced",
    "ListingViews",
    # Reconciler
    "EvaluationReconciler",
    "ListingContext",
    "persist_keyword_metrics",
    "persist_mode_completion",
]
