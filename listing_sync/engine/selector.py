"""
Strategy Mode Selector

Pure projection of the loaded evaluations for one mode. Never falls back to
another mode: an unknown mode yields Unavailable so the UI can disable it.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from ..database.records import EvaluationRecord, KeywordStatRecord


@dataclass(frozen=True)
class Unavailable:
    """No evaluation exists for the requested mode."""
    mode: str

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class ProjectedResult:
    """What the UI renders for the selected mode."""
    evaluation: EvaluationRecord
    keywords: Tuple[KeywordStatRecord, ...]
    competitor_keywords: Tuple[KeywordStatRecord, ...]

    @property
    def mode(self) -> str:
        return self.evaluation.seo_mode

    @property
    def strength(self) -> Optional[float]:
        return self.evaluation.strength

    @property
    def analytics(self) -> Tuple[KeywordStatRecord, ...]:
        """Own keywords followed by the listing's competitor keywords."""
        return self.keywords + self.competitor_keywords

    @property
    def pool(self) -> List[KeywordStatRecord]:
        return [stat for stat in self.keywords if stat.is_current_pool]

    @property
    def selected_keywords(self) -> List[KeywordStatRecord]:
        """
        Keywords used by the last score computation. Rows written before
        selection tracking carry no flag; then the whole pool counts.
        """
        selected = [stat for stat in self.keywords if stat.is_current_eval]
        return selected or self.pool or list(self.keywords)


def find_evaluation(mode: str, evaluations: Iterable[EvaluationRecord]) -> Optional[EvaluationRecord]:
    for evaluation in evaluations:
        if evaluation.seo_mode == mode:
            return evaluation
    return None


def available_modes(evaluations: Iterable[EvaluationRecord]) -> List[str]:
    """Modes with a loaded evaluation, in load order."""
    modes = []
    for evaluation in evaluations:
        if evaluation.seo_mode not in modes:
            modes.append(evaluation.seo_mode)
    return modes


def select_mode(
    mode: str,
    evaluations: Sequence[EvaluationRecord],
    keyword_stats: Sequence[KeywordStatRecord],
) -> Union[ProjectedResult, Unavailable]:
    """
    Project the evaluation for `mode` with its keywords plus every competitor
    keyword of the listing.
    """
    evaluation = find_evaluation(mode, evaluations)
    if evaluation is None:
        return Unavailable(mode)

    own = tuple(
        stat for stat in keyword_stats
        if stat.evaluation_id == evaluation.id and not stat.is_competition
    )
    competitors = tuple(
        stat for stat in keyword_stats
        if stat.is_competition and stat.listing_id == evaluation.listing_id
    )
    return ProjectedResult(evaluation=evaluation, keywords=own, competitor_keywords=competitors)
