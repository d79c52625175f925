"""
In-Memory Views

Three views mirror the store for one open listing:
- active_result      the projection rendered for the selected mode
- all_evaluations    every loaded evaluation, any mode
- all_keyword_stats  every loaded keyword row, any mode or competition flag

They change only through ListingViews.apply(), which runs one reducer per
view over the same canonical event. A store write is mirrored by emitting
EvaluationChanged or KeywordSetReplaced, never by editing a list directly.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

from ..database.records import EvaluationRecord, KeywordStatRecord
from .selector import ProjectedResult, Unavailable, find_evaluation, select_mode


# =============================================================================
# CANONICAL EVENTS
# =============================================================================

@dataclass(frozen=True)
class EvaluationChanged:
    """An evaluation row was inserted or updated."""
    evaluation: EvaluationRecord


@dataclass(frozen=True)
class KeywordSetReplaced:
    """
    The full keyword set of one scope now equals `stats`.

    Scope is (evaluation_id, is_competition) for pool rows and
    (listing_id, evaluation_id=None, is_competition=True) for competitor rows.
    """
    listing_id: str
    evaluation_id: Optional[str]
    is_competition: bool
    stats: Tuple[KeywordStatRecord, ...]

    def covers(self, stat: KeywordStatRecord) -> bool:
        return (
            stat.listing_id == self.listing_id
            and stat.evaluation_id == self.evaluation_id
            and stat.is_competition == self.is_competition
        )


ViewEvent = Union[EvaluationChanged, KeywordSetReplaced]


# =============================================================================
# REDUCERS
# =============================================================================

def reduce_evaluations(
    evaluations: Sequence[EvaluationRecord],
    event: ViewEvent,
) -> List[EvaluationRecord]:
    """Upsert by (listing_id, seo_mode), keeping the original position."""
    evaluations = list(evaluations)
    if not isinstance(event, EvaluationChanged):
        return evaluations

    changed = event.evaluation
    for index, evaluation in enumerate(evaluations):
        if evaluation.listing_id == changed.listing_id and evaluation.seo_mode == changed.seo_mode:
            evaluations[index] = changed
            return evaluations
    evaluations.append(changed)
    return evaluations


def reduce_keyword_stats(
    keyword_stats: Sequence[KeywordStatRecord],
    event: ViewEvent,
) -> List[KeywordStatRecord]:
    """Swap the event's scope for its new rows where the old ones were."""
    if not isinstance(event, KeywordSetReplaced):
        return list(keyword_stats)

    result = []
    inserted = False
    for stat in keyword_stats:
        if event.covers(stat):
            if not inserted:
                result.extend(event.stats)
                inserted = True
            continue
        result.append(stat)
    if not inserted:
        result.extend(event.stats)
    return result


def reduce_active_result(
    active_result: Optional[ProjectedResult],
    event: ViewEvent,
    selected_mode: Optional[str],
    evaluations: Sequence[EvaluationRecord],
    keyword_stats: Sequence[KeywordStatRecord],
) -> Optional[ProjectedResult]:
    """
    Re-project only when the event touches the selected mode; any other
    event leaves the active result as it was.
    """
    if selected_mode is None:
        return active_result

    if isinstance(event, EvaluationChanged):
        touches = event.evaluation.seo_mode == selected_mode
    else:
        selected = find_evaluation(selected_mode, evaluations)
        touches = event.is_competition or (
            selected is not None and event.evaluation_id == selected.id
        )
    if not touches:
        return active_result

    projected = select_mode(selected_mode, evaluations, keyword_stats)
    return projected if isinstance(projected, ProjectedResult) else active_result


# =============================================================================
# VIEW CONTAINER
# =============================================================================

@dataclass
class ListingViews:
    listing_id: str
    active_result: Optional[ProjectedResult] = None
    all_evaluations: List[EvaluationRecord] = field(default_factory=list)
    all_keyword_stats: List[KeywordStatRecord] = field(default_factory=list)

    def apply(self, event: ViewEvent, selected_mode: Optional[str]) -> None:
        """Run every reducer over one event."""
        evaluations = reduce_evaluations(self.all_evaluations, event)
        keyword_stats = reduce_keyword_stats(self.all_keyword_stats, event)
        active_result = reduce_active_result(
            self.active_result, event, selected_mode, evaluations, keyword_stats,
        )
        self.all_evaluations = evaluations
        self.all_keyword_stats = keyword_stats
        self.active_result = active_result

    def select(self, mode: str) -> Union[ProjectedResult, Unavailable]:
        """Project `mode`; the active result changes only if it is available."""
        projected = select_mode(mode, self.all_evaluations, self.all_keyword_stats)
        if isinstance(projected, ProjectedResult):
            self.active_result = projected
        return projected

    def evaluation_for(self, mode: str) -> Optional[EvaluationRecord]:
        return find_evaluation(mode, self.all_evaluations)

    def keywords_for(self, evaluation_id: str) -> List[KeywordStatRecord]:
        return [
            stat for stat in self.all_keyword_stats
            if stat.evaluation_id == evaluation_id and not stat.is_competition
        ]

    def own_keywords(self) -> List[KeywordStatRecord]:
        """Non-competitor rows of every mode."""
        return [stat for stat in self.all_keyword_stats if not stat.is_competition]

    def snapshot(self) -> tuple:
        """Comparable state of all three views."""
        return (
            tuple(self.all_evaluations),
            tuple(self.all_keyword_stats),
            self.active_result,
        )
