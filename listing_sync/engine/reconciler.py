"""
Evaluation Reconciler

Owns the state of one open listing: its context (current mode, strategy
parameters, shop metadata) and its three in-memory views. Every operation
writes the store first and only then mirrors the confirmed rows into the
views through canonical events. A StoreError leaves the views exactly as
they were before the failing step.

Flows:
- load / refresh      pull rows from the store into the views
- ingest              persist a worker output, then merge it
- switch_mode         local projection, no store round-trip
- recalculate_scores  scalar fields + current-eval selection for one mode
- add / remove        single-keyword pool edits
- ingest_competitors  replace the listing's competitor rows
- request_* / reset_pool  fire a job and arm the completion watcher
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..database.records import EVALUATION_FIELDS, EvaluationRecord, KeywordStatRecord
from ..errors import DuplicateKeywordError, UnavailableModeError
from ..jobs.trigger import JobAction, build_payload
from ..utils.text import normalize_keyword
from ..utils.timestamps import utcnow
from .events import ModeCompletion, competitor_rows, normalize_job_output
from .keywords import contains_keyword
from .selector import ProjectedResult, Unavailable, available_modes
from .strategy import StrategyParameters
from .views import EvaluationChanged, KeywordSetReplaced, ListingViews

logger = logging.getLogger(__name__)


@dataclass
class ListingContext:
    """Session state for one open listing."""
    listing_id: str
    user_id: Optional[str] = None
    mode: str = "balanced"
    parameters: StrategyParameters = field(default_factory=StrategyParameters)
    shop_context: Dict[str, Any] = field(default_factory=dict)


def persist_mode_completion(
    store,
    listing_id: str,
    completion: ModeCompletion,
    replace_pool: bool = True,
) -> Tuple[EvaluationRecord, Optional[List[KeywordStatRecord]]]:
    """
    Write one mode's result: upsert its evaluation, then replace its pool.

    Every inserted keyword starts in the pool and in the current evaluation
    selection. When the completion carries no keyword list the pool is left
    alone and None is returned for it.

    With replace_pool=False (a score recalculation) the keyword list only
    selects rows of the existing pool; no row is inserted or dropped.
    """
    evaluation = store.upsert_evaluation(listing_id, completion.mode, completion.evaluation_fields)
    if completion.keywords is None:
        return evaluation, None

    if not replace_pool:
        stats = store.set_current_eval(evaluation.id, [row["tag"] for row in completion.keywords])
        return evaluation, stats

    rows = [
        dict(row, is_current_pool=True, is_current_eval=True)
        for row in completion.keywords
    ]
    stats = store.replace_keyword_pool(evaluation.id, False, rows)
    return evaluation, stats


def persist_keyword_metrics(
    store,
    listing_id: str,
    completion: ModeCompletion,
) -> List[KeywordStatRecord]:
    """Write a userKeyword result onto the mode's existing pool rows."""
    evaluation = store.get_evaluation(listing_id, completion.mode)
    if evaluation is None:
        raise UnavailableModeError(completion.mode, listing_id)

    updated = []
    for row in completion.keywords or ():
        stat = store.update_keyword_metrics(listing_id, evaluation.id, row)
        if stat is not None:
            updated.append(stat)
    return updated


class EvaluationReconciler:
    """
    Usage:
        reconciler = EvaluationReconciler(store, ListingContext(listing_id, mode="balanced"))
        reconciler.load()
        result = reconciler.switch_mode("sniper")
        reconciler.add_keyword("retro cat tee")
    """

    def __init__(
        self,
        store,
        context: ListingContext,
        views: Optional[ListingViews] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.context = context
        self.views = views or ListingViews(listing_id=context.listing_id)
        self._clock = clock

    # =========================================================================
    # READ-ONLY ACCESS
    # =========================================================================

    @property
    def listing_id(self) -> str:
        return self.context.listing_id

    @property
    def active_result(self) -> Optional[ProjectedResult]:
        return self.views.active_result

    @property
    def all_evaluations(self) -> List[EvaluationRecord]:
        return self.views.all_evaluations

    @property
    def all_keyword_stats(self) -> List[KeywordStatRecord]:
        return self.views.all_keyword_stats

    @property
    def available_modes(self) -> List[str]:
        return available_modes(self.views.all_evaluations)

    def _emit(self, event) -> None:
        self.views.apply(event, self.context.mode)

    def _active_evaluation(self) -> EvaluationRecord:
        evaluation = self.views.evaluation_for(self.context.mode)
        if evaluation is None:
            raise UnavailableModeError(self.context.mode, self.listing_id)
        return evaluation

    def _emit_pool(self, evaluation_id: str, stats: Sequence[KeywordStatRecord]) -> None:
        self._emit(KeywordSetReplaced(
            listing_id=self.listing_id,
            evaluation_id=evaluation_id,
            is_competition=False,
            stats=tuple(stats),
        ))

    # =========================================================================
    # LOADING
    # =========================================================================

    def load(self) -> None:
        """Load every evaluation and keyword row of the listing (listing open)."""
        evaluations = self.store.list_evaluations(self.listing_id)
        stats = self.store.list_keyword_stats(self.listing_id)

        views = ListingViews(listing_id=self.listing_id)
        for event in self._events_for(evaluations, stats, include_competitors=True):
            views.apply(event, self.context.mode)
        self.views = views

        evaluation = views.evaluation_for(self.context.mode)
        if evaluation is not None:
            self.context.parameters = StrategyParameters.from_evaluation(evaluation)

        logger.info(
            f"Loaded listing {self.listing_id}: {len(evaluations)} evaluations, "
            f"{len(stats)} keyword rows, modes {self.available_modes}"
        )

    def refresh(self, modes: Optional[Iterable[str]] = None, competitors: bool = True) -> None:
        """
        Pull the store's rows for `modes` (all modes when None) and merge
        them into the views. This is what runs when a job completes.
        """
        wanted = set(modes) if modes is not None else None
        evaluations = [
            evaluation for evaluation in self.store.list_evaluations(self.listing_id)
            if wanted is None or evaluation.seo_mode in wanted
        ]
        stats = self.store.list_keyword_stats(self.listing_id)

        for event in self._events_for(evaluations, stats, include_competitors=competitors):
            self._emit(event)
        logger.info(f"Refreshed listing {self.listing_id} modes {[e.seo_mode for e in evaluations]}")

    def _events_for(self, evaluations, stats, include_competitors: bool) -> list:
        events = []
        for evaluation in evaluations:
            events.append(EvaluationChanged(evaluation))
            events.append(KeywordSetReplaced(
                listing_id=self.listing_id,
                evaluation_id=evaluation.id,
                is_competition=False,
                stats=tuple(s for s in stats if s.evaluation_id == evaluation.id and not s.is_competition),
            ))
        if include_competitors:
            events.append(KeywordSetReplaced(
                listing_id=self.listing_id,
                evaluation_id=None,
                is_competition=True,
                stats=tuple(s for s in stats if s.is_competition and s.evaluation_id is None),
            ))
        return events

    # =========================================================================
    # INGEST
    # =========================================================================

    def ingest(self, raw_output: Any, modes: Optional[Iterable[str]] = None) -> List[str]:
        """
        Persist a completed job's output and merge it into the views.

        Args:
            raw_output: Worker output, batched or single-mode
            modes: Restrict the ingest to these modes

        Returns:
            Modes that were ingested
        """
        output = normalize_job_output(raw_output, mode=self.context.mode)
        wanted = set(modes) if modes is not None else None

        ingested = []
        for completion in output.completions:
            if wanted is not None and completion.mode not in wanted:
                continue
            evaluation, stats = persist_mode_completion(self.store, self.listing_id, completion)

            self._emit(EvaluationChanged(evaluation))
            if stats is not None:
                self._emit_pool(evaluation.id, stats)
            ingested.append(completion.mode)

        if output.listing_fields and ingested:
            self.store.update_listing(self.listing_id, touch=False, **output.listing_fields)

        logger.info(f"Ingested modes {ingested} for listing {self.listing_id}")
        return ingested

    # =========================================================================
    # LOCAL OPERATIONS
    # =========================================================================

    def switch_mode(self, mode: str) -> Union[ProjectedResult, Unavailable]:
        """
        Select a mode from already-loaded data.

        An unavailable mode returns Unavailable and changes nothing; the UI
        disables that mode instead of falling back to another one.
        """
        projected = self.views.select(mode)
        if isinstance(projected, Unavailable):
            logger.debug(f"Mode {mode} unavailable for listing {self.listing_id}")
            return projected

        self.context.mode = mode
        self.context.parameters = StrategyParameters.from_evaluation(projected.evaluation)
        return projected

    def recalculate_scores(
        self,
        fields: Dict[str, Any],
        keywords: Iterable[Union[str, KeywordStatRecord, Dict[str, Any]]],
    ) -> ProjectedResult:
        """
        Apply a score recalculation for the active mode.

        Only scalar evaluation fields change; is_current_eval is set on
        exactly the submitted keywords and cleared on the rest of the pool.
        Other modes are not touched.
        """
        evaluation = self._active_evaluation()
        tags = [self._tag_of(keyword) for keyword in keywords]
        scalar_fields = {key: value for key, value in fields.items() if key in EVALUATION_FIELDS}

        updated = self.store.update_evaluation(evaluation.id, scalar_fields)
        stats = self.store.set_current_eval(evaluation.id, tags)

        self._emit(EvaluationChanged(updated))
        self._emit_pool(evaluation.id, stats)
        self.context.parameters = StrategyParameters.from_evaluation(updated)

        logger.info(f"Recalculated {updated.seo_mode} for {self.listing_id} on {len(tags)} keywords")
        return self.views.active_result

    def add_keyword(self, tag: str, metrics: Optional[Dict[str, Any]] = None) -> KeywordStatRecord:
        """
        Add one keyword to the active mode's pool.

        A keyword removed from the active pool earlier is put back in place
        (same row, metrics kept) instead of being inserted again.

        Raises:
            DuplicateKeywordError: If the tag is already in a pool of any
                mode (case-insensitive, competitor rows excluded)
        """
        tag = (tag or "").strip()
        if not normalize_keyword(tag):
            raise ValueError("Keyword must not be empty")

        evaluation = self._active_evaluation()
        pooled = [stat for stat in self.views.own_keywords() if stat.is_current_pool]
        if contains_keyword(pooled, tag):
            logger.info(f"Duplicate keyword '{tag}' rejected for listing {self.listing_id}")
            raise DuplicateKeywordError(tag, self.listing_id)

        current = self.views.keywords_for(evaluation.id)
        removed = next(
            (stat for stat in current if normalize_keyword(stat.tag) == normalize_keyword(tag)),
            None,
        )
        if removed is not None:
            restored = self.store.set_keyword_membership(
                [removed.id], is_current_pool=True, is_current_eval=False,
            )[0]
            self._emit_pool(evaluation.id, [restored if stat.id == restored.id else stat for stat in current])
            logger.info(f"Restored keyword '{tag}' to the {evaluation.seo_mode} pool of {self.listing_id}")
            return restored

        row = dict(metrics or {})
        row.update(tag=tag, is_competition=False, is_current_pool=True, is_current_eval=False)
        stat = self.store.insert_keyword_stat(self.listing_id, evaluation.id, row)

        self._emit_pool(evaluation.id, self.views.keywords_for(evaluation.id) + [stat])
        return stat

    def remove_keyword(self, stat_id: str) -> KeywordStatRecord:
        """Take a keyword out of the pool it belongs to. The row itself is kept."""
        target = next(
            (stat for stat in self.views.own_keywords() if stat.id == stat_id),
            None,
        )
        if target is None:
            raise KeyError(f"Keyword row not loaded: {stat_id}")

        updated = self.store.set_keyword_membership(
            [stat_id], is_current_pool=False, is_current_eval=False,
        )
        replacements = {stat.id: stat for stat in updated}
        current = self.views.keywords_for(target.evaluation_id)
        self._emit_pool(target.evaluation_id, [replacements.get(stat.id, stat) for stat in current])
        return replacements.get(stat_id, target)

    def ingest_competitors(
        self,
        keywords: List[Any],
        competitor_seed: Optional[str] = None,
    ) -> List[KeywordStatRecord]:
        """Replace the listing's competitor rows; pool rows are never touched."""
        rows = competitor_rows(keywords)
        stats = self.store.replace_competitor_pool(self.listing_id, rows)
        if competitor_seed is not None:
            self.store.update_listing(self.listing_id, touch=False, competitor_seed=competitor_seed)

        self._emit(KeywordSetReplaced(
            listing_id=self.listing_id,
            evaluation_id=None,
            is_competition=True,
            stats=tuple(stats),
        ))
        return stats

    @staticmethod
    def _tag_of(keyword) -> str:
        if isinstance(keyword, str):
            return keyword
        if isinstance(keyword, dict):
            return keyword.get("tag") or keyword.get("keyword") or ""
        return keyword.tag

    # =========================================================================
    # JOBS
    # =========================================================================

    async def _start_job(self, trigger, watcher, action, payload: Dict[str, Any], on_complete) -> None:
        """
        Arm the watcher, then submit. The trigger disarms the watcher itself
        when the submission fails.
        """
        watcher.arm(self._clock(), on_complete)
        try:
            await trigger.trigger(action, self.listing_id, payload, watcher=watcher)
        except Exception:
            watcher.disarm()
            raise

    def _payload(self, **extra) -> Dict[str, Any]:
        listing = self.store.get_listing(self.listing_id)
        return build_payload(
            listing=listing,
            parameters=self.context.parameters,
            shop_context=self.context.shop_context,
            **extra,
        )

    async def request_analysis(self, trigger, watcher, user_text: Optional[str] = None) -> None:
        """Full analysis of every mode; all modes are refreshed on completion."""
        payload = self._payload(user_text=user_text)

        def on_complete(_completed_at):
            self.refresh()

        await self._start_job(trigger, watcher, JobAction.GENERATE_SEO, payload, on_complete)

    async def reset_pool(self, trigger, watcher) -> None:
        """Re-run the active mode with current parameters; only that mode is merged back."""
        mode = self.context.mode
        payload = self._payload(seo_mode=mode)

        def on_complete(_completed_at):
            self.refresh(modes=[mode], competitors=False)

        await self._start_job(trigger, watcher, JobAction.RESET_POOL, payload, on_complete)

    async def request_recalculation(self, trigger, watcher, keywords: Iterable[Any]) -> None:
        """
        Ask the worker to rescore the active mode on a keyword subset.

        The submitted tags are kept with the job. On completion they become
        the exact is_current_eval selection before the mode is refreshed, so
        a score-only result still lands the right selection.
        """
        mode = self.context.mode
        evaluation = self._active_evaluation()
        tags = [self._tag_of(keyword) for keyword in keywords]
        payload = self._payload(seo_mode=mode, evaluation_id=evaluation.id, keywords=tags)

        def on_complete(_completed_at):
            self.store.set_current_eval(evaluation.id, tags)
            self.refresh(modes=[mode], competitors=False)

        await self._start_job(trigger, watcher, JobAction.RECALCULATE_SCORE, payload, on_complete)

    async def request_keyword_metrics(self, trigger, watcher, tag: str) -> None:
        """
        Ask the worker to fetch metrics for one keyword of the active pool.

        The worker writes the metrics onto the keyword row; the active mode's
        pool is refreshed on completion.
        """
        tag = (tag or "").strip()
        if not normalize_keyword(tag):
            raise ValueError("Keyword must not be empty")

        mode = self.context.mode
        evaluation = self._active_evaluation()
        payload = self._payload(seo_mode=mode, evaluation_id=evaluation.id, keyword=tag)

        def on_complete(_completed_at):
            self.refresh(modes=[mode], competitors=False)

        await self._start_job(trigger, watcher, JobAction.USER_KEYWORD, payload, on_complete)

    async def request_competition_scan(self, trigger, watcher) -> None:
        """Scan rival listings; only competitor rows are merged back."""
        payload = self._payload()

        def on_complete(_completed_at):
            self.refresh(modes=[], competitors=True)

        await self._start_job(trigger, watcher, JobAction.COMPETITION_ANALYSIS, payload, on_complete)
