"""
Tests for the Strategy Mode Selector and the in-memory view reducers.
"""

import pytest

from listing_sync.database.records import EvaluationRecord, KeywordStatRecord
from listing_sync.engine.selector import (
    ProjectedResult,
    Unavailable,
    available_modes,
    select_mode,
)
from listing_sync.engine.views import (
    EvaluationChanged,
    KeywordSetReplaced,
    ListingViews,
    reduce_evaluations,
    reduce_keyword_stats,
)


def _stat(stat_id, tag, evaluation_id=None, is_competition=False, pool=True, current=True):
    return KeywordStatRecord(
        id=stat_id,
        listing_id="L1",
        tag=tag,
        evaluation_id=evaluation_id,
        is_competition=is_competition,
        is_current_pool=pool,
        is_current_eval=current,
    )


@pytest.fixture
def loaded_state():
    """L1 with balanced (72) and sniper (88) loaded plus shared competitor rows."""
    evaluations = [
        EvaluationRecord(id="E-bal", listing_id="L1", seo_mode="balanced", strength=72),
        EvaluationRecord(id="E-snp", listing_id="L1", seo_mode="sniper", strength=88),
    ]
    stats = [
        _stat("k1", "cat shirt", "E-bal"),
        _stat("k2", "retro cat", "E-bal"),
        _stat("k3", "retro sunset cat shirt", "E-snp"),
        _stat("c1", "cat graphic tee", is_competition=True),
    ]
    return evaluations, stats


# =============================================================================
# SELECTOR
# =============================================================================

class TestSelectMode:
    """Test mode projection."""

    def test_sniper_projection(self, loaded_state):
        """Sniper shows strength 88, its own keywords and the shared competitors."""
        evaluations, stats = loaded_state
        result = select_mode("sniper", evaluations, stats)

        assert isinstance(result, ProjectedResult)
        assert result.strength == 88
        assert [s.tag for s in result.keywords] == ["retro sunset cat shirt"]
        assert [s.tag for s in result.competitor_keywords] == ["cat graphic tee"]
        assert [s.id for s in result.analytics] == ["k3", "c1"]

    def test_missing_mode_is_unavailable(self, loaded_state):
        """No fallback to another mode."""
        evaluations, stats = loaded_state
        result = select_mode("broad", evaluations, stats)

        assert result == Unavailable("broad")
        assert not result

    def test_available_modes(self, loaded_state):
        evaluations, _ = loaded_state
        assert available_modes(evaluations) == ["balanced", "sniper"]

    def test_selected_keywords(self, loaded_state):
        evaluations, _ = loaded_state
        stats = [
            _stat("k1", "cat shirt", "E-bal", current=True),
            _stat("k2", "retro cat", "E-bal", current=False),
            _stat("k4", "old tag", "E-bal", pool=False, current=False),
        ]
        result = select_mode("balanced", evaluations, stats)
        assert [s.tag for s in result.selected_keywords] == ["cat shirt"]
        assert [s.tag for s in result.pool] == ["cat shirt", "retro cat"]

    def test_unflagged_rows_select_whole_pool(self, loaded_state):
        evaluations, _ = loaded_state
        stats = [
            _stat("k1", "cat shirt", "E-bal", current=False),
            _stat("k2", "retro cat", "E-bal", current=False),
        ]
        result = select_mode("balanced", evaluations, stats)
        assert [s.tag for s in result.selected_keywords] == ["cat shirt", "retro cat"]


# =============================================================================
# REDUCERS
# =============================================================================

class TestReducers:
    """Test one reducer per view over the canonical events."""

    def test_evaluation_upsert_keeps_position(self, loaded_state):
        evaluations, _ = loaded_state
        changed = EvaluationRecord(id="E-bal", listing_id="L1", seo_mode="balanced", strength=75)

        result = reduce_evaluations(evaluations, EvaluationChanged(changed))
        assert [e.strength for e in result] == [75, 88]

    def test_new_evaluation_is_appended(self, loaded_state):
        evaluations, _ = loaded_state
        broad = EvaluationRecord(id="E-brd", listing_id="L1", seo_mode="broad", strength=50)

        result = reduce_evaluations(evaluations, EvaluationChanged(broad))
        assert [e.seo_mode for e in result] == ["balanced", "sniper", "broad"]

    def test_keyword_scope_replaced_in_place(self, loaded_state):
        _, stats = loaded_state
        event = KeywordSetReplaced(
            listing_id="L1",
            evaluation_id="E-bal",
            is_competition=False,
            stats=(_stat("k5", "cat lover gift", "E-bal"),),
        )
        result = reduce_keyword_stats(stats, event)
        assert [s.id for s in result] == ["k5", "k3", "c1"]

    def test_competitor_scope_replaced(self, loaded_state):
        _, stats = loaded_state
        event = KeywordSetReplaced(
            listing_id="L1",
            evaluation_id=None,
            is_competition=True,
            stats=(_stat("c2", "funny cat shirt", is_competition=True),),
        )
        result = reduce_keyword_stats(stats, event)
        assert [s.id for s in result] == ["k1", "k2", "k3", "c2"]

    def test_reducers_ignore_other_events(self, loaded_state):
        evaluations, stats = loaded_state
        event = EvaluationChanged(evaluations[0])
        assert reduce_keyword_stats(stats, event) == stats


class TestListingViews:
    """Test that the three views move together."""

    def _views(self, loaded_state, mode="balanced"):
        evaluations, stats = loaded_state
        views = ListingViews(listing_id="L1", all_evaluations=list(evaluations), all_keyword_stats=list(stats))
        views.select(mode)
        return views

    def test_event_for_selected_mode_rebuilds_active(self, loaded_state):
        views = self._views(loaded_state)
        changed = EvaluationRecord(id="E-bal", listing_id="L1", seo_mode="balanced", strength=75)

        views.apply(EvaluationChanged(changed), "balanced")
        assert views.active_result.strength == 75
        assert views.all_evaluations[0].strength == 75

    def test_event_for_other_mode_leaves_active(self, loaded_state):
        views = self._views(loaded_state)
        before = views.active_result
        changed = EvaluationRecord(id="E-snp", listing_id="L1", seo_mode="sniper", strength=90)

        views.apply(EvaluationChanged(changed), "balanced")
        assert views.active_result is before
        assert views.all_evaluations[1].strength == 90

    def test_competitor_event_touches_every_mode(self, loaded_state):
        views = self._views(loaded_state, mode="sniper")
        event = KeywordSetReplaced(
            listing_id="L1",
            evaluation_id=None,
            is_competition=True,
            stats=(_stat("c2", "funny cat shirt", is_competition=True),),
        )
        views.apply(event, "sniper")
        assert [s.id for s in views.active_result.competitor_keywords] == ["c2"]

    def test_select_unavailable_keeps_active(self, loaded_state):
        views = self._views(loaded_state)
        before = views.snapshot()

        assert views.select("broad") == Unavailable("broad")
        assert views.snapshot() == before
