"""
Tests for worker output normalization.

Both payload shapes (batched multi-mode and single-mode) must come out as
the same ModeCompletion events.
"""

import pytest

from listing_sync.engine.events import (
    ModeResult,
    WorkerKeyword,
    competitor_rows,
    normalize_job_output,
)
from listing_sync.errors import PayloadError

from conftest import make_keyword, make_mode_block


class TestBatchedOutput:
    """Test the multi-mode full analysis payload."""

    def test_every_mode_becomes_a_completion(self, batched_output):
        output = normalize_job_output(batched_output)
        assert output.modes == ["balanced", "sniper"]

        balanced = output.completions[0]
        assert balanced.evaluation_fields["strength"] == 72
        assert balanced.evaluation_fields["visibility"] == 60
        assert balanced.evaluation_fields["raw_visibility_index"] == 1234.5
        assert balanced.evaluation_fields["justification_visibility"] == "Decent reach"
        assert balanced.evaluation_fields["improvement_plan_add"] == ["retro cat tee"]
        assert [row["tag"] for row in balanced.keywords] == ["cat shirt", "retro cat", "sunset tee"]

    def test_listing_fields_follow_balanced_mode(self, batched_output):
        """Title and description are copied; label and verdict come from balanced."""
        output = normalize_job_output(batched_output)
        assert output.listing_fields == {
            "generated_title": "Retro Sunset Cat Shirt",
            "generated_description": "A vintage cat tee for sunset lovers.",
            "status_label": "Label 72",
            "strategic_verdict": "Verdict 72",
        }

    def test_list_wrapped_output(self, batched_output):
        output = normalize_job_output([batched_output])
        assert output.modes == ["balanced", "sniper"]

    def test_global_strength_fallback(self):
        block = make_mode_block(None, ["cat shirt"])
        output = normalize_job_output({"global_listing_strength": 64, "broad": block})
        assert output.completions[0].evaluation_fields["strength"] == 64

    def test_parameters_map_to_columns(self, batched_output):
        fields = normalize_job_output(batched_output).completions[0].evaluation_fields
        assert fields["param_volume"] == 0.5
        assert fields["param_competition"] == 0.1
        assert fields["param_cpc"] == 0.2


class TestSingleModeOutput:
    """Test pool reset / recalculation payloads."""

    def test_named_mode(self, reset_pool_output):
        output = normalize_job_output(reset_pool_output)
        assert output.modes == ["balanced"]
        assert output.completions[0].evaluation_fields["strength"] == 75

    def test_mode_from_caller(self):
        raw = {"listing_strength": 81, "keywords": [make_keyword("cat shirt")]}
        output = normalize_job_output(raw, mode="sniper")
        assert output.modes == ["sniper"]

    def test_score_only_output_has_no_keywords(self):
        """No keyword list means the pool is left alone, not emptied."""
        output = normalize_job_output({"seo_mode": "balanced", "listing_strength": 70})
        assert output.completions[0].keywords is None

    def test_empty_keyword_list_is_kept(self):
        output = normalize_job_output({"seo_mode": "balanced", "listing_strength": 70, "keywords": []})
        assert output.completions[0].keywords == ()

    def test_unreported_fields_are_dropped(self):
        fields = normalize_job_output({"seo_mode": "balanced", "listing_strength": 70}).completions[0].evaluation_fields
        assert "status_label" not in fields
        assert "visibility" not in fields


class TestMalformedOutput:
    """Test PayloadError cases."""

    def test_no_mode(self):
        with pytest.raises(PayloadError):
            normalize_job_output({"title": "Only a title"})

    def test_not_an_object(self):
        with pytest.raises(PayloadError):
            normalize_job_output("done")

    def test_empty_list(self):
        with pytest.raises(PayloadError):
            normalize_job_output([])

    def test_invalid_block(self):
        with pytest.raises(PayloadError):
            normalize_job_output({"balanced": {"listing_strength": "very strong"}})


class TestWorkerKeyword:
    """Test keyword record translation."""

    def test_monthly_searches_become_oldest_first(self):
        row = WorkerKeyword.model_validate(make_keyword("cat shirt", volume=1000)).to_row()
        assert row["volume_history"] == [800, 900, 1000]

    def test_volumes_history_used_without_monthly(self):
        row = WorkerKeyword.model_validate({"keyword": "cat", "volumes_history": [1, 2, 3]}).to_row()
        assert row["volume_history"] == [1, 2, 3]

    def test_status_flags(self):
        row = WorkerKeyword.model_validate(make_keyword("cat shirt")).to_row()
        assert row["is_trending"] is True
        assert row["is_evergreen"] is False
        assert row["is_promising"] is True

    def test_tag_alias_and_competition_text(self):
        row = WorkerKeyword.model_validate({"tag": " cat mom ", "competition": 0.42}).to_row()
        assert row["tag"] == "cat mom"
        assert row["competition"] == "0.42"
        assert row["search_volume"] == 0

    def test_justification_alias(self):
        result = ModeResult.model_validate({"justifications": {"profit": "High margin"}})
        assert result.evaluation_fields()["justification_profit"] == "High margin"


class TestCompetitorRows:
    def test_rows(self, competitor_keywords):
        rows = competitor_rows(competitor_keywords)
        assert [row["tag"] for row in rows] == ["cat graphic tee", "funny cat shirt"]
        assert rows[0]["competition"] == "High"

    def test_invalid_row(self):
        with pytest.raises(PayloadError):
            competitor_rows([{"search_volume": 10}])
