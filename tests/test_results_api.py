"""
Tests for the worker results webhook.

Runs the FastAPI app against the in-memory store with the notifier mocked.
"""

import pytest
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from api.app import app
from api.results import get_notifier, get_store
from listing_sync.utils.config import Settings, get_settings

from conftest import make_keyword, make_mode_block


SECRET = "worker-secret"
HEADERS = {"x-api-key": SECRET}


@pytest.fixture
def notifier():
    notifier = AsyncMock()
    notifier.publish_status.return_value = True
    return notifier


@pytest.fixture
def client(store, listing, notifier):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_settings] = lambda: Settings(WORKER_WEBHOOK_SECRET=SECRET)
    # No startup hooks: the store fixture owns the schema
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestResultsWebhook:
    """Test POST /api/listings/results."""

    def test_saves_every_mode(self, client, store, notifier, batched_output):
        response = client.post(
            "/api/listings/results",
            json={"listing_id": "L1", "results": [batched_output]},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "listing_id": "L1", "modes": ["balanced", "sniper"]}

        listing = store.get_listing("L1")
        assert listing.status == "seo_done"
        assert listing.generated_title == "Retro Sunset Cat Shirt"
        assert listing.strategic_verdict == "Verdict 72"
        assert [e.seo_mode for e in store.list_evaluations("L1")] == ["balanced", "sniper"]
        assert len(store.list_keyword_stats("L1")) == 5

        notifier.publish_status.assert_awaited_once_with("L1", "seo_done", listing.updated_at)

    def test_resend_is_idempotent(self, client, store, batched_output):
        body = {"listing_id": "L1", "results": batched_output}
        client.post("/api/listings/results", json=body, headers=HEADERS)
        client.post("/api/listings/results", json=body, headers=HEADERS)

        assert len(store.list_evaluations("L1")) == 2
        assert len(store.list_keyword_stats("L1")) == 5

    def test_single_mode_result(self, client, store, reset_pool_output):
        response = client.post(
            "/api/listings/results",
            json={"listing_id": "L1", "results": reset_pool_output},
            headers=HEADERS,
        )
        assert response.json()["modes"] == ["balanced"]
        assert store.get_evaluation("L1", "balanced").strength == 75

    def test_recalculation_result_keeps_pool(self, client, store, batched_output):
        """A recalculateScore result reselects within the pool and drops nothing."""
        client.post("/api/listings/results", json={"listing_id": "L1", "results": batched_output}, headers=HEADERS)

        block = make_mode_block(81, ["cat shirt"])
        block["seo_mode"] = "balanced"
        response = client.post(
            "/api/listings/results",
            json={"listing_id": "L1", "action": "recalculateScore", "results": block},
            headers=HEADERS,
        )

        assert response.status_code == 200
        balanced = store.get_evaluation("L1", "balanced")
        stats = store.list_keyword_stats("L1", evaluation_id=balanced.id)
        assert balanced.strength == 81
        assert [s.tag for s in stats] == ["cat shirt", "retro cat", "sunset tee"]
        assert all(s.is_current_pool for s in stats)
        assert {s.tag: s.is_current_eval for s in stats} == {
            "cat shirt": True,
            "retro cat": False,
            "sunset tee": False,
        }

    def test_user_keyword_result_fills_metrics(self, client, store, batched_output):
        client.post("/api/listings/results", json={"listing_id": "L1", "results": batched_output}, headers=HEADERS)
        balanced_before = store.get_evaluation("L1", "balanced")

        response = client.post(
            "/api/listings/results",
            json={
                "listing_id": "L1",
                "action": "userKeyword",
                "results": {"seo_mode": "balanced", "keywords": [make_keyword("retro cat", 9900)]},
            },
            headers=HEADERS,
        )

        assert response.status_code == 200
        stats = store.list_keyword_stats("L1", evaluation_id=balanced_before.id)
        retro = next(s for s in stats if s.tag == "retro cat")
        assert retro.search_volume == 9900
        assert retro.is_current_pool is True
        assert len(stats) == 3
        assert store.get_evaluation("L1", "balanced").strength == balanced_before.strength

    def test_user_keyword_result_for_missing_mode(self, client):
        response = client.post(
            "/api/listings/results",
            json={
                "listing_id": "L1",
                "action": "userKeyword",
                "results": {"seo_mode": "broad", "keywords": [make_keyword("cat mom")]},
            },
            headers=HEADERS,
        )
        assert response.status_code == 404

    def test_missing_api_key(self, client, batched_output):
        response = client.post("/api/listings/results", json={"listing_id": "L1", "results": batched_output})
        assert response.status_code == 401

    def test_wrong_api_key(self, client, batched_output):
        response = client.post(
            "/api/listings/results",
            json={"listing_id": "L1", "results": batched_output},
            headers={"x-api-key": "nope"},
        )
        assert response.status_code == 401

    @pytest.mark.parametrize("body", [
        {"results": {"balanced": {}}},
        {"listing_id": "L1"},
        {"listing_id": "L1", "results": None},
    ])
    def test_missing_fields(self, client, body):
        response = client.post("/api/listings/results", json=body, headers=HEADERS)
        assert response.status_code == 400

    def test_malformed_results(self, client, notifier):
        response = client.post(
            "/api/listings/results",
            json={"listing_id": "L1", "results": {"title": "No modes"}},
            headers=HEADERS,
        )
        assert response.status_code == 400
        notifier.publish_status.assert_not_awaited()

    def test_unknown_listing(self, client, batched_output):
        response = client.post(
            "/api/listings/results",
            json={"listing_id": "missing", "results": batched_output},
            headers=HEADERS,
        )
        assert response.status_code == 404


class TestCompetitorsWebhook:
    """Test POST /api/listings/{listing_id}/competitors."""

    def test_saves_competitors(self, client, store, notifier, competitor_keywords):
        response = client.post(
            "/api/listings/L1/competitors",
            json={"keywords": competitor_keywords, "competitor_seed": "retro cat shirt"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["keyword_count"] == 2
        assert all(s.is_competition for s in store.list_keyword_stats("L1"))
        assert store.get_listing("L1").competitor_seed == "retro cat shirt"
        notifier.publish_status.assert_awaited_once()

    def test_missing_keywords(self, client):
        response = client.post("/api/listings/L1/competitors", json={}, headers=HEADERS)
        assert response.status_code == 400

    def test_requires_api_key(self, client, competitor_keywords):
        response = client.post("/api/listings/L1/competitors", json={"keywords": competitor_keywords})
        assert response.status_code == 401
