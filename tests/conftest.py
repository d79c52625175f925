"""
Pytest Configuration and Shared Fixtures

Provides an in-memory store, a deterministic clock and worker payloads
shared by all test modules.
"""

import pytest
from datetime import datetime, timedelta
from typing import Any, Dict

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from listing_sync.database.models import Base
from listing_sync.database.store import EvaluationStore


# ============================================================================
# Clock
# ============================================================================

class TickingClock:
    """Returns a strictly increasing naive UTC time, one second per call."""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


# ============================================================================
# Store Fixtures
# ============================================================================

@pytest.fixture
def db_engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def store(session_factory, clock) -> EvaluationStore:
    return EvaluationStore(session_factory=session_factory, clock=clock)


@pytest.fixture
def listing(store):
    """A listing that has been saved but not analyzed yet."""
    return store.create_listing(
        user_id="user-1",
        listing_id="L1",
        image_url="https://cdn.example.com/l1.png",
        theme="Animals",
        niche="Cats",
        sub_niche="Retro cats",
        user_description="Vintage sunset cat shirt",
    )


# ============================================================================
# Worker Payload Fixtures
# ============================================================================

def make_keyword(tag: str, volume: int = 1000, competition: Any = "Low", **extra) -> Dict[str, Any]:
    keyword = {
        "keyword": tag,
        "search_volume": volume,
        "competition": competition,
        "opportunity_score": 0.7,
        "cpc": 0.45,
        "monthly_searches": [
            {"year": 2024, "month": 3, "search_volume": volume},
            {"year": 2024, "month": 2, "search_volume": volume - 100},
            {"year": 2024, "month": 1, "search_volume": volume - 200},
        ],
        "status": {"trending": True, "evergreen": False, "promising": True},
        "insight": f"{tag} converts well",
    }
    keyword.update(extra)
    return keyword


def make_mode_block(strength: float, tags, **extra) -> Dict[str, Any]:
    block = {
        "listing_strength": strength,
        "breakdown": {
            "visibility": 60,
            "relevance": 70,
            "conversion": 55,
            "competition": 40,
            "profit": 65,
        },
        "stats": {"raw_visibility_index": 1234.5},
        "score_justification": {"visibility": "Decent reach", "relevance": "On theme"},
        "improvement_plan": {"remove": ["cat"], "add": ["retro cat tee"], "primary_action": "Tighten title"},
        "status_label": f"Label {strength}",
        "strategic_verdict": f"Verdict {strength}",
        "parameters": {"Volume": 0.5, "Competition": 0.1, "Transaction": 0.25, "Niche": 0.2, "CPC": 0.2},
        "keywords": [make_keyword(tag) for tag in tags],
    }
    block.update(extra)
    return block


@pytest.fixture
def batched_output() -> Dict[str, Any]:
    """Full analysis output reporting balanced and sniper modes."""
    return {
        "title": "Retro Sunset Cat Shirt",
        "description": "A vintage cat tee for sunset lovers.",
        "balanced": make_mode_block(72, ["cat shirt", "retro cat", "sunset tee"]),
        "sniper": make_mode_block(88, ["retro sunset cat shirt", "vintage cat tee"]),
    }


@pytest.fixture
def reset_pool_output() -> Dict[str, Any]:
    """Single-mode output of a pool reset for balanced."""
    block = make_mode_block(75, ["cat lover gift", "retro cat"])
    block["seo_mode"] = "balanced"
    return block


@pytest.fixture
def competitor_keywords():
    return [
        make_keyword("cat graphic tee", 5400, "High"),
        make_keyword("funny cat shirt", 8100, 0.55),
    ]


# ============================================================================
# Test Markers
# ============================================================================

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
