"""
Listing Sync Database Layer

Usage:
    from listing_sync.database import (
        init_db, get_db_context,
        Listing, Evaluation, KeywordStat,
        EvaluationStore,
    )

    init_db()
    store = EvaluationStore()
    listing = store.create_listing(user_id="u-1", image_url="https://...")
"""

# Models
from .models import (
    Base,
    Listing,
    Evaluation,
    KeywordStat,
    ListingStatus,
    StrategyMode,
)

# Records
from .records import (
    ListingRecord,
    ListingStatusSnapshot,
    EvaluationRecord,
    KeywordStatRecord,
    EVALUATION_FIELDS,
    KEYWORD_FIELDS,
)

# Session management
from .session import (
    get_db_context,
    get_engine,
    get_session_factory,
    init_db,
    check_db_connection,
)

# Store adapter
from .store import EvaluationStore

__all__ = [
    # Models
    "Base",
    "Listing",
    "Evaluation",
    "KeywordStat",
    "ListingStatus",
    "StrategyMode",
    # Records
    "ListingRecord",
    "ListingStatusSnapshot",
    "EvaluationRecord",
    "KeywordStatRecord",
    "EVALUATION_FIELDS",
    "KEYWORD_FIELDS",
    # Session
    "get_db_context",
    "get_engine",
    "get_session_factory",
    "init_db",
    "check_db_connection",
    # Store
    "EvaluationStore",
]
