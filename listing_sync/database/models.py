"""
SQLAlchemy Models for the Listing Sync engine

Three tables, one listing at the centre:
1. listings        - the product under analysis, carries the completion marker
2. evaluations     - one scored outcome per (listing, strategy mode)
3. keyword_stats   - keyword metrics per evaluation, or competitor rows per listing

JSON columns use JSONB on PostgreSQL and plain JSON elsewhere (SQLite in dev
and tests).
"""

import enum
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Text,
    ForeignKey, Index, UniqueConstraint, JSON,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

from ..utils.timestamps import utcnow

Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return str(uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class ListingStatus(enum.Enum):
    """Lifecycle of a listing. Stored as its string value."""
    NEW = "new"
    SEO_DONE = "seo_done"      # Worker finished, rows are safe to read
    COMPLETE = "complete"      # User finalized the listing


class StrategyMode(enum.Enum):
    """
    Built-in strategy modes.

    The seo_mode column is an open string; these are the modes the worker
    reports today, not a closed set.
    """
    BROAD = "broad"
    BALANCED = "balanced"
    SNIPER = "sniper"


# =============================================================================
# TABLES
# =============================================================================

class Listing(Base):
    """One product under analysis"""
    __tablename__ = "listings"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), index=True)

    # Source material
    image_url = Column(String(2000))
    theme = Column(String(255))
    niche = Column(String(255))
    sub_niche = Column(String(255))
    user_description = Column(Text)

    # Lifecycle
    status = Column(String(32), nullable=False, default=ListingStatus.NEW.value)

    # Competition analysis
    competitor_seed = Column(Text)

    # Worker-generated copy
    generated_title = Column(Text)
    generated_description = Column(Text)
    status_label = Column(String(100))
    strategic_verdict = Column(Text)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    # Relationships
    evaluations = relationship("Evaluation", back_populates="listing", cascade="all, delete-orphan")
    keyword_stats = relationship("KeywordStat", back_populates="listing", cascade="all, delete-orphan")


class Evaluation(Base):
    """Scored outcome of one listing under one strategy mode"""
    __tablename__ = "evaluations"

    id = Column(String(36), primary_key=True, default=_new_id)
    listing_id = Column(String(36), ForeignKey("listings.id"), nullable=False)
    seo_mode = Column(String(50), nullable=False)

    # Composite score and sub-scores
    strength = Column(Float)
    visibility = Column(Float)
    relevance = Column(Float)
    conversion = Column(Float)
    competition = Column(Float)
    profit = Column(Float)
    raw_visibility_index = Column(Float)

    # Natural-language justifications
    justification_strength = Column(Text)
    justification_visibility = Column(Text)
    justification_relevance = Column(Text)
    justification_conversion = Column(Text)
    justification_competition = Column(Text)
    justification_profit = Column(Text)

    # Improvement plan
    improvement_plan_remove = Column(JSONType, default=list)
    improvement_plan_add = Column(JSONType, default=list)
    improvement_plan_primary_action = Column(Text)

    # Verdict copy for this mode
    status_label = Column(String(100))
    strategic_verdict = Column(Text)

    # Strategy parameters that produced this evaluation
    param_volume = Column(Float)
    param_competition = Column(Float)
    param_transaction = Column(Float)
    param_niche = Column(Float)
    param_cpc = Column(Float)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    # Relationships
    listing = relationship("Listing", back_populates="evaluations")
    keyword_stats = relationship("KeywordStat", back_populates="evaluation")

    __table_args__ = (
        UniqueConstraint("listing_id", "seo_mode", name="uq_evaluation_listing_mode"),
        Index("idx_evaluation_listing", "listing_id"),
    )


class KeywordStat(Base):
    """Metrics for one keyword under an evaluation, or from a competitor scan"""
    __tablename__ = "keyword_stats"

    id = Column(String(36), primary_key=True, default=_new_id)
    listing_id = Column(String(36), ForeignKey("listings.id"), nullable=False)
    evaluation_id = Column(String(36), ForeignKey("evaluations.id"), nullable=True)

    # Keyword data
    tag = Column(String(500), nullable=False)
    position = Column(Integer, default=0)  # Order within its pool

    # Search metrics
    search_volume = Column(Integer)
    competition = Column(String(50))  # 0-1 number as text, or Low/Medium/High
    opportunity_score = Column(Float)
    cpc = Column(Float)
    volume_history = Column(JSONType, default=list)  # Oldest first

    # Tags
    is_trending = Column(Boolean, default=False)
    is_evergreen = Column(Boolean, default=False)
    is_promising = Column(Boolean, default=False)

    # Insight
    insight = Column(Text)
    is_top = Column(Boolean)  # Insight polarity

    # Classification
    transactional_score = Column(Float)
    niche_score = Column(Float)
    intent_label = Column(String(100))
    relevance_label = Column(String(100))

    # Membership
    is_competition = Column(Boolean, nullable=False, default=False)
    is_current_pool = Column(Boolean, nullable=False, default=False)
    is_current_eval = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow)

    # Relationships
    listing = relationship("Listing", back_populates="keyword_stats")
    evaluation = relationship("Evaluation", back_populates="keyword_stats")

    __table_args__ = (
        Index("idx_keyword_stat_listing", "listing_id", "is_competition"),
        Index("idx_keyword_stat_evaluation", "evaluation_id"),
    )
