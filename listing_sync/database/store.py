"""
Evaluation Store Adapter

Typed reads and writes against listings, evaluations and keyword_stats.
No business logic lives here; every SQLAlchemy failure surfaces as a
StoreError so callers can leave their views untouched and offer a retry.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import PartialReplacementError, StoreError
from ..utils.text import keyword_stat_id, normalize_keyword
from ..utils.timestamps import utcnow
from .models import Evaluation, KeywordStat, Listing
from .records import (
    EVALUATION_FIELDS,
    KEYWORD_FIELDS,
    LISTING_FIELDS,
    EvaluationRecord,
    KeywordStatRecord,
    ListingRecord,
    ListingStatusSnapshot,
)
from .session import get_db_context

logger = logging.getLogger(__name__)

_MEMBERSHIP_FIELDS = frozenset({"tag", "position", "is_competition", "is_current_pool", "is_current_eval"})


def _writable(values: Dict[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
    """Keep only known columns; tuples become lists for JSON columns."""
    clean = {}
    for key, value in values.items():
        if key not in allowed:
            continue
        if isinstance(value, tuple):
            value = list(value)
        clean[key] = value
    return clean


class EvaluationStore:
    """
    Thin I/O boundary over the durable store.

    Usage:
        store = EvaluationStore()
        evaluation = store.upsert_evaluation(listing_id, "balanced", {"strength": 72})
        store.replace_keyword_pool(evaluation.id, False, rows)
    """

    def __init__(
        self,
        session_factory=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            session_factory: sessionmaker to use (defaults to the global one)
            clock: Source of naive UTC timestamps for created_at/updated_at
        """
        self._session_factory = session_factory
        self._clock = clock

    @contextmanager
    def _session(self, operation: str, listing_id: Optional[str] = None):
        try:
            with get_db_context(self._session_factory) as db:
                yield db
        except SQLAlchemyError as e:
            logger.error(f"Store {operation} failed for listing {listing_id}: {e}")
            raise StoreError(f"{operation} failed: {e}", listing_id) from e

    # =========================================================================
    # LISTINGS
    # =========================================================================

    def create_listing(
        self,
        user_id: Optional[str] = None,
        listing_id: Optional[str] = None,
        **fields,
    ) -> ListingRecord:
        """Create a listing on its first save/analyze action."""
        now = self._clock()
        with self._session("create_listing", listing_id) as db:
            listing = Listing(
                user_id=user_id,
                created_at=now,
                updated_at=now,
                **_writable(fields, LISTING_FIELDS),
            )
            if listing_id:
                listing.id = listing_id
            db.add(listing)
            db.flush()
            logger.info(f"Created listing {listing.id} for user {user_id}")
            return ListingRecord.from_row(listing)

    def get_listing(self, listing_id: str) -> Optional[ListingRecord]:
        with self._session("get_listing", listing_id) as db:
            listing = db.get(Listing, listing_id)
            return ListingRecord.from_row(listing) if listing else None

    def update_listing(self, listing_id: str, touch: bool = True, **fields) -> ListingRecord:
        """
        Update listing columns and bump updated_at.

        With touch=False updated_at is left as it is, so an armed watcher
        cannot mistake the write for a job completion.
        """
        with self._session("update_listing", listing_id) as db:
            listing = self._require_listing(db, listing_id)
            for key, value in _writable(fields, LISTING_FIELDS).items():
                setattr(listing, key, value)
            if touch:
                listing.updated_at = self._clock()
            db.flush()
            return ListingRecord.from_row(listing)

    def mark_listing_status(self, listing_id: str, status: str, **fields) -> ListingRecord:
        """Flip the lifecycle status. This is the completion signal watchers trust."""
        record = self.update_listing(listing_id, status=status, **fields)
        logger.info(f"Listing {listing_id} status -> {status} at {record.updated_at}")
        return record

    def get_listing_status(self, listing_id: str) -> ListingStatusSnapshot:
        with self._session("get_listing_status", listing_id) as db:
            row = db.execute(
                select(Listing.status, Listing.updated_at).where(Listing.id == listing_id)
            ).first()
        if row is None:
            raise StoreError(f"Listing {listing_id} not found", listing_id)
        return ListingStatusSnapshot(listing_id=listing_id, status=row.status, updated_at=row.updated_at)

    def _require_listing(self, db: Session, listing_id: str) -> Listing:
        listing = db.get(Listing, listing_id)
        if listing is None:
            raise StoreError(f"Listing {listing_id} not found", listing_id)
        return listing

    # =========================================================================
    # EVALUATIONS
    # =========================================================================

    def list_evaluations(self, listing_id: str) -> List[EvaluationRecord]:
        with self._session("list_evaluations", listing_id) as db:
            rows = db.scalars(
                select(Evaluation)
                .where(Evaluation.listing_id == listing_id)
                .order_by(Evaluation.created_at, Evaluation.seo_mode)
            ).all()
            return [EvaluationRecord.from_row(row) for row in rows]

    def get_evaluation(self, listing_id: str, mode: str) -> Optional[EvaluationRecord]:
        with self._session("get_evaluation", listing_id) as db:
            row = self._find_evaluation(db, listing_id, mode)
            return EvaluationRecord.from_row(row) if row else None

    def _find_evaluation(self, db: Session, listing_id: str, mode: str) -> Optional[Evaluation]:
        return db.scalars(
            select(Evaluation).where(
                Evaluation.listing_id == listing_id,
                Evaluation.seo_mode == mode,
            )
        ).first()

    def upsert_evaluation(
        self,
        listing_id: str,
        mode: str,
        fields: Dict[str, Any],
    ) -> EvaluationRecord:
        """
        Update the evaluation for (listing, mode) in place, or insert it.

        Returns the stored record; its id is what new keyword rows attach to.
        """
        now = self._clock()
        values = _writable(fields, EVALUATION_FIELDS)

        with self._session("upsert_evaluation", listing_id) as db:
            self._require_listing(db, listing_id)
            evaluation = self._find_evaluation(db, listing_id, mode)
            if evaluation is None:
                evaluation = Evaluation(
                    listing_id=listing_id,
                    seo_mode=mode,
                    created_at=now,
                    **values,
                )
                db.add(evaluation)
                logger.info(f"Inserted {mode} evaluation for listing {listing_id}")
            else:
                for key, value in values.items():
                    setattr(evaluation, key, value)
                logger.info(f"Updated {mode} evaluation {evaluation.id} for listing {listing_id}")
            evaluation.updated_at = now
            db.flush()
            return EvaluationRecord.from_row(evaluation)

    def update_evaluation(self, evaluation_id: str, fields: Dict[str, Any]) -> EvaluationRecord:
        """Update scalar fields of one evaluation, leaving its keywords alone."""
        with self._session("update_evaluation") as db:
            evaluation = db.get(Evaluation, evaluation_id)
            if evaluation is None:
                raise StoreError(f"Evaluation {evaluation_id} not found")
            for key, value in _writable(fields, EVALUATION_FIELDS).items():
                setattr(evaluation, key, value)
            evaluation.updated_at = self._clock()
            db.flush()
            return EvaluationRecord.from_row(evaluation)

    def _listing_for_evaluation(self, evaluation_id: str) -> str:
        with self._session("get_evaluation_listing") as db:
            listing_id = db.scalar(
                select(Evaluation.listing_id).where(Evaluation.id == evaluation_id)
            )
        if listing_id is None:
            raise StoreError(f"Evaluation {evaluation_id} not found")
        return listing_id

    # =========================================================================
    # KEYWORD STATS
    # =========================================================================

    def list_keyword_stats(
        self,
        listing_id: str,
        evaluation_id: Optional[str] = None,
        is_competition: Optional[bool] = None,
    ) -> List[KeywordStatRecord]:
        """All keyword rows for a listing, optionally narrowed by evaluation or flag."""
        query = select(KeywordStat).where(KeywordStat.listing_id == listing_id)
        if evaluation_id is not None:
            query = query.where(KeywordStat.evaluation_id == evaluation_id)
        if is_competition is not None:
            query = query.where(KeywordStat.is_competition == is_competition)
        query = query.order_by(KeywordStat.is_competition, KeywordStat.position, KeywordStat.tag)

        with self._session("list_keyword_stats", listing_id) as db:
            return [KeywordStatRecord.from_row(row) for row in db.scalars(query).all()]

    def replace_keyword_pool(
        self,
        evaluation_id: str,
        is_competition: bool,
        rows: List[Dict[str, Any]],
    ) -> List[KeywordStatRecord]:
        """
        Replace the keyword rows of one evaluation that carry the given
        competition flag with `rows`.

        Delete and insert run in one transaction. A failure after the delete
        is checked by reading the scope back: if the old set survived the
        rollback the caller gets a plain StoreError, otherwise a
        PartialReplacementError.
        """
        listing_id = self._listing_for_evaluation(evaluation_id)
        return self._replace(listing_id, evaluation_id, is_competition, rows)

    def replace_competitor_pool(
        self,
        listing_id: str,
        rows: List[Dict[str, Any]],
    ) -> List[KeywordStatRecord]:
        """Replace the listing's competitor rows, which belong to no evaluation."""
        return self._replace(listing_id, None, True, rows)

    def _scope(self, listing_id: str, evaluation_id: Optional[str], is_competition: bool):
        conditions = [
            KeywordStat.listing_id == listing_id,
            KeywordStat.is_competition == is_competition,
        ]
        if evaluation_id is None:
            conditions.append(KeywordStat.evaluation_id.is_(None))
        else:
            conditions.append(KeywordStat.evaluation_id == evaluation_id)
        return conditions

    def _scope_ids(self, conditions, listing_id: str) -> Set[str]:
        with self._session("read_back", listing_id) as db:
            return set(db.scalars(select(KeywordStat.id).where(*conditions)).all())

    def _build_rows(
        self,
        listing_id: str,
        evaluation_id: Optional[str],
        is_competition: bool,
        rows: List[Dict[str, Any]],
    ) -> List[KeywordStat]:
        scope_id = evaluation_id or listing_id
        now = self._clock()
        seen = set()
        built = []
        for row in rows:
            tag = (row.get("tag") or "").strip()
            normalized = normalize_keyword(tag)
            if not normalized:
                continue
            if normalized in seen:
                logger.debug(f"Skipping duplicate keyword '{tag}' for {scope_id}")
                continue
            seen.add(normalized)

            values = _writable(row, KEYWORD_FIELDS)
            values.update(tag=tag, position=len(built), is_competition=is_competition)
            built.append(KeywordStat(
                id=keyword_stat_id(scope_id, tag, is_competition),
                listing_id=listing_id,
                evaluation_id=evaluation_id,
                created_at=now,
                **values,
            ))
        return built

    def _replace(
        self,
        listing_id: str,
        evaluation_id: Optional[str],
        is_competition: bool,
        rows: List[Dict[str, Any]],
    ) -> List[KeywordStatRecord]:
        conditions = self._scope(listing_id, evaluation_id, is_competition)
        new_rows = self._build_rows(listing_id, evaluation_id, is_competition, rows)
        expected_ids = {row.id for row in new_rows}
        old_ids: Set[str] = set()
        deleted = False

        try:
            with get_db_context(self._session_factory) as db:
                old_ids = set(db.scalars(select(KeywordStat.id).where(*conditions)).all())
                db.execute(delete(KeywordStat).where(*conditions))
                deleted = True
                db.add_all(new_rows)
                db.flush()
                records = [KeywordStatRecord.from_row(row) for row in new_rows]
        except SQLAlchemyError as e:
            if not deleted:
                logger.error(f"Keyword pool delete failed for {evaluation_id or listing_id}: {e}")
                raise StoreError(f"replace_keyword_pool failed: {e}", listing_id) from e

            remaining = self._scope_ids(conditions, listing_id)
            if remaining == old_ids:
                logger.error(f"Keyword pool insert failed, old set kept for {evaluation_id or listing_id}: {e}")
                raise StoreError(f"replace_keyword_pool rolled back: {e}", listing_id) from e

            logger.error(f"Keyword pool left partially replaced for {evaluation_id or listing_id}: {e}")
            raise PartialReplacementError(
                f"Keyword pool partially replaced: {e}",
                listing_id=listing_id,
                evaluation_id=evaluation_id,
            ) from e

        actual_ids = self._scope_ids(conditions, listing_id)
        if actual_ids != expected_ids:
            raise PartialReplacementError(
                f"Keyword pool read-back mismatch: expected {len(expected_ids)} rows, found {len(actual_ids)}",
                listing_id=listing_id,
                evaluation_id=evaluation_id,
            )

        logger.info(
            f"Replaced {len(old_ids)} -> {len(records)} "
            f"{'competitor' if is_competition else 'pool'} keywords for {evaluation_id or listing_id}"
        )
        return records

    def insert_keyword_stat(
        self,
        listing_id: str,
        evaluation_id: Optional[str],
        row: Dict[str, Any],
    ) -> KeywordStatRecord:
        """Insert one keyword row at the end of its pool."""
        tag = (row.get("tag") or "").strip()
        if not tag:
            raise StoreError("Keyword tag is required", listing_id)
        is_competition = bool(row.get("is_competition", False))

        with self._session("insert_keyword_stat", listing_id) as db:
            conditions = self._scope(listing_id, evaluation_id, is_competition)
            last_position = db.scalar(select(func.max(KeywordStat.position)).where(*conditions))
            values = _writable(row, KEYWORD_FIELDS)
            values.update(
                tag=tag,
                position=(last_position + 1) if last_position is not None else 0,
                is_competition=is_competition,
            )
            stat = KeywordStat(
                id=keyword_stat_id(evaluation_id or listing_id, tag, is_competition),
                listing_id=listing_id,
                evaluation_id=evaluation_id,
                created_at=self._clock(),
                **values,
            )
            db.add(stat)
            db.flush()
            return KeywordStatRecord.from_row(stat)

    def update_keyword_metrics(
        self,
        listing_id: str,
        evaluation_id: str,
        row: Dict[str, Any],
    ) -> Optional[KeywordStatRecord]:
        """
        Write fetched metrics onto an existing pool row.

        Tag, position and membership flags are kept. Returns None when the
        evaluation has no row for the tag.
        """
        tag = (row.get("tag") or "").strip()
        with self._session("update_keyword_metrics", listing_id) as db:
            stat = db.get(KeywordStat, keyword_stat_id(evaluation_id, tag))
            if stat is None:
                logger.warning(f"No pool row for keyword '{tag}' in {evaluation_id}")
                return None
            values = _writable(row, KEYWORD_FIELDS - _MEMBERSHIP_FIELDS)
            for key, value in values.items():
                if value is not None:
                    setattr(stat, key, value)
            db.flush()
            return KeywordStatRecord.from_row(stat)

    def set_keyword_membership(
        self,
        stat_ids: Iterable[str],
        is_current_pool: Optional[bool] = None,
        is_current_eval: Optional[bool] = None,
    ) -> List[KeywordStatRecord]:
        """Toggle membership flags in place. Other columns are not touched."""
        stat_ids = list(stat_ids)
        with self._session("set_keyword_membership") as db:
            rows = db.scalars(select(KeywordStat).where(KeywordStat.id.in_(stat_ids))).all()
            for row in rows:
                if is_current_pool is not None:
                    row.is_current_pool = is_current_pool
                if is_current_eval is not None:
                    row.is_current_eval = is_current_eval
            db.flush()
            return [KeywordStatRecord.from_row(row) for row in rows]

    def set_current_eval(self, evaluation_id: str, tags: Iterable[str]) -> List[KeywordStatRecord]:
        """
        Mark exactly `tags` (case-insensitive) as the current evaluation
        selection of an evaluation's pool; every other pool row is cleared.

        Returns the evaluation's non-competitor rows after the update.
        """
        selected = {normalize_keyword(tag) for tag in tags}
        with self._session("set_current_eval") as db:
            rows = db.scalars(
                select(KeywordStat)
                .where(
                    KeywordStat.evaluation_id == evaluation_id,
                    KeywordStat.is_competition.is_(False),
                )
                .order_by(KeywordStat.position, KeywordStat.tag)
            ).all()
            matched = 0
            for row in rows:
                row.is_current_eval = bool(row.is_current_pool) and normalize_keyword(row.tag) in selected
                matched += row.is_current_eval
            db.flush()
            if matched < len(selected):
                logger.warning(
                    f"{len(selected) - matched} submitted keywords are not in the pool of {evaluation_id}"
                )
            return [KeywordStatRecord.from_row(row) for row in rows]
