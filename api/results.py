"""
Worker Results Webhook

FastAPI router the external SEO worker calls when a job finishes:
1. Authenticates the worker by its x-api-key header
2. Normalizes the output into per-mode completions
3. Persists every mode the way its job action calls for
4. Flips the listing to the completion status and publishes the change

Open dashboards learn about the result through their completion watcher
(push via Redis, or poll) and pull the rows themselves.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException
from pydantic import BaseModel

from listing_sync.database.store import EvaluationStore
from listing_sync.engine.events import competitor_rows, normalize_job_output
from listing_sync.engine.reconciler import persist_keyword_metrics, persist_mode_completion
from listing_sync.errors import PayloadError, StoreError, UnavailableModeError
from listing_sync.jobs.notifier import StatusNotifier
from listing_sync.jobs.trigger import JobAction
from listing_sync.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["results"])


# =============================================================================
# DEPENDENCIES
# =============================================================================

_notifier: Optional[StatusNotifier] = None


def get_store() -> EvaluationStore:
    return EvaluationStore()


def get_notifier() -> StatusNotifier:
    global _notifier
    if _notifier is None:
        _notifier = StatusNotifier()
    return _notifier


def verify_worker(
    x_api_key: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject calls that do not carry the shared worker secret."""
    secret = settings.WORKER_WEBHOOK_SECRET
    if not secret or x_api_key != secret:
        logger.warning("Rejected results webhook call with invalid API key")
        raise HTTPException(status_code=401, detail="Unauthorized")


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class ResultsResponse(BaseModel):
    success: bool
    listing_id: str
    modes: List[str]


class CompetitorsResponse(BaseModel):
    success: bool
    listing_id: str
    keyword_count: int


# =============================================================================
# ENDPOINTS
# =============================================================================

def _require_listing(store: EvaluationStore, listing_id: str) -> None:
    if store.get_listing(listing_id) is None:
        raise HTTPException(status_code=404, detail="Listing not found")


@router.post("/listings/results", response_model=ResultsResponse, dependencies=[Depends(verify_worker)])
async def receive_results(
    body: Dict[str, Any] = Body(...),
    store: EvaluationStore = Depends(get_store),
    notifier: StatusNotifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
):
    """
    Persist a finished job.

    Body: {"listing_id": "...", "action": "...", "results": {...} | [{...}]}

    A recalculateScore result only rescores and reselects within the
    existing pool; a userKeyword result only fills in keyword metrics.
    Any other action replaces the reported modes' pools.
    """
    listing_id = body.get("listing_id")
    results = body.get("results")
    action = body.get("action")
    if not listing_id or not results:
        raise HTTPException(status_code=400, detail="Missing listing_id or results")

    try:
        output = normalize_job_output(results)
    except PayloadError as e:
        logger.warning(f"Malformed results for listing {listing_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    try:
        _require_listing(store, listing_id)
        for completion in output.completions:
            if action == JobAction.USER_KEYWORD:
                persist_keyword_metrics(store, listing_id, completion)
            else:
                persist_mode_completion(
                    store, listing_id, completion,
                    replace_pool=action != JobAction.RECALCULATE_SCORE,
                )
        listing = store.mark_listing_status(
            listing_id, settings.COMPLETION_STATUS, **output.listing_fields
        )
    except UnavailableModeError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StoreError as e:
        logger.error(f"Failed to persist results for listing {listing_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to save results")

    await notifier.publish_status(listing_id, listing.status, listing.updated_at)
    logger.info(f"Saved {output.modes} for listing {listing_id}")

    return ResultsResponse(success=True, listing_id=listing_id, modes=output.modes)


@router.post(
    "/listings/{listing_id}/competitors",
    response_model=CompetitorsResponse,
    dependencies=[Depends(verify_worker)],
)
async def receive_competitors(
    listing_id: str,
    body: Dict[str, Any] = Body(...),
    store: EvaluationStore = Depends(get_store),
    notifier: StatusNotifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
):
    """
    Persist a competition scan.

    Body: {"keywords": [...], "competitor_seed": "..."}
    """
    keywords = body.get("keywords")
    if not isinstance(keywords, list):
        raise HTTPException(status_code=400, detail="Missing keywords")

    try:
        rows = competitor_rows(keywords)
    except PayloadError as e:
        raise HTTPException(status_code=400, detail=str(e))

    fields = {}
    if body.get("competitor_seed") is not None:
        fields["competitor_seed"] = body["competitor_seed"]

    try:
        _require_listing(store, listing_id)
        stats = store.replace_competitor_pool(listing_id, rows)
        listing = store.mark_listing_status(listing_id, settings.COMPLETION_STATUS, **fields)
    except StoreError as e:
        logger.error(f"Failed to persist competitors for listing {listing_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to save competitors")

    await notifier.publish_status(listing_id, listing.status, listing.updated_at)
    logger.info(f"Saved {len(stats)} competitor keywords for listing {listing_id}")

    return CompetitorsResponse(success=True, listing_id=listing_id, keyword_count=len(stats))
