"""
Job Trigger

Fire-and-forget submission of an analysis job to the external SEO worker.

The request returns as soon as the worker accepts it. Job results never come
back through this call; they arrive through the completion watcher once the
worker has written them and flipped the listing status.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from ..errors import TransportError
from ..utils.config import get_settings
from ..utils.timestamps import utcnow

logger = logging.getLogger(__name__)


class JobAction(str, Enum):
    """Actions the worker understands. Other strings are passed through."""
    GENERATE_SEO = "generate_seo"
    RESET_POOL = "resetPool"
    RECALCULATE_SCORE = "recalculateScore"
    COMPETITION_ANALYSIS = "competitionAnalysis"
    USER_KEYWORD = "userKeyword"


def build_payload(
    listing=None,
    parameters=None,
    shop_context: Optional[Dict[str, Any]] = None,
    user_text: Optional[str] = None,
    **extra,
) -> Dict[str, Any]:
    """
    Assemble the standard payload bundle for a listing.

    Args:
        listing: ListingRecord (image reference and categorization)
        parameters: StrategyParameters for the run
        shop_context: Shop metadata forwarded untouched
        user_text: Free text the seller entered
        **extra: Action-specific keys (seo_mode, keywords, ...)
    """
    payload: Dict[str, Any] = {}
    if listing is not None:
        payload["image_url"] = listing.image_url
        payload["categorization"] = {
            "theme": listing.theme,
            "niche": listing.niche,
            "sub_niche": listing.sub_niche,
        }
        if user_text is None:
            user_text = listing.user_description
    if user_text:
        payload["client_description"] = user_text
    if parameters is not None:
        payload["parameters"] = parameters.to_payload()
    if shop_context:
        payload["shop_context"] = dict(shop_context)
    payload.update(extra)
    return payload


class JobTrigger:
    """
    Async client for the worker webhook.

    Usage:
        trigger = JobTrigger(user_id=user.id)
        await trigger.trigger(JobAction.GENERATE_SEO, listing_id, payload, watcher=watcher)
        await trigger.close()
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        user_id: Optional[str] = None,
        timeout: Optional[float] = None,
        app_version: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            webhook_url: Worker webhook (defaults to WORKER_WEBHOOK_URL)
            user_id: Owner forwarded with every job
            timeout: Seconds to wait for the worker to accept the request
            app_version: Reported in the job metadata
            client: Preconfigured httpx client (tests, shared pools)
        """
        settings = get_settings()
        self.webhook_url = webhook_url or settings.WORKER_WEBHOOK_URL
        self.user_id = user_id
        self.app_version = app_version or settings.APP_VERSION
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or settings.WORKER_TIMEOUT),
            headers={"Content-Type": "application/json"},
        )
        self._closed = False

    async def trigger(
        self,
        action,
        listing_id: Optional[str],
        payload: Optional[Dict[str, Any]] = None,
        watcher=None,
    ) -> None:
        """
        Submit a job and return once the worker accepted it.

        Args:
            action: JobAction or any action name the worker knows
            listing_id: Listing the job is for (required)
            payload: Opaque bundle for the worker
            watcher: Completion watcher armed for this job; disarmed on failure

        Raises:
            ValueError: If listing_id is missing
            TransportError: If the worker could not be reached or refused the job
        """
        if not listing_id:
            raise ValueError("listing_id is required to trigger a job")

        action_name = action.value if isinstance(action, JobAction) else str(action)
        body = {
            "action": action_name,
            "listing_id": listing_id,
            "user_id": self.user_id,
            "payload": payload or {},
            "metadata": {
                "app_version": self.app_version,
                "timestamp": utcnow().isoformat() + "Z",
            },
        }

        try:
            if self._closed:
                raise TransportError("Trigger is closed", listing_id=listing_id, action=action_name)

            logger.debug(f"POST {self.webhook_url} action={action_name} listing={listing_id}")
            response = await self._client.post(self.webhook_url, json=body)

            if response.status_code >= 400:
                raise TransportError(
                    f"Worker rejected {action_name}: {response.status_code}",
                    listing_id=listing_id,
                    action=action_name,
                    status_code=response.status_code,
                )
        except httpx.HTTPError as e:
            self._release(watcher)
            logger.error(f"Could not reach worker for {action_name} on {listing_id}: {e}")
            raise TransportError(
                f"Could not reach worker: {e}",
                listing_id=listing_id,
                action=action_name,
            ) from e
        except TransportError as e:
            self._release(watcher)
            logger.error(f"Job {action_name} for {listing_id} failed: {e}")
            raise

        logger.info(f"Triggered {action_name} for listing {listing_id}")

    def _release(self, watcher) -> None:
        # A failed submission must not leave the watcher waiting forever
        if watcher is not None:
            watcher.disarm()

    async def close(self) -> None:
        """Close the HTTP client if this trigger created it."""
        if not self._closed:
            if self._owns_client:
                await self._client.aclose()
            self._closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
