"""
Redis Pub/Sub for listing row changes.

The results webhook publishes every listing status change on a per-listing
channel; completion watchers subscribe to it as their push channel.

Channel pattern: {CHANNEL_PREFIX}:listing:{listing_id}

Message format:
    {
        "type": "listing_status",
        "timestamp": "2024-01-15T12:00:00Z",
        "data": {"listing_id": "...", "status": "seo_done", "updated_at": "..."}
    }
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..utils.config import get_settings
from ..utils.timestamps import utcnow

logger = logging.getLogger(__name__)


class StatusNotifier:
    """
    Publishes and subscribes to listing status changes.

    Usage:
        notifier = StatusNotifier()
        await notifier.publish_status(listing.id, listing.status, listing.updated_at)

        async for change in notifier.subscribe(listing_id):
            print(change["status"], change["updated_at"])
    """

    def __init__(self, redis_url: Optional[str] = None, prefix: Optional[str] = None):
        settings = get_settings()
        self._redis_url = redis_url or settings.REDIS_URL
        self._prefix = prefix or settings.CHANNEL_PREFIX
        self._publisher: Optional[Redis] = None
        self._lock = asyncio.Lock()

    def channel_name(self, listing_id: str) -> str:
        return f"{self._prefix}:listing:{listing_id}"

    async def _ensure_connected(self) -> Redis:
        async with self._lock:
            if self._publisher is None:
                self._publisher = Redis.from_url(
                    self._redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
            return self._publisher

    async def publish_status(
        self,
        listing_id: str,
        status: str,
        updated_at: Optional[datetime],
    ) -> bool:
        """
        Publish a listing status change.

        Returns:
            True if published, False if Redis was unreachable. Watchers still
            pick the change up through their poll.
        """
        message = {
            "type": "listing_status",
            "timestamp": utcnow().isoformat() + "Z",
            "data": {
                "listing_id": listing_id,
                "status": status,
                "updated_at": updated_at.isoformat() if updated_at else None,
            },
        }
        channel = self.channel_name(listing_id)

        try:
            publisher = await self._ensure_connected()
            receivers = await publisher.publish(channel, json.dumps(message))
            logger.debug(f"Published {status} to {channel} ({receivers} subscribers)")
            return True
        except RedisError as e:
            logger.warning(f"Failed to publish status for {listing_id}: {e}")
            self._publisher = None
            return False

    async def subscribe(self, listing_id: str) -> AsyncGenerator[Dict[str, Any], None]:
        """
        Yield status changes for one listing until cancelled.

        Each subscription uses its own connection.
        """
        channel = self.channel_name(listing_id)
        subscriber = Redis.from_url(self._redis_url, encoding="utf-8", decode_responses=True)
        pubsub = subscriber.pubsub()

        try:
            await pubsub.subscribe(channel)
            logger.info(f"Subscribed to channel: {channel}")

            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    data = json.loads(message["data"])
                except json.JSONDecodeError as e:
                    logger.warning(f"Failed to parse message on {channel}: {e}")
                    continue
                yield data.get("data") or {}

        except asyncio.CancelledError:
            logger.info(f"Subscription cancelled for channel: {channel}")
            raise
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            await subscriber.aclose()
            logger.info(f"Unsubscribed from channel: {channel}")

    async def close(self) -> None:
        async with self._lock:
            if self._publisher is not None:
                await self._publisher.aclose()
                self._publisher = None
