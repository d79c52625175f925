"""
Completion Watcher

Detects that the external worker finished a job for one listing.

Two channels race:
- push: listing status changes from the pub/sub channel
- poll: a fixed-interval read of the listing's status and updated_at

Both feed handle_signal(), the single place that decides. A signal completes
the job only while the watcher is waiting, only for the completion status and
only when the row's updated_at is strictly later than the trigger time. The
state leaves WAITING before the callback runs, so whichever channel loses the
race finds nothing to do. Rows left by a previous job fail the timestamp
check and are ignored.

    idle --arm(since)--> waiting(since) --newer completion--> idle (callback)
                              |--disarm()/close()-----------> idle (no callback)
"""

import asyncio
import inspect
import logging
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

from ..errors import JobAlreadyRunningError, StoreError
from ..utils.config import get_settings
from ..utils.timestamps import parse_timestamp, utcnow

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[datetime], Union[None, Awaitable[None]]]


class WatcherState(Enum):
    IDLE = "idle"
    WAITING = "waiting"


class CompletionWatcher:
    """
    Completion detection for one open listing.

    Usage:
        watcher = CompletionWatcher(listing_id, store, subscription=notifier.subscribe(listing_id))
        await watcher.start()
        watcher.arm(utcnow(), on_complete)
        ...
        await watcher.close()
    """

    def __init__(
        self,
        listing_id: str,
        store,
        subscription: Optional[AsyncIterator[dict]] = None,
        poll_interval: Optional[float] = None,
        completion_status: Optional[str] = None,
        on_error: Optional[Callable[[Exception], Any]] = None,
    ):
        """
        Args:
            listing_id: Listing to watch
            store: EvaluationStore used by the poll
            subscription: Async iterator of status change dicts (push channel)
            poll_interval: Seconds between polls (defaults to POLL_INTERVAL_SECONDS)
            completion_status: Status value that marks completion
            on_error: Receives exceptions raised by the completion callback.
                Without it the exception propagates to the caller and is kept
                on last_error.
        """
        settings = get_settings()
        self.listing_id = listing_id
        self._store = store
        self._subscription = subscription
        self.poll_interval = poll_interval if poll_interval is not None else settings.POLL_INTERVAL_SECONDS
        self.completion_status = completion_status or settings.COMPLETION_STATUS
        self._on_error = on_error

        self._state = WatcherState.IDLE
        self._since: Optional[datetime] = None
        self._callback: Optional[CompletionCallback] = None
        self._tasks = []
        self._closed = False
        self.last_error: Optional[Exception] = None

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def is_waiting(self) -> bool:
        return self._state is WatcherState.WAITING

    @property
    def since(self) -> Optional[datetime]:
        return self._since

    def arm(self, since: Optional[datetime], on_complete: CompletionCallback) -> None:
        """
        Enter waiting(since) for a job triggered at `since`.

        Raises:
            JobAlreadyRunningError: If a job is already outstanding
        """
        if self._closed:
            raise RuntimeError(f"Watcher for {self.listing_id} is closed")
        if self._state is WatcherState.WAITING:
            raise JobAlreadyRunningError(
                f"A job is already running for listing {self.listing_id}",
                self.listing_id,
            )
        self._since = parse_timestamp(since) or utcnow()
        self._callback = on_complete
        self.last_error = None
        self._state = WatcherState.WAITING
        logger.info(f"Waiting for completion of listing {self.listing_id} since {self._since}")

    def disarm(self) -> None:
        """Leave waiting without firing the callback."""
        if self._state is WatcherState.WAITING:
            logger.info(f"Stopped waiting for listing {self.listing_id}")
        self._reset()

    def _reset(self) -> None:
        self._state = WatcherState.IDLE
        self._since = None
        self._callback = None

    # =========================================================================
    # SIGNALS
    # =========================================================================

    async def handle_signal(self, status: Optional[str], updated_at: Any, source: str) -> bool:
        """
        Accept or reject one completion signal.

        Returns:
            True if this signal completed the job
        """
        if self._closed or self._state is not WatcherState.WAITING:
            return False
        if status != self.completion_status:
            return False

        row_time = parse_timestamp(updated_at)
        if row_time is None or row_time <= self._since:
            logger.debug(
                f"Ignoring stale {source} signal for {self.listing_id}: "
                f"updated_at={row_time} since={self._since}"
            )
            return False

        callback = self._callback
        self._reset()
        logger.info(f"Job for listing {self.listing_id} completed via {source} at {row_time}")

        if callback is not None:
            try:
                result = callback(row_time)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Completion handler failed for listing {self.listing_id}: {e}")
                self.last_error = e
                if self._on_error is None:
                    raise
                self._on_error(e)
        return True

    async def poll_once(self) -> bool:
        """Read the listing row once and feed it through handle_signal()."""
        if self._state is not WatcherState.WAITING:
            return False
        try:
            snapshot = self._store.get_listing_status(self.listing_id)
        except StoreError as e:
            logger.warning(f"Completion poll failed for {self.listing_id}: {e}")
            return False
        return await self.handle_signal(snapshot.status, snapshot.updated_at, "poll")

    async def _poll_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.poll_once()
            except Exception as e:
                # Keep polling; the job itself is already consumed
                logger.error(f"Poll loop error for listing {self.listing_id}: {e}")

    async def _listen_loop(self) -> None:
        async for change in self._subscription:
            if change.get("listing_id") not in (None, self.listing_id):
                continue
            try:
                await self.handle_signal(change.get("status"), change.get("updated_at"), "push")
            except Exception as e:
                logger.error(f"Push listener error for listing {self.listing_id}: {e}")

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Start the push listener and the poll timer."""
        if self._tasks:
            return
        if self._subscription is not None:
            self._tasks.append(asyncio.create_task(self._listen_loop()))
        self._tasks.append(asyncio.create_task(self._poll_loop()))

    async def close(self) -> None:
        """
        Tear down both channels. An in-flight wait is abandoned and no
        callback fires afterwards.
        """
        self._closed = True
        self._reset()
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        aclose = getattr(self._subscription, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.debug(f"Watcher for listing {self.listing_id} closed")
