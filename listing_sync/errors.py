"""
Error taxonomy for the synchronization engine.

Every failure is scoped to one listing and one operation, and is retryable
by re-issuing the same action. Nothing here is fatal to the process.
"""

from typing import Optional


class ListingSyncError(Exception):
    """Base class for engine errors."""

    def __init__(self, message: str, listing_id: Optional[str] = None):
        super().__init__(message)
        self.listing_id = listing_id


class TransportError(ListingSyncError):
    """The job trigger could not reach the worker."""

    def __init__(
        self,
        message: str,
        listing_id: Optional[str] = None,
        action: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, listing_id)
        self.action = action
        self.status_code = status_code


class StoreError(ListingSyncError):
    """A read or write against the durable store failed."""

    retryable = True


class PartialReplacementError(StoreError):
    """
    A keyword pool replacement deleted the old rows but the new rows did not
    land. The pool for this evaluation may be empty until a retry or reload.
    """

    def __init__(
        self,
        message: str,
        listing_id: Optional[str] = None,
        evaluation_id: Optional[str] = None,
    ):
        super().__init__(message, listing_id)
        self.evaluation_id = evaluation_id


class DuplicateKeywordError(ListingSyncError):
    """User-facing validation: the keyword is already tracked for the listing."""

    def __init__(self, keyword: str, listing_id: Optional[str] = None):
        super().__init__(f"Keyword already exists: {keyword}", listing_id)
        self.keyword = keyword


class UnavailableModeError(ListingSyncError):
    """No evaluation is loaded for the requested strategy mode."""

    def __init__(self, mode: str, listing_id: Optional[str] = None):
        super().__init__(f"No evaluation available for mode '{mode}'", listing_id)
        self.mode = mode


class JobAlreadyRunningError(ListingSyncError):
    """A second job was started while one is still outstanding for the listing."""


class PayloadError(ListingSyncError):
    """The worker output could not be interpreted."""
