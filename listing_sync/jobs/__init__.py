"""Job submission and completion detection."""

from .trigger import JobAction, JobTrigger, build_payload
from .notifier import StatusNotifier
from .watcher import CompletionWatcher, WatcherState

__all__ = [
    "JobAction",
    "JobTrigger",
    "build_payload",
    "StatusNotifier",
    "CompletionWatcher",
    "WatcherState",
]
