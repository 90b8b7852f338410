"""Per-run state store, change notification, recovery and event routing."""

from .loop import SessionTranscript, StateSyncRuntime, consume
from .monitor import ConsistencyMonitor, FailureContext, ResyncRequest
from .notifier import ChangeNotifier, Subscription
from .router import ActionKind, EventRouter, RoutedAction, RunState
from .store import DeltaFailure, DeltaResult, StateStore

__all__ = [
    "ActionKind",
    "ChangeNotifier",
    "ConsistencyMonitor",
    "DeltaFailure",
    "DeltaResult",
    "EventRouter",
    "FailureContext",
    "ResyncRequest",
    "RoutedAction",
    "RunState",
    "SessionTranscript",
    "StateStore",
    "StateSyncRuntime",
    "Subscription",
    "consume",
]
