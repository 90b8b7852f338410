"""Keep a frontend mirror of an agent's state in sync with the agent.

The package applies ``STATE_SNAPSHOT`` and ``STATE_DELTA`` events (JSON Patch,
RFC 6902) from an ordered event stream to one in-memory document per run,
publishes every successful change to subscribers, and asks the agent side for
a fresh snapshot whenever a delta cannot be applied.
"""

from __future__ import annotations

from .config import SyncConfig
from .core import (
    InvalidMove,
    MalformedOperation,
    PatchError,
    PathNotFound,
    ReasonCode,
    StateSyncError,
    TestFailed,
    TypeMismatch,
    UnknownRun,
    apply_patch,
)
from .io import PatchOperation, StateDeltaEvent, StateSnapshotEvent
from .runtime import (
    ActionKind,
    ChangeNotifier,
    ConsistencyMonitor,
    EventRouter,
    RoutedAction,
    StateStore,
    StateSyncRuntime,
)

__all__ = [
    "ActionKind",
    "ChangeNotifier",
    "ConsistencyMonitor",
    "EventRouter",
    "InvalidMove",
    "MalformedOperation",
    "PatchError",
    "PatchOperation",
    "PathNotFound",
    "ReasonCode",
    "RoutedAction",
    "StateDeltaEvent",
    "StateSnapshotEvent",
    "StateStore",
    "StateSyncError",
    "StateSyncRuntime",
    "SyncConfig",
    "TestFailed",
    "TypeMismatch",
    "UnknownRun",
    "apply_patch",
]

__version__ = "0.1.0"
