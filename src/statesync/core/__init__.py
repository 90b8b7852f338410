"""Pure JSON document primitives: pointers, patches and the error taxonomy."""

from __future__ import annotations

from .errors import (
    DeltaTooLarge,
    InvalidMove,
    MalformedOperation,
    PatchError,
    PathNotFound,
    ReasonCode,
    RunAlreadyActive,
    StateSyncError,
    TestFailed,
    TypeMismatch,
    UnknownRun,
)
from .patch import apply_patch, json_equal

__all__ = [
    "DeltaTooLarge",
    "InvalidMove",
    "MalformedOperation",
    "PatchError",
    "PathNotFound",
    "ReasonCode",
    "RunAlreadyActive",
    "StateSyncError",
    "TestFailed",
    "TypeMismatch",
    "UnknownRun",
    "apply_patch",
    "json_equal",
]
