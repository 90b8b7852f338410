"""Exception types raised by the state synchronization core."""

from __future__ import annotations

from enum import Enum


class ReasonCode(str, Enum):
    """Machine readable reason attached to every patch failure."""

    PATH_NOT_FOUND = "path-not-found"
    TYPE_MISMATCH = "type-mismatch"
    TEST_FAILED = "test-failed"
    INVALID_MOVE = "invalid-move"
    MALFORMED_OPERATION = "malformed-operation"


class StateSyncError(RuntimeError):
    """Base class for every error raised by :mod:`statesync`."""


class PatchError(StateSyncError):
    """Raised when a JSON Patch sequence cannot be applied.

    Attributes
    ----------
    index:
        Zero based position of the failing operation within the delta.
    op:
        The operation kind (``"add"``, ``"remove"`` ...), when known.
    path:
        The JSON Pointer the operation targeted, when known.
    reason:
        The :class:`ReasonCode` describing the failure.
    """

    reason: ReasonCode = ReasonCode.MALFORMED_OPERATION

    def __init__(
        self,
        message: str,
        *,
        index: int,
        op: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.index = index
        self.op = op
        self.path = path

    def as_dict(self) -> dict[str, object]:
        return {
            "reason": self.reason.value,
            "index": self.index,
            "op": self.op,
            "path": self.path,
            "message": self.message,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(reason={self.reason.value!r}, index={self.index}, "
            f"op={self.op!r}, path={self.path!r})"
        )


class MalformedOperation(PatchError):
    """An operation is missing a required member or carries a forbidden one."""

    reason = ReasonCode.MALFORMED_OPERATION


class DeltaTooLarge(MalformedOperation):
    """A delta holds more operations than the configured limit."""


class PathNotFound(PatchError):
    """The operation targets a location that does not exist."""

    reason = ReasonCode.PATH_NOT_FOUND


class TypeMismatch(PatchError):
    """A pointer walks through a value that cannot contain the next token."""

    reason = ReasonCode.TYPE_MISMATCH


class TestFailed(PatchError):
    """A ``test`` operation found a value different from the expected one."""

    __test__ = False  # keep pytest from collecting this as a test class

    reason = ReasonCode.TEST_FAILED


class InvalidMove(PatchError):
    """A ``move`` would place a value inside itself."""

    reason = ReasonCode.INVALID_MOVE


class RunError(StateSyncError):
    """Base class for run registry errors."""

    def __init__(self, run_id: str, message: str) -> None:
        super().__init__(message)
        self.run_id = run_id


class UnknownRun(RunError):
    """An event or call references a run with no active state store."""

    def __init__(self, run_id: str) -> None:
        super().__init__(run_id, f"unknown run {run_id!r}")


class RunAlreadyActive(RunError):
    """A run was started twice without being ended in between."""

    def __init__(self, run_id: str) -> None:
        super().__init__(run_id, f"run {run_id!r} is already active")


__all__ = [
    "DeltaTooLarge",
    "InvalidMove",
    "MalformedOperation",
    "PatchError",
    "PathNotFound",
    "ReasonCode",
    "RunAlreadyActive",
    "RunError",
    "StateSyncError",
    "TestFailed",
    "TypeMismatch",
    "UnknownRun",
]
