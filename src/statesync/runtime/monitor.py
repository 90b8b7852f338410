"""Divergence tracking and resync requests for a single run."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Deque

from statesync.config import SyncConfig
from statesync.core.errors import PatchError

from .store import DeltaFailure


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FailureContext:
    """Everything known about a state update that could not be applied.

    ``document`` is the state as it was before the failed update, ``error``
    is the patch error when the Patch Engine rejected the delta and ``None``
    when the event itself could not be parsed.
    """

    run_id: str
    reason: str
    message: str
    document: Any
    operations: tuple[Any, ...] = ()
    error: PatchError | None = None
    event: Mapping[str, Any] | None = None
    occurred_at: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "run_id": self.run_id,
            "reason": self.reason,
            "message": self.message,
            "document": self.document,
            "operations": [_wire(operation) for operation in self.operations],
        }
        if self.error is not None:
            payload["error"] = self.error.as_dict()
        return payload


@dataclass(frozen=True, slots=True)
class ResyncRequest:
    """A request for a fresh snapshot, addressed to the agent/transport side."""

    run_id: str
    failure: FailureContext
    requested_at: float
    sequence: int


ResyncHandler = Callable[[str, FailureContext], None]


def _wire(operation: Any) -> Any:
    to_wire = getattr(operation, "to_wire", None)
    return to_wire() if callable(to_wire) else operation


class ConsistencyMonitor:
    """Record failed state updates and ask for a resync without ending the run.

    At most one resync request is outstanding at a time. Failures that arrive
    while a request is outstanding are recorded and coalesced into it. A
    request is cleared by :meth:`acknowledge` (a snapshot arrived) or expires
    after :attr:`SyncConfig.resync_timeout` seconds.
    """

    def __init__(
        self,
        run_id: str,
        on_resync: ResyncHandler | None = None,
        *,
        config: SyncConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.run_id = run_id
        self._on_resync = on_resync
        self._config = config or SyncConfig()
        self._clock = clock
        self._failures: Deque[FailureContext] = deque(maxlen=self._config.failure_history)
        self._pending: ResyncRequest | None = None
        self._sequence = 0
        self.coalesced = 0

    @property
    def failures(self) -> tuple[FailureContext, ...]:
        """Most recent failure contexts, oldest first."""

        return tuple(self._failures)

    @property
    def pending(self) -> ResyncRequest | None:
        """The outstanding resync request, if it has not expired."""

        if self._pending is not None and self._expired(self._pending):
            LOGGER.info(
                "resync request expired run=%s sequence=%s",
                self.run_id,
                self._pending.sequence,
            )
            self._pending = None
        return self._pending

    @property
    def requests_emitted(self) -> int:
        return self._sequence

    def delta_context(self, failure: DeltaFailure) -> FailureContext:
        """Describe a delta the state store rejected."""

        return FailureContext(
            run_id=self.run_id,
            reason=failure.reason,
            message=failure.error.message,
            document=failure.document,
            operations=failure.operations,
            error=failure.error,
            occurred_at=self._clock(),
        )

    def event_context(
        self,
        message: str,
        *,
        document: Any,
        event: Mapping[str, Any] | None = None,
    ) -> FailureContext:
        """Describe a state event that never reached the Patch Engine."""

        return FailureContext(
            run_id=self.run_id,
            reason="malformed-event",
            message=message,
            document=document,
            event=event,
            occurred_at=self._clock(),
        )

    def report(self, context: FailureContext) -> ResyncRequest | None:
        """Record ``context`` and emit a resync request unless one is outstanding."""

        self._failures.append(context)
        LOGGER.warning(
            "state update rejected run=%s reason=%s: %s",
            self.run_id,
            context.reason,
            context.message,
        )

        outstanding = self.pending
        if outstanding is not None:
            self.coalesced += 1
            LOGGER.debug(
                "resync already pending run=%s sequence=%s coalesced=%s",
                self.run_id,
                outstanding.sequence,
                self.coalesced,
            )
            return None

        self._sequence += 1
        request = ResyncRequest(
            run_id=self.run_id,
            failure=context,
            requested_at=self._clock(),
            sequence=self._sequence,
        )
        self._pending = request
        LOGGER.info("requesting resync run=%s sequence=%s", self.run_id, request.sequence)
        self._emit(request)
        return request

    def acknowledge(self) -> bool:
        """Clear the outstanding request; returns whether one was pending."""

        if self._pending is None:
            return False
        LOGGER.debug("resync satisfied run=%s sequence=%s", self.run_id, self._pending.sequence)
        self._pending = None
        return True

    def _expired(self, request: ResyncRequest) -> bool:
        return self._clock() - request.requested_at >= self._config.resync_timeout

    def _emit(self, request: ResyncRequest) -> None:
        if self._on_resync is None:
            return
        try:
            self._on_resync(request.run_id, request.failure)
        except Exception:
            LOGGER.exception("resync handler failed run=%s", request.run_id)


__all__ = ["ConsistencyMonitor", "FailureContext", "ResyncHandler", "ResyncRequest"]
