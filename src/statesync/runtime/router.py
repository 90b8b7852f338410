"""Classify protocol events and drive per-run state synchronization."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError

from statesync.config import SyncConfig
from statesync.core.errors import DeltaTooLarge, MalformedOperation, RunAlreadyActive, UnknownRun
from statesync.io.schema import (
    STATE_EVENT_TYPES,
    EventType,
    StateDeltaEvent,
    StateEvent,
    StateSnapshotEvent,
    decode_payload,
    event_type,
    parse_state_event,
)

from .monitor import ConsistencyMonitor, FailureContext, ResyncHandler, ResyncRequest
from .notifier import ChangeNotifier, StateListener, Subscription
from .store import UNSET, DeltaFailure, StateStore


LOGGER = logging.getLogger(__name__)

PassThroughHandler = Callable[[str, Mapping[str, Any]], None]


class ActionKind(str, Enum):
    """What the router did with an event."""

    SNAPSHOT_APPLIED = "snapshot-applied"
    DELTA_APPLIED = "delta-applied"
    DELTA_REJECTED = "delta-rejected"
    EVENT_REJECTED = "event-rejected"
    PASSED_THROUGH = "passed-through"


@dataclass(frozen=True, slots=True)
class RoutedAction:
    """Result of routing one event.

    ``document`` holds a copy of the new state after a successful snapshot or
    delta. ``failure`` and ``resync`` are set when a state update was rejected;
    ``resync`` stays ``None`` when the failure was coalesced into an
    outstanding request.
    """

    kind: ActionKind
    run_id: str
    event: Any
    document: Any = None
    failure: FailureContext | None = None
    resync: ResyncRequest | None = None

    @property
    def applied(self) -> bool:
        return self.kind in (ActionKind.SNAPSHOT_APPLIED, ActionKind.DELTA_APPLIED)

    @property
    def rejected(self) -> bool:
        return self.kind in (ActionKind.DELTA_REJECTED, ActionKind.EVENT_REJECTED)


@dataclass(slots=True)
class RunState:
    """The independently owned components of one run.

    ``lock`` is held from the store mutation through publication, so
    subscribers see documents in the order the store produced them.
    """

    run_id: str
    store: StateStore
    notifier: ChangeNotifier
    monitor: ConsistencyMonitor
    lock: threading.RLock = field(default_factory=threading.RLock)


class EventRouter:
    """Route events to the state store of the run they belong to.

    Snapshots and deltas mutate the run's :class:`StateStore`; successful
    mutations are published through its :class:`ChangeNotifier` and failed
    ones are handed to its :class:`ConsistencyMonitor` without publishing
    anything. Every other event type is forwarded untouched to
    ``on_passthrough``. Events are handled one at a time in the order
    :meth:`route` is called; runs share no mutable state.
    """

    def __init__(
        self,
        *,
        config: SyncConfig | None = None,
        on_resync: ResyncHandler | None = None,
        on_passthrough: PassThroughHandler | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or SyncConfig()
        self._on_resync = on_resync
        self._on_passthrough = on_passthrough
        self._clock = clock
        self._runs: dict[str, RunState] = {}
        self._registry_lock = threading.Lock()

    def begin_run(self, run_id: str, initial_snapshot: Any = UNSET) -> RunState:
        """Create the state store for ``run_id``.

        Without ``initial_snapshot`` the run starts from an empty object.
        """

        if not isinstance(run_id, str) or not run_id:
            raise ValueError("run_id must be a non-empty string")
        with self._registry_lock:
            if run_id in self._runs:
                raise RunAlreadyActive(run_id)
            run = RunState(
                run_id=run_id,
                store=StateStore(run_id, initial_snapshot, config=self.config),
                notifier=ChangeNotifier(run_id),
                monitor=ConsistencyMonitor(
                    run_id,
                    self._on_resync,
                    config=self.config,
                    clock=self._clock,
                ),
            )
            self._runs[run_id] = run
        LOGGER.info("run started run=%s", run_id)
        return run

    def end_run(self, run_id: str) -> None:
        """Tear down the run's store and drop all of its subscribers."""

        with self._registry_lock:
            run = self._runs.pop(run_id, None)
        if run is None:
            raise UnknownRun(run_id)
        run.store.close()
        run.notifier.clear()
        LOGGER.info(
            "run ended run=%s version=%s failures=%s",
            run_id,
            run.store.version,
            len(run.monitor.failures),
        )

    def has_run(self, run_id: str) -> bool:
        with self._registry_lock:
            return run_id in self._runs

    @property
    def run_ids(self) -> tuple[str, ...]:
        with self._registry_lock:
            return tuple(self._runs)

    def get_run(self, run_id: str) -> RunState:
        with self._registry_lock:
            run = self._runs.get(run_id)
        if run is None:
            raise UnknownRun(run_id)
        return run

    def state(self, run_id: str) -> Any:
        """Return a copy of the run's current document."""

        return self.get_run(run_id).store.get()

    def subscribe(self, run_id: str, callback: StateListener) -> Subscription:
        return self.get_run(run_id).notifier.subscribe(callback)

    def route(self, run_id: str, event: Any) -> RoutedAction:
        """Handle one event for ``run_id``.

        ``event`` may be a mapping, JSON text or bytes, or a parsed state event
        model. Raises :class:`UnknownRun` when the run is not active; every
        other problem is reported through the returned :class:`RoutedAction`.
        """

        run = self.get_run(run_id)
        with run.lock:
            return self._route(run, event)

    def _route(self, run: RunState, event: Any) -> RoutedAction:
        if isinstance(event, (StateSnapshotEvent, StateDeltaEvent)):
            return self._apply(run, event)

        try:
            payload = decode_payload(event)
            kind = event_type(payload)
        except ValueError as exc:
            return self._reject(run, event, str(exc))

        if kind not in STATE_EVENT_TYPES:
            return self._pass_through(run, kind, payload)

        oversized = self._oversized_delta(kind, payload)
        if oversized is not None:
            return self._delta_rejected(
                run,
                payload,
                DeltaFailure(
                    error=oversized,
                    operations=tuple(payload["delta"]),
                    document=run.store.get(),
                ),
            )

        try:
            parsed = parse_state_event(payload)
        except ValidationError as exc:
            malformed = _malformed_operation(payload, exc)
            if malformed is None:
                return self._reject(run, payload, _summarize(exc))
            return self._delta_rejected(
                run,
                payload,
                DeltaFailure(
                    error=malformed,
                    operations=tuple(payload["delta"]),
                    document=run.store.get(),
                ),
            )
        return self._apply(run, parsed)

    def _oversized_delta(self, kind: str, payload: Mapping[str, Any]) -> DeltaTooLarge | None:
        limit = self.config.max_delta_operations
        delta = payload.get("delta")
        if kind != EventType.STATE_DELTA.value or limit is None or not isinstance(delta, list):
            return None
        if len(delta) <= limit:
            return None
        return DeltaTooLarge(f"delta exceeds the limit of {limit} operations", index=limit)

    def _apply(self, run: RunState, event: StateEvent) -> RoutedAction:
        if isinstance(event, StateSnapshotEvent):
            document = run.store.snapshot(event.snapshot)
            run.monitor.acknowledge()
            run.notifier.publish(document)
            return RoutedAction(
                kind=ActionKind.SNAPSHOT_APPLIED,
                run_id=run.run_id,
                event=event,
                document=document,
            )

        result = run.store.apply_delta(event.delta)
        if result.failure is not None:
            return self._delta_rejected(run, event, result.failure)
        run.notifier.publish(result.document)
        return RoutedAction(
            kind=ActionKind.DELTA_APPLIED,
            run_id=run.run_id,
            event=event,
            document=result.document,
        )

    def _delta_rejected(self, run: RunState, event: Any, failure: DeltaFailure) -> RoutedAction:
        context = run.monitor.delta_context(failure)
        resync = run.monitor.report(context)
        return RoutedAction(
            kind=ActionKind.DELTA_REJECTED,
            run_id=run.run_id,
            event=event,
            failure=context,
            resync=resync,
        )

    def _reject(self, run: RunState, event: Any, message: str) -> RoutedAction:
        context = run.monitor.event_context(
            message,
            document=run.store.get(),
            event=event if isinstance(event, Mapping) else None,
        )
        resync = run.monitor.report(context)
        return RoutedAction(
            kind=ActionKind.EVENT_REJECTED,
            run_id=run.run_id,
            event=event,
            failure=context,
            resync=resync,
        )

    def _pass_through(self, run: RunState, kind: str, payload: Mapping[str, Any]) -> RoutedAction:
        if kind not in EventType.__members__:
            LOGGER.debug("forwarding unrecognized event type run=%s type=%s", run.run_id, kind)
        else:
            LOGGER.debug("forwarding event run=%s type=%s", run.run_id, kind)
        if self._on_passthrough is not None:
            try:
                self._on_passthrough(run.run_id, payload)
            except Exception:
                LOGGER.exception("pass-through handler failed run=%s type=%s", run.run_id, kind)
        return RoutedAction(kind=ActionKind.PASSED_THROUGH, run_id=run.run_id, event=payload)


def _malformed_operation(
    payload: Mapping[str, Any], exc: ValidationError
) -> MalformedOperation | None:
    """Map schema errors located inside ``delta[i]`` onto the patch taxonomy."""

    delta = payload.get("delta")
    if not isinstance(delta, list):
        return None
    indices = []
    for error in exc.errors():
        location = error.get("loc", ())
        if len(location) < 2 or location[0] != "delta" or not isinstance(location[1], int):
            return None
        indices.append((location[1], error.get("msg", "invalid operation")))
    if not indices:
        return None

    index, message = min(indices, key=lambda item: item[0])
    operation = delta[index]
    op = operation.get("op") if isinstance(operation, Mapping) else None
    path = operation.get("path") if isinstance(operation, Mapping) else None
    return MalformedOperation(
        f"malformed operation: {message}",
        index=index,
        op=op if isinstance(op, str) else None,
        path=path if isinstance(path, str) else None,
    )


def _summarize(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        parts.append(f"{location or '<event>'}: {error.get('msg', 'invalid')}")
    return "invalid state event: " + "; ".join(parts)


__all__ = [
    "ActionKind",
    "EventRouter",
    "PassThroughHandler",
    "RoutedAction",
    "RunState",
]
