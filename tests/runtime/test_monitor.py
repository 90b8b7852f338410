from __future__ import annotations

from typing import Any

from statesync.config import SyncConfig
from statesync.runtime.monitor import ConsistencyMonitor, FailureContext
from statesync.runtime.store import StateStore


def _failing_store() -> StateStore:
    return StateStore("run-1", {"a": 1})


def _reject(store: StateStore, monitor: ConsistencyMonitor) -> Any:
    result = store.apply_delta([{"op": "remove", "path": "/b"}])
    assert result.failure is not None
    return monitor.report(monitor.delta_context(result.failure))


def test_first_failure_emits_resync_request(clock) -> None:
    calls: list[tuple[str, FailureContext]] = []
    monitor = ConsistencyMonitor("run-1", lambda run_id, ctx: calls.append((run_id, ctx)), clock=clock)

    request = _reject(_failing_store(), monitor)

    assert request is not None
    assert request.sequence == 1
    assert request.requested_at == clock.now
    assert len(calls) == 1
    run_id, context = calls[0]
    assert run_id == "run-1"
    assert context.reason == "path-not-found"
    assert context.document == {"a": 1}
    assert context.operations[0]["path"] == "/b"
    assert context.as_dict()["error"]["index"] == 0


def test_failures_coalesce_while_request_outstanding(clock) -> None:
    calls: list[str] = []
    monitor = ConsistencyMonitor("run-1", lambda run_id, ctx: calls.append(run_id), clock=clock)
    store = _failing_store()

    assert _reject(store, monitor) is not None
    assert _reject(store, monitor) is None
    assert _reject(store, monitor) is None

    assert calls == ["run-1"]
    assert monitor.coalesced == 2
    assert len(monitor.failures) == 3
    assert monitor.pending is not None


def test_acknowledge_allows_a_new_request(clock) -> None:
    calls: list[str] = []
    monitor = ConsistencyMonitor("run-1", lambda run_id, ctx: calls.append(run_id), clock=clock)
    store = _failing_store()

    _reject(store, monitor)
    assert monitor.acknowledge()
    assert not monitor.acknowledge()
    second = _reject(store, monitor)

    assert second is not None
    assert second.sequence == 2
    assert len(calls) == 2


def test_outstanding_request_expires_after_timeout(clock) -> None:
    config = SyncConfig(resync_timeout=5.0)
    monitor = ConsistencyMonitor("run-1", config=config, clock=clock)
    store = _failing_store()

    _reject(store, monitor)
    clock.advance(4.9)
    assert _reject(store, monitor) is None

    clock.advance(0.2)
    assert monitor.pending is None
    renewed = _reject(store, monitor)
    assert renewed is not None
    assert monitor.requests_emitted == 2


def test_history_is_bounded(clock) -> None:
    monitor = ConsistencyMonitor("run-1", config=SyncConfig(failure_history=2), clock=clock)
    store = _failing_store()
    for _ in range(5):
        _reject(store, monitor)
    assert len(monitor.failures) == 2


def test_failing_resync_handler_is_contained(clock) -> None:
    def broken(run_id: str, context: FailureContext) -> None:
        raise ConnectionError("transport down")

    monitor = ConsistencyMonitor("run-1", broken, clock=clock)
    assert _reject(_failing_store(), monitor) is not None


def test_event_context_describes_unparsed_events(clock) -> None:
    monitor = ConsistencyMonitor("run-1", clock=clock)
    context = monitor.event_context("bad payload", document={"a": 1}, event={"type": "STATE_DELTA"})

    assert context.reason == "malformed-event"
    assert context.error is None
    assert context.as_dict()["operations"] == []
