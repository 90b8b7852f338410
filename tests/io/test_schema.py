from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from statesync.io.schema import (
    EventType,
    PatchOp,
    PatchOperation,
    StateDeltaEvent,
    StateSnapshotEvent,
    decode_payload,
    event_type,
    is_state_event,
    parse_state_event,
)


def test_snapshot_event_accepts_any_json_value() -> None:
    for snapshot in ({"a": 1}, [1, 2], "text", 3.5, None):
        event = parse_state_event({"type": "STATE_SNAPSHOT", "snapshot": snapshot})
        assert isinstance(event, StateSnapshotEvent)
        assert event.snapshot == snapshot


def test_snapshot_event_requires_snapshot_member() -> None:
    with pytest.raises(ValidationError):
        parse_state_event({"type": "STATE_SNAPSHOT"})


def test_delta_event_parses_operations_with_wire_names() -> None:
    event = parse_state_event(
        {
            "type": "STATE_DELTA",
            "delta": [
                {"op": "move", "from": "/a", "path": "/b"},
                {"op": "add", "path": "/c", "value": None},
            ],
            "timestamp": 1700000000000,
        }
    )

    assert isinstance(event, StateDeltaEvent)
    assert event.delta[0].op is PatchOp.MOVE
    assert event.delta[0].from_ == "/a"
    assert event.delta[1].to_wire() == {"op": "add", "path": "/c", "value": None}
    assert event.timestamp == 1700000000000


def test_delta_event_rejects_malformed_operation() -> None:
    with pytest.raises(ValidationError) as excinfo:
        parse_state_event({"type": "STATE_DELTA", "delta": [{"op": "remove", "path": "/a", "value": 1}]})
    assert excinfo.value.errors()[0]["loc"][:2] == ("delta", 0)


def test_delta_event_requires_a_list() -> None:
    with pytest.raises(ValidationError):
        parse_state_event({"type": "STATE_DELTA", "delta": {"op": "add"}})


def test_patch_operation_member_rules() -> None:
    PatchOperation.model_validate({"op": "test", "path": "/a", "value": 0})
    PatchOperation.model_validate({"op": "copy", "from": "", "path": "/a"})

    with pytest.raises(ValidationError):
        PatchOperation.model_validate({"op": "copy", "path": "/a"})
    with pytest.raises(ValidationError):
        PatchOperation.model_validate({"op": "remove", "path": "/a", "from": "/b"})
    with pytest.raises(ValidationError):
        PatchOperation.model_validate({"op": "add", "path": "/a", "value": 1, "extra": True})


def test_python_field_names_are_not_wire_members() -> None:
    with pytest.raises(ValidationError):
        PatchOperation.model_validate({"op": "move", "path": "/b", "from_": "/a"})

    event = StateSnapshotEvent.model_validate({"type": "STATE_SNAPSHOT", "snapshot": {}, "raw_event": 1})
    assert event.raw_event is None
    assert event.model_extra == {"raw_event": 1}


def test_patch_operation_to_wire_uses_from_alias() -> None:
    operation = PatchOperation.model_validate({"op": PatchOp.MOVE, "path": "/b", "from": "/a"})
    assert operation.to_wire() == {"op": "move", "path": "/b", "from": "/a"}


def test_state_events_keep_protocol_base_fields() -> None:
    event = StateSnapshotEvent.model_validate(
        {"type": "STATE_SNAPSHOT", "snapshot": {}, "rawEvent": {"source": "agent"}, "threadId": "t-1"}
    )
    assert event.raw_event == {"source": "agent"}
    assert event.model_extra == {"threadId": "t-1"}


def test_decode_payload_variants() -> None:
    payload = {"type": "RUN_STARTED", "runId": "r1"}
    assert decode_payload(payload) is payload
    assert decode_payload(json.dumps(payload)) == payload
    assert decode_payload(json.dumps(payload).encode("utf-8")) == payload

    with pytest.raises(ValueError):
        decode_payload("{not json")
    with pytest.raises(ValueError):
        decode_payload("[1, 2]")


def test_event_type_helpers() -> None:
    assert event_type({"type": "CUSTOM"}) == EventType.CUSTOM.value
    assert is_state_event({"type": "STATE_DELTA"})
    assert not is_state_event({"type": "TEXT_MESSAGE_CONTENT"})

    with pytest.raises(ValueError):
        event_type({"snapshot": {}})
    with pytest.raises(ValueError):
        parse_state_event({"type": "RUN_FINISHED"})
