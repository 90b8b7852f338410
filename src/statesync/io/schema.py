"""Wire schemas for the state events consumed by the synchronizer."""

from __future__ import annotations

import json
from collections.abc import Mapping
from enum import Enum
from typing import Any, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from statesync.core.pointer import parse_pointer

JSONPrimitive = Union[str, int, float, bool, None]
JSONValue = Union[JSONPrimitive, Dict[str, "JSONValue"], List["JSONValue"]]


class EventType(str, Enum):
    """Event families carried on an agent event stream."""

    TEXT_MESSAGE_START = "TEXT_MESSAGE_START"
    TEXT_MESSAGE_CONTENT = "TEXT_MESSAGE_CONTENT"
    TEXT_MESSAGE_END = "TEXT_MESSAGE_END"
    TEXT_MESSAGE_CHUNK = "TEXT_MESSAGE_CHUNK"
    TOOL_CALL_START = "TOOL_CALL_START"
    TOOL_CALL_ARGS = "TOOL_CALL_ARGS"
    TOOL_CALL_END = "TOOL_CALL_END"
    TOOL_CALL_CHUNK = "TOOL_CALL_CHUNK"
    TOOL_CALL_RESULT = "TOOL_CALL_RESULT"
    STATE_SNAPSHOT = "STATE_SNAPSHOT"
    STATE_DELTA = "STATE_DELTA"
    MESSAGES_SNAPSHOT = "MESSAGES_SNAPSHOT"
    RAW = "RAW"
    CUSTOM = "CUSTOM"
    RUN_STARTED = "RUN_STARTED"
    RUN_FINISHED = "RUN_FINISHED"
    RUN_ERROR = "RUN_ERROR"
    STEP_STARTED = "STEP_STARTED"
    STEP_FINISHED = "STEP_FINISHED"


STATE_EVENT_TYPES = frozenset({EventType.STATE_SNAPSHOT.value, EventType.STATE_DELTA.value})


class PatchOp(str, Enum):
    """JSON Patch (RFC 6902) operation kinds."""

    ADD = "add"
    REMOVE = "remove"
    REPLACE = "replace"
    MOVE = "move"
    COPY = "copy"
    TEST = "test"


_VALUE_OPS = frozenset({PatchOp.ADD, PatchOp.REPLACE, PatchOp.TEST})
_FROM_OPS = frozenset({PatchOp.MOVE, PatchOp.COPY})


class PatchOperation(BaseModel):
    """A single JSON Patch operation.

    ``value`` is required for ``add``/``replace``/``test`` and forbidden
    otherwise; ``from`` is required for ``move``/``copy`` and forbidden
    otherwise. An explicit ``"value": null`` counts as present. Members are
    only accepted under their wire names, so build instances from the wire
    mapping (``model_validate``) rather than by Python field name.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    op: PatchOp = Field(..., description="Operation kind.")
    path: str = Field(..., description="JSON Pointer to the target location.")
    value: Any = Field(None, description="Value for add, replace and test.")
    from_: str | None = Field(None, alias="from", description="Source pointer for move and copy.")

    @model_validator(mode="after")
    def _check_members(self) -> "PatchOperation":
        provided = self.model_fields_set
        if self.op in _VALUE_OPS and "value" not in provided:
            raise ValueError(f"'{self.op.value}' operation requires 'value'")
        if self.op not in _VALUE_OPS and "value" in provided:
            raise ValueError(f"'{self.op.value}' operation must not carry 'value'")
        if self.op in _FROM_OPS and self.from_ is None:
            raise ValueError(f"'{self.op.value}' operation requires 'from'")
        if self.op not in _FROM_OPS and "from_" in provided:
            raise ValueError(f"'{self.op.value}' operation must not carry 'from'")

        parse_pointer(self.path)
        if self.from_ is not None:
            parse_pointer(self.from_)
        return self

    def to_wire(self) -> dict[str, Any]:
        """Return the operation using its wire field names."""

        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class StateEventBase(BaseModel):
    """Members shared by every protocol event."""

    model_config = ConfigDict(extra="allow", frozen=True)

    timestamp: int | None = Field(None, description="Emission time in milliseconds, if known.")
    raw_event: Any = Field(None, alias="rawEvent", description="Provider payload the event was derived from.")


class StateSnapshotEvent(StateEventBase):
    """Complete replacement of a run's state document."""

    type: Literal["STATE_SNAPSHOT"] = "STATE_SNAPSHOT"
    snapshot: Any = Field(..., description="The full state document.")


class StateDeltaEvent(StateEventBase):
    """Ordered JSON Patch operations against a run's state document."""

    type: Literal["STATE_DELTA"] = "STATE_DELTA"
    delta: List[PatchOperation] = Field(..., description="Operations applied in order.")


StateEvent = Union[StateSnapshotEvent, StateDeltaEvent]


def decode_payload(raw: Any) -> Mapping[str, Any]:
    """Turn a raw event (JSON text, bytes, mapping or model) into a mapping.

    Raises :class:`ValueError` when the payload is not a JSON object.
    """

    if isinstance(raw, BaseModel):
        return raw.model_dump(mode="json", by_alias=True)
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"event payload is not valid JSON: {exc.msg}") from exc
    if not isinstance(raw, Mapping):
        raise ValueError(f"event payload must be a JSON object, got {type(raw).__name__}")
    return raw


def event_type(payload: Mapping[str, Any]) -> str:
    """Return the ``type`` member of a decoded event payload."""

    kind = payload.get("type")
    if not isinstance(kind, str) or not kind:
        raise ValueError("event payload is missing a string 'type' member")
    return kind


def is_state_event(payload: Mapping[str, Any]) -> bool:
    return payload.get("type") in STATE_EVENT_TYPES


def parse_state_event(payload: Mapping[str, Any] | StateEvent) -> StateEvent:
    """Validate a decoded payload as a snapshot or delta event.

    Raises :class:`pydantic.ValidationError` when the payload does not match
    the wire shape, and :class:`ValueError` for non-state event types.
    """

    if isinstance(payload, (StateSnapshotEvent, StateDeltaEvent)):
        return payload
    kind = event_type(payload)
    if kind == EventType.STATE_SNAPSHOT.value:
        return StateSnapshotEvent.model_validate(payload)
    if kind == EventType.STATE_DELTA.value:
        return StateDeltaEvent.model_validate(payload)
    raise ValueError(f"{kind!r} is not a state event")


__all__ = [
    "EventType",
    "JSONValue",
    "PatchOp",
    "PatchOperation",
    "STATE_EVENT_TYPES",
    "StateDeltaEvent",
    "StateEvent",
    "StateEventBase",
    "StateSnapshotEvent",
    "decode_payload",
    "event_type",
    "is_state_event",
    "parse_state_event",
]
