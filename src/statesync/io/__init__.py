"""Wire schemas and event stream decoding for statesync."""

from .schema import (
    EventType,
    JSONValue,
    PatchOp,
    PatchOperation,
    StateDeltaEvent,
    StateSnapshotEvent,
    decode_payload,
    parse_state_event,
)
from .stream import BaseEventStream, JsonLinesNormalizer, MemoryEventStream, collect_events

__all__ = [
    "BaseEventStream",
    "EventType",
    "JSONValue",
    "JsonLinesNormalizer",
    "MemoryEventStream",
    "PatchOp",
    "PatchOperation",
    "StateDeltaEvent",
    "StateSnapshotEvent",
    "collect_events",
    "decode_payload",
    "parse_state_event",
]
