from __future__ import annotations

import asyncio
from typing import Any, Iterable, List

from statesync.io.stream import (
    BaseEventStream,
    JsonLinesNormalizer,
    MemoryEventStream,
    collect_events,
)


def _collect(stream: BaseEventStream) -> List[Any]:
    return asyncio.run(collect_events(stream))


def test_json_lines_split_across_chunks() -> None:
    stream = MemoryEventStream(
        [
            '{"type": "STATE_SNAPSHOT", "snap',
            'shot": {"a": 1}}\n{"type": "RUN_',
            'FINISHED"}\n',
        ]
    )

    events = _collect(stream)

    assert events == [
        {"type": "STATE_SNAPSHOT", "snapshot": {"a": 1}},
        {"type": "RUN_FINISHED"},
    ]
    assert stream.closed


def test_server_sent_event_framing() -> None:
    stream = MemoryEventStream(
        [
            b": keep-alive\n",
            b"event: message\ndata: {\"type\": \"STATE_DELTA\", \"delta\": []}\n\n",
            b"id: 7\ndata: {\"type\": \"CUSTOM\"}\n\n",
        ]
    )

    assert _collect(stream) == [
        {"type": "STATE_DELTA", "delta": []},
        {"type": "CUSTOM"},
    ]


def test_trailing_line_without_newline_is_flushed() -> None:
    stream = MemoryEventStream(['{"type": "A"}\n{"type": "B"}'])
    assert _collect(stream) == [{"type": "A"}, {"type": "B"}]


def test_undecodable_lines_are_forwarded_as_text() -> None:
    stream = MemoryEventStream(['{"type": "A"}\n{oops\n'])
    assert _collect(stream) == [{"type": "A"}, "{oops"]


def test_from_events_round_trips_payloads() -> None:
    payloads = [{"type": "STATE_SNAPSHOT", "snapshot": None}, {"type": "RAW", "event": [1]}]
    assert _collect(MemoryEventStream.from_events(payloads)) == payloads


class _CountingStream(BaseEventStream):
    def __init__(self, chunks: Iterable[str]) -> None:
        super().__init__(JsonLinesNormalizer())
        self._chunks = iter(chunks)
        self.close_count = 0

    async def _get_next_chunk(self) -> str:
        try:
            return next(self._chunks)
        except StopIteration as exc:
            raise StopAsyncIteration from exc

    async def _on_close(self) -> None:
        self.close_count += 1


def test_close_is_idempotent_and_stops_iteration() -> None:
    stream = _CountingStream(['{"type": "A"}\n', '{"type": "B"}\n'])

    async def _consume() -> List[Any]:
        first = await stream.__anext__()
        await stream.close()
        await stream.close()
        rest = [event async for event in stream]
        return [first, *rest]

    assert asyncio.run(_consume()) == [{"type": "A"}]
    assert stream.close_count == 1


def test_multibyte_character_split_between_byte_chunks() -> None:
    line = '{"type": "CUSTOM", "name": "café"}\n'.encode("utf-8")
    cut = line.index("é".encode("utf-8")) + 1
    stream = MemoryEventStream([line[:cut], line[cut:]])

    assert _collect(stream) == [{"type": "CUSTOM", "name": "café"}]


def test_invalid_bytes_become_a_rejectable_text_line() -> None:
    stream = MemoryEventStream(
        [
            b'{"type": "STATE_SNAPSHOT", "snapshot": {"a": 1}}\n',
            b"\xff\xfe\n",
            b'{"type": "STATE_DELTA", "delta": [{"op": "add", "path": "/b", "value": 2}]}\n',
        ]
    )

    events = _collect(stream)

    assert len(events) == 3
    assert events[1] == "\ufffd\ufffd"
    assert events[2]["type"] == "STATE_DELTA"


def test_truncated_character_at_end_of_stream_is_flushed_as_text() -> None:
    stream = MemoryEventStream([b'{"type": "A"}\n', "é".encode("utf-8")[:1]])
    assert _collect(stream) == [{"type": "A"}, "\ufffd"]
