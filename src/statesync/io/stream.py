"""Async iterators turning raw transport chunks into event payloads."""

from __future__ import annotations

import abc
import asyncio
import codecs
import json
import logging
from collections import deque
from collections.abc import Iterable
from typing import Any, AsyncIterator, Deque, List, Protocol, Union

Chunk = Union[str, bytes]

LOGGER = logging.getLogger(__name__)

_SSE_DATA = "data:"
_SSE_IGNORED = ("event:", "id:", "retry:", ":")


class StreamNormalizer(Protocol):
    async def normalize_chunk(self, chunk: Chunk) -> List[Any]:
        """Map a raw transport chunk onto zero or more event payloads."""


class JsonLinesNormalizer:
    """Decode newline-delimited JSON and Server-Sent Event ``data:`` lines.

    Chunks may split a line anywhere; the incomplete tail is buffered until the
    next chunk (or :meth:`flush`) completes it. Byte chunks go through an
    incremental UTF-8 decoder, so a multi-byte character split between chunks
    is reassembled and invalid bytes decode to U+FFFD. Lines that are not valid
    JSON are handed on as the raw string so the router can reject them
    explicitly instead of the stream silently dropping an event.
    """

    def __init__(self) -> None:
        self._partial = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    async def normalize_chunk(self, chunk: Chunk) -> List[Any]:
        if isinstance(chunk, (bytes, bytearray)):
            chunk = self._decoder.decode(bytes(chunk))
        text = self._partial + chunk
        lines = text.split("\n")
        self._partial = lines.pop()
        return [payload for payload in map(self._decode_line, lines) if payload is not None]

    def flush(self) -> List[Any]:
        """Decode whatever is left in the buffer once the source is exhausted."""

        remainder, self._partial = self._partial + self._decoder.decode(b"", final=True), ""
        self._decoder.reset()
        payload = self._decode_line(remainder)
        return [] if payload is None else [payload]

    @staticmethod
    def _decode_line(line: str) -> Any:
        line = line.strip()
        if not line or line.startswith(_SSE_IGNORED):
            return None
        if line.startswith(_SSE_DATA):
            line = line[len(_SSE_DATA):].strip()
            if not line:
                return None
        try:
            return json.loads(line)
        except json.JSONDecodeError:
            LOGGER.debug("undecodable stream line %r", line[:80])
            return line


class BaseEventStream(AsyncIterator[Any], metaclass=abc.ABCMeta):
    """Shared async iterator for event sources.

    Subclasses provide raw chunks by implementing :meth:`_get_next_chunk`.
    Each chunk is normalized into event payloads which are buffered so that
    consumers receive a linear stream in arrival order regardless of how the
    transport batched them.
    """

    def __init__(self, normalizer: StreamNormalizer | None = None) -> None:
        self._normalizer = normalizer or JsonLinesNormalizer()
        self._buffer: Deque[Any] = deque()
        self._closed = False
        self._exhausted = False
        self._close_lock = asyncio.Lock()

    def __aiter__(self) -> BaseEventStream:
        return self

    async def __anext__(self) -> Any:
        while True:
            if self._buffer:
                return self._buffer.popleft()
            if self._closed or self._exhausted:
                await self.close()
                raise StopAsyncIteration

            try:
                chunk = await self._get_next_chunk()
            except StopAsyncIteration:
                self._exhausted = True
                flush = getattr(self._normalizer, "flush", None)
                if callable(flush):
                    self._buffer.extend(flush())
                continue

            self._buffer.extend(await self._normalizer.normalize_chunk(chunk))

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Release transport resources and prevent additional iteration."""

        async with self._close_lock:
            if self._closed:
                return

            self._closed = True
            self._buffer.clear()
            await self._on_close()

    @abc.abstractmethod
    async def _get_next_chunk(self) -> Chunk:
        """Retrieve the next raw chunk, raising ``StopAsyncIteration`` at the end."""

    async def _on_close(self) -> None:
        """Allow subclasses to dispose transport resources when closing."""


class MemoryEventStream(BaseEventStream):
    """Deterministic in-memory event source for tests and offline replay."""

    def __init__(
        self,
        chunks: Iterable[Chunk],
        normalizer: StreamNormalizer | None = None,
    ) -> None:
        self._chunks: Deque[Chunk] = deque(chunks)
        super().__init__(normalizer)

    @classmethod
    def from_events(cls, events: Iterable[Any]) -> MemoryEventStream:
        """Encode event payloads as JSON lines, one chunk per event."""

        return cls(json.dumps(event) + "\n" for event in events)

    async def _get_next_chunk(self) -> Chunk:
        await asyncio.sleep(0)
        if not self._chunks:
            raise StopAsyncIteration
        return self._chunks.popleft()


async def collect_events(stream: AsyncIterator[Any]) -> List[Any]:
    """Collect every payload emitted by ``stream`` and close it."""

    events: List[Any] = []
    try:
        async for event in stream:
            events.append(event)
    finally:
        closer = getattr(stream, "close", None) or getattr(stream, "aclose", None)
        if closer is not None:
            await closer()
    return events


__all__ = [
    "BaseEventStream",
    "Chunk",
    "JsonLinesNormalizer",
    "MemoryEventStream",
    "StreamNormalizer",
    "collect_events",
]
