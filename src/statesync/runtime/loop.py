"""Async driver feeding one run's event stream through the router."""

from __future__ import annotations

import inspect
import logging
from asyncio import CancelledError
from collections.abc import AsyncIterable, AsyncIterator
from copy import deepcopy
from typing import Any

from statesync.core.errors import UnknownRun

from .router import EventRouter, RoutedAction
from .store import UNSET


LOGGER = logging.getLogger(__name__)


class SessionTranscript:
    """Buffer of routed actions and state documents for deterministic replay."""

    def __init__(self) -> None:
        self._actions: list[RoutedAction] = []
        self._states: list[Any] = []

    def record(self, action: RoutedAction, document: Any) -> None:
        """Append an action alongside a copy of the document after it."""

        self._actions.append(action)
        self._states.append(deepcopy(document))

    @property
    def actions(self) -> tuple[RoutedAction, ...]:
        """Return the recorded actions in arrival order."""

        return tuple(self._actions)

    @property
    def states(self) -> tuple[Any, ...]:
        """Return the state document observed after each recorded action."""

        return tuple(self._states)

    @property
    def rejected(self) -> tuple[RoutedAction, ...]:
        return tuple(action for action in self._actions if action.rejected)

    def __len__(self) -> int:
        return len(self._actions)

    async def replay(self) -> AsyncIterator[Any]:
        """Yield the recorded events as an async iterator."""

        for action in self._actions:
            yield action.event


class StateSyncRuntime(AsyncIterator[RoutedAction]):
    """Route every event of an async source for one run, in arrival order.

    The run is started on first iteration (unless it is already active) and
    ended when the source is exhausted, raises, or the consumer is cancelled.
    """

    def __init__(
        self,
        router: EventRouter,
        run_id: str,
        events: AsyncIterable[Any],
        /,
        *,
        initial_snapshot: Any = UNSET,
        transcript: SessionTranscript | None = None,
    ) -> None:
        self._router = router
        self.run_id = run_id
        self._source = events
        self._initial_snapshot = initial_snapshot
        self._iterator: AsyncIterator[Any] | None = None
        self._closed = False
        self.final_state: Any = None

        self.transcript = transcript or SessionTranscript()

    def __aiter__(self) -> StateSyncRuntime:
        return self

    async def __anext__(self) -> RoutedAction:
        if self._closed:
            raise StopAsyncIteration

        iterator = self._ensure_started()
        try:
            event = await iterator.__anext__()
        except StopAsyncIteration:
            await self.aclose()
            raise
        except CancelledError:
            await self.aclose()
            raise
        except Exception:
            await self.aclose()
            raise

        try:
            action = self._router.route(self.run_id, event)
        except UnknownRun:
            await self.aclose()
            raise

        self._handle_action(action)
        return action

    @property
    def closed(self) -> bool:
        """Whether the runtime has been closed."""

        return self._closed

    @property
    def state(self) -> Any:
        return self._router.state(self.run_id)

    async def aclose(self) -> None:
        """Close the event source and end the run."""

        if self._closed:
            return

        self._closed = True
        iterator = self._iterator
        self._iterator = None
        if self._router.has_run(self.run_id):
            self.final_state = self._router.state(self.run_id)
            self._router.end_run(self.run_id)
        if iterator is None:
            return

        for closer_name in ("aclose", "close"):
            closer = getattr(iterator, closer_name, None)
            if closer is not None and callable(closer):
                result = closer()
                if inspect.isawaitable(result):
                    await result
                return

    def _ensure_started(self) -> AsyncIterator[Any]:
        if self._iterator is None:
            if not self._router.has_run(self.run_id):
                self._router.begin_run(self.run_id, self._initial_snapshot)
            self._iterator = self._source.__aiter__()
        return self._iterator

    def _handle_action(self, action: RoutedAction) -> None:
        if action.applied:
            LOGGER.debug("state updated run=%s kind=%s", self.run_id, action.kind.value)
            document = action.document
        else:
            document = self._router.state(self.run_id)
        self.transcript.record(action, document)


async def consume(
    router: EventRouter, run_id: str, events: AsyncIterable[Any], **kwargs: Any
) -> StateSyncRuntime:
    """Drive a :class:`StateSyncRuntime` to completion and return it."""

    runtime = StateSyncRuntime(router, run_id, events, **kwargs)
    try:
        async for _ in runtime:
            pass
    finally:
        await runtime.aclose()
    return runtime


__all__ = ["SessionTranscript", "StateSyncRuntime", "consume"]
