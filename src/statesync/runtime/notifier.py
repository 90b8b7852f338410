"""Ordered, synchronous fan-out of state documents to subscribers."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from copy import deepcopy
from typing import Any, Deque


LOGGER = logging.getLogger(__name__)

StateListener = Callable[[Any], None]


class Subscription:
    """Handle returned by :meth:`ChangeNotifier.subscribe`."""

    __slots__ = ("_notifier", "callback", "active")

    def __init__(self, notifier: ChangeNotifier, callback: StateListener) -> None:
        self._notifier = notifier
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        self._notifier.unsubscribe(self)

    def __repr__(self) -> str:
        return f"Subscription(callback={self.callback!r}, active={self.active})"


class ChangeNotifier:
    """Deliver every published document to the current subscribers.

    Each subscriber gets its own deep copy, in publication order. A document
    published from inside a callback is queued until the current publication
    has reached every subscriber, so all subscribers observe one sequence.
    Subscribers only see documents published after they subscribed.
    Publications from other threads wait for the current delivery to finish.
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._subscriptions: list[Subscription] = []
        self._pending: Deque[Any] = deque()
        self._delivering = False
        self._published = 0
        self._lock = threading.RLock()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def published(self) -> int:
        """Number of documents published so far."""

        return self._published

    def subscribe(self, callback: StateListener) -> Subscription:
        if not callable(callback):
            raise TypeError("subscriber callback must be callable")
        subscription = Subscription(self, callback)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove ``subscription``; unknown or inactive handles are ignored."""

        subscription.active = False
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def clear(self) -> None:
        for subscription in self._subscriptions:
            subscription.active = False
        self._subscriptions.clear()
        self._pending.clear()

    def publish(self, document: Any) -> None:
        """Queue ``document`` and deliver it unless a delivery is in progress."""

        with self._lock:
            self._pending.append(deepcopy(document))
            self._published += 1
            if self._delivering:
                return

            self._delivering = True
            try:
                while self._pending:
                    self._deliver(self._pending.popleft())
            finally:
                self._delivering = False

    def _deliver(self, document: Any) -> None:
        for subscription in tuple(self._subscriptions):
            if not subscription.active:
                continue
            try:
                subscription.callback(deepcopy(document))
            except Exception:
                LOGGER.exception(
                    "state subscriber failed notifier=%s callback=%r",
                    self.name,
                    subscription.callback,
                )


__all__ = ["ChangeNotifier", "StateListener", "Subscription"]
