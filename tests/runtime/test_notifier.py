from __future__ import annotations

import logging
import threading
from typing import Any

import pytest

from statesync.runtime.notifier import ChangeNotifier


def test_publish_delivers_in_order_to_every_subscriber() -> None:
    notifier = ChangeNotifier("run-1")
    first: list[Any] = []
    second: list[Any] = []
    notifier.subscribe(first.append)
    notifier.subscribe(second.append)

    notifier.publish({"v": 1})
    notifier.publish({"v": 2})

    assert first == second == [{"v": 1}, {"v": 2}]
    assert notifier.published == 2


def test_subscribers_receive_independent_copies() -> None:
    notifier = ChangeNotifier()
    received: list[Any] = []

    def mutate(document: Any) -> None:
        document["items"].append("mutated")

    notifier.subscribe(mutate)
    notifier.subscribe(received.append)

    source = {"items": []}
    notifier.publish(source)

    assert received == [{"items": []}]
    assert source == {"items": []}


def test_late_subscriber_only_sees_later_documents() -> None:
    notifier = ChangeNotifier()
    notifier.publish({"v": 1})

    received: list[Any] = []
    notifier.subscribe(received.append)
    notifier.publish({"v": 2})

    assert received == [{"v": 2}]


def test_unsubscribe_stops_delivery() -> None:
    notifier = ChangeNotifier()
    received: list[Any] = []
    subscription = notifier.subscribe(received.append)

    notifier.publish(1)
    subscription.unsubscribe()
    notifier.publish(2)
    notifier.unsubscribe(subscription)

    assert received == [1]
    assert not subscription.active
    assert notifier.subscriber_count == 0


def test_reentrant_publish_keeps_a_single_order() -> None:
    notifier = ChangeNotifier()
    first: list[Any] = []
    second: list[Any] = []

    def republish(document: Any) -> None:
        first.append(document)
        if document == 1:
            notifier.publish(2)

    notifier.subscribe(republish)
    notifier.subscribe(second.append)
    notifier.publish(1)

    assert first == [1, 2]
    assert second == [1, 2]


def test_failing_subscriber_does_not_block_others(caplog: pytest.LogCaptureFixture) -> None:
    notifier = ChangeNotifier("run-1")
    received: list[Any] = []

    def broken(document: Any) -> None:
        raise RuntimeError("boom")

    notifier.subscribe(broken)
    notifier.subscribe(received.append)

    with caplog.at_level(logging.ERROR, logger="statesync.runtime.notifier"):
        notifier.publish({"v": 1})
        notifier.publish({"v": 2})

    assert received == [{"v": 1}, {"v": 2}]
    assert "state subscriber failed" in caplog.text


def test_clear_drops_all_subscribers() -> None:
    notifier = ChangeNotifier()
    received: list[Any] = []
    notifier.subscribe(received.append)
    notifier.clear()
    notifier.publish(1)
    assert received == []


def test_subscribe_requires_callable() -> None:
    with pytest.raises(TypeError):
        ChangeNotifier().subscribe("nope")  # type: ignore[arg-type]


def test_publishers_on_other_threads_never_lose_documents() -> None:
    notifier = ChangeNotifier("run-1")
    received: list[tuple[int, int]] = []
    notifier.subscribe(lambda document: received.append((document["worker"], document["i"])))

    workers = [
        threading.Thread(
            target=lambda worker=worker: [notifier.publish({"worker": worker, "i": i}) for i in range(25)]
        )
        for worker in range(4)
    ]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert len(received) == 100
    assert notifier.published == 100
    for worker in range(4):
        assert [i for w, i in received if w == worker] == list(range(25))
