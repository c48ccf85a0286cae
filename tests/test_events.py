from __future__ import annotations

import logging

import pytest

from exam_ingest.events import EventBus, EventLevel


def test_subscribe_receives_events_until_unsubscribed() -> None:
    bus = EventBus("test.events")
    received = []
    unsubscribe = bus.subscribe(received.append)
    assert bus.listener_count == 1

    event = bus.success("done", source="export")
    assert received == [event]
    assert event.level == EventLevel.success
    assert event.source == "export"
    assert len(event.id) == 10

    unsubscribe()
    unsubscribe()
    bus.info("ignored")
    assert len(received) == 1
    assert bus.listener_count == 0


def test_buses_are_independent() -> None:
    first, second = EventBus("test.a"), EventBus("test.b")
    seen = []
    first.subscribe(seen.append)
    second.warn("elsewhere")
    assert seen == []


def test_listener_may_unsubscribe_during_dispatch() -> None:
    bus = EventBus("test.events")
    calls = []
    holder = {}

    def _once(event):
        calls.append(event.message)
        holder["unsub"]()

    holder["unsub"] = bus.subscribe(_once)
    other = []
    bus.subscribe(other.append)
    bus.info("one")
    bus.info("two")
    assert calls == ["one"]
    assert [e.message for e in other] == ["one", "two"]


def test_events_are_logged_at_matching_level(caplog) -> None:
    bus = EventBus("test.events.logging")
    with caplog.at_level(logging.INFO, logger="test.events.logging"):
        bus.info("hello", source="renderer")
        bus.error("broken")
    levels = [(r.levelno, r.getMessage()) for r in caplog.records]
    assert (logging.INFO, "[renderer] hello") in levels
    assert (logging.ERROR, "[-] broken") in levels


def test_unknown_level_rejected() -> None:
    with pytest.raises(ValueError):
        EventBus().emit("x", "fatal")
