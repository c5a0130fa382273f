"""Tests for event bus."""

import asyncio
import pytest

from timesift.daemon.bus import EventBus, Event


@pytest.mark.asyncio
async def test_event_emit_and_subscribe():
    """Test basic pub/sub functionality."""
    bus = EventBus()
    await bus.start()

    received_events = []

    async def handler(event: Event):
        received_events.append(event)

    bus.subscribe("record.*", handler)

    await bus.emit(Event(
        type="record.activity.insert",
        data={"id": "a1"}
    ))
    await bus.join()

    assert len(received_events) == 1
    assert received_events[0].type == "record.activity.insert"
    assert received_events[0].data["id"] == "a1"

    await bus.stop()


@pytest.mark.asyncio
async def test_wildcard_subscription():
    """Test wildcard pattern matching."""
    bus = EventBus()
    await bus.start()

    all_events = []
    record_events = []

    async def all_handler(event: Event):
        all_events.append(event)

    async def record_handler(event: Event):
        record_events.append(event)

    bus.subscribe("*", all_handler)
    bus.subscribe("record.*", record_handler)

    await bus.emit(Event(type="record.activity.insert", data={}))
    await bus.emit(Event(type="search.results_changed", data={}))
    await bus.emit(Event(type="record.project.delete", data={}))
    await bus.join()

    assert len(all_events) == 3
    assert len(record_events) == 2

    await bus.stop()


@pytest.mark.asyncio
async def test_events_processed_in_order():
    """Handlers see events in emission order."""
    bus = EventBus()
    seen = []

    async def handler(event: Event):
        await asyncio.sleep(0)
        seen.append(event.data["n"])

    bus.subscribe("index.*", handler)
    await bus.start()
    for n in range(5):
        await bus.emit(Event(type="index.updated", data={"n": n}))
    await bus.join()

    assert seen == [0, 1, 2, 3, 4]
    await bus.stop()


@pytest.mark.asyncio
async def test_sync_handler_and_bound_method():
    """Plain functions and bound methods both receive events."""

    class Listener:
        def __init__(self):
            self.events = []

        async def on_event(self, event: Event):
            self.events.append(event.type)

    bus = EventBus()
    listener = Listener()
    sync_events = []

    def sync_handler(event: Event):
        sync_events.append(event.type)

    bus.subscribe("search.*", listener.on_event)
    bus.subscribe("search.*", sync_handler)
    await bus.start()

    await bus.emit(Event(type="search.failed", data={}))
    await bus.join()

    assert listener.events == ["search.failed"]
    assert sync_events == ["search.failed"]
    await bus.stop()


@pytest.mark.asyncio
async def test_handler_errors_are_contained():
    """A failing handler does not stop other handlers or the bus."""
    bus = EventBus()
    received = []

    async def broken(event: Event):
        raise RuntimeError("boom")

    async def healthy(event: Event):
        received.append(event)

    bus.subscribe("index.rebuilt", broken)
    bus.subscribe("index.rebuilt", healthy)
    await bus.start()

    await bus.emit(Event(type="index.rebuilt", data={}))
    await bus.emit(Event(type="index.rebuilt", data={}))
    await bus.join()

    assert len(received) == 2
    assert bus.get_stats()["handler_errors"] == 2
    await bus.stop()


@pytest.mark.asyncio
async def test_unsubscribe():
    bus = EventBus()
    received = []

    async def handler(event: Event):
        received.append(event)

    bus.subscribe("record.*", handler)
    bus.unsubscribe("record.*", handler)
    await bus.start()

    await bus.emit(Event(type="record.activity.insert", data={}))
    await bus.join()

    assert received == []
    await bus.stop()


@pytest.mark.asyncio
async def test_event_queue_full():
    """Test behavior when event queue is full."""
    bus = EventBus(max_queue=2)

    await bus.emit(Event(type="test.1", data={}))
    await bus.emit(Event(type="test.2", data={}))

    # This should be dropped
    await bus.emit(Event(type="test.3", data={}))
    assert not bus.emit_nowait(Event(type="test.4", data={}))

    stats = bus.get_stats()
    assert stats['dropped'] == 2
    assert stats['emitted'] == 2


def test_pattern_matching():
    """Test pattern matching logic."""
    bus = EventBus()

    # Exact match
    assert bus._matches_pattern("record.activity.insert", "record.activity.insert")
    assert not bus._matches_pattern("record.activity.insert", "record.activity.delete")

    # Wildcard
    assert bus._matches_pattern("record.activity.insert", "record.*")
    assert bus._matches_pattern("search.failed", "search.*")
    assert not bus._matches_pattern("record.activity.insert", "search.*")
    assert not bus._matches_pattern("records.activity", "record.*")

    # Global wildcard
    assert bus._matches_pattern("anything", "*")
    assert bus._matches_pattern("index.rebuilt", "*")
