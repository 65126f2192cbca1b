import asyncio
from typing import Any, List

import pytest

from spokenwire.discovery.event_pump import EventPump
from spokenwire.discovery.mdns.discovery_events import BrowseEvent
from spokenwire.discovery.mdns.subscription import Subscription


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        EventPump(0)


def test_tick_processes_one_result_per_subscription():
    first_results: List[Any] = []
    second_results: List[Any] = []
    first: Subscription[BrowseEvent] = Subscription("first", first_results.append)
    second: Subscription[BrowseEvent] = Subscription(
        "second", second_results.append
    )
    pump = EventPump(0.25)
    pump.add(first)
    pump.add(second)
    pump.add(first)
    assert len(pump.subscriptions) == 2

    for i in range(3):
        first.on_available(BrowseEvent(f"a{i}", 2))
    second.on_available(BrowseEvent("b0", 2))

    assert pump.tick() == 2
    assert [e.service_name for e in first_results] == ["a0"]
    assert [e.service_name for e in second_results] == ["b0"]

    assert pump.tick() == 1
    assert pump.tick() == 1
    assert pump.tick() == 0
    assert [e.service_name for e in first_results] == ["a0", "a1", "a2"]


def test_subscription_added_during_tick_waits_for_next_tick():
    pump = EventPump(0.25)
    late_results: List[Any] = []
    late: Subscription[BrowseEvent] = Subscription("late", late_results.append)
    late.on_available(BrowseEvent("late", 2))

    def add_late(_result: Any) -> None:
        pump.add(late)

    early: Subscription[BrowseEvent] = Subscription("early", add_late)
    early.on_available(BrowseEvent("early", 2))
    pump.add(early)

    assert pump.tick() == 1
    assert late_results == []
    assert pump.tick() == 1
    assert len(late_results) == 1


def test_closed_subscriptions_are_dropped():
    pump = EventPump(0.25)
    subscription: Subscription[BrowseEvent] = Subscription("s", lambda r: None)
    pump.add(subscription)
    subscription.close()
    pump.tick()
    assert pump.subscriptions == []


@pytest.mark.asyncio
async def test_start_ticks_until_stopped():
    received: List[Any] = []
    subscription: Subscription[BrowseEvent] = Subscription("s", received.append)
    pump = EventPump(0.01)
    pump.add(subscription)

    pump.start()
    assert pump.is_running
    with pytest.raises(RuntimeError):
        pump.start()

    subscription.on_available(BrowseEvent("x", 2))
    subscription.on_available(BrowseEvent("y", 2))
    for _ in range(100):
        if len(received) == 2:
            break
        await asyncio.sleep(0.01)

    await pump.stop()
    assert not pump.is_running
    assert [e.service_name for e in received] == ["x", "y"]

    subscription.on_available(BrowseEvent("z", 2))
    await asyncio.sleep(0.05)
    assert len(received) == 2

    await pump.stop()


def test_start_without_loop_raises():
    with pytest.raises(RuntimeError):
        EventPump(0.25).start()
