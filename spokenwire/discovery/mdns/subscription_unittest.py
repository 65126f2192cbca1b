import logging
import threading
from typing import Any, List

import pytest

from spokenwire.discovery.mdns.discovery_error import DiscoveryError
from spokenwire.discovery.mdns.discovery_events import BrowseEvent
from spokenwire.discovery.mdns.subscription import Subscription


def make_subscription(received: List[Any]) -> Subscription[BrowseEvent]:
    return Subscription("test", received.append)


def test_callback_required():
    with pytest.raises(ValueError):
        Subscription("test", None)  # type: ignore[arg-type]


def test_process_pending_handles_one_result_at_a_time():
    received: List[Any] = []
    subscription = make_subscription(received)
    assert not subscription.has_pending()
    assert subscription.process_pending() is False

    first = BrowseEvent("a", 2)
    second = DiscoveryError(-1)
    subscription.on_available(first)
    subscription.on_available(second)

    assert subscription.has_pending()
    assert subscription.process_pending() is True
    assert received == [first]
    assert subscription.has_pending()
    assert subscription.process_pending() is True
    assert received == [first, second]
    assert not subscription.has_pending()


def test_callback_exception_is_logged_not_raised(caplog):
    def explode(_result: Any) -> None:
        raise RuntimeError("boom")

    subscription: Subscription[BrowseEvent] = Subscription("explode", explode)
    subscription.on_available(BrowseEvent("a", 2))

    assert subscription.process_pending() is True
    assert "boom" in caplog.text


def test_close_drops_pending_and_runs_callbacks_once():
    received: List[Any] = []
    subscription = make_subscription(received)
    close_calls: List[str] = []
    subscription.add_close_callback(lambda: close_calls.append("closed"))
    subscription.on_available(BrowseEvent("a", 2))

    subscription.close()
    subscription.close()

    assert subscription.is_closed
    assert close_calls == ["closed"]
    assert not subscription.has_pending()
    assert subscription.process_pending() is False

    subscription.on_available(BrowseEvent("b", 2))
    assert not subscription.has_pending()
    assert received == []


def test_close_callback_added_after_close_runs_immediately():
    subscription = make_subscription([])
    subscription.close()
    calls: List[int] = []
    subscription.add_close_callback(lambda: calls.append(1))
    assert calls == [1]


def test_failing_close_callback_does_not_block_others():
    subscription = make_subscription([])
    calls: List[str] = []

    def fail() -> None:
        raise OSError("already gone")

    subscription.add_close_callback(fail)
    subscription.add_close_callback(lambda: calls.append("second"))
    subscription.close()

    assert calls == ["second"]


def test_on_available_from_other_threads():
    received: List[Any] = []
    subscription: Subscription[BrowseEvent] = Subscription(
        "threads", received.append, max_pending=300
    )

    def produce(prefix: str) -> None:
        for i in range(100):
            subscription.on_available(BrowseEvent(f"{prefix}{i}", 2))

    threads = [
        threading.Thread(target=produce, args=(p,)) for p in ("x", "y", "z")
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    while subscription.process_pending():
        pass
    assert len(received) == 300


def test_max_pending_must_be_positive():
    with pytest.raises(ValueError):
        Subscription("test", lambda _result: None, max_pending=0)


def test_full_subscription_drops_oldest_result(caplog):
    received: List[Any] = []
    subscription: Subscription[BrowseEvent] = Subscription(
        "bounded", received.append, max_pending=2
    )

    with caplog.at_level(logging.DEBUG):
        for name in ("a", "b", "c"):
            subscription.on_available(BrowseEvent(name, 2))

    while subscription.process_pending():
        pass
    assert [event.service_name for event in received] == ["b", "c"]
    assert "dropping its oldest result" in caplog.text
