import ipaddress
from typing import List, Optional, Tuple

import pytest

from spokenwire.discovery.address_record import AddressKey
from spokenwire.discovery.host_resolver import HostResolver
from spokenwire.discovery.mdns import discovery_error
from spokenwire.discovery.mdns.discovery_error import DiscoveryError
from spokenwire.discovery.mdns.discovery_events import HostRecordEvent
from spokenwire.test.fake_discovery_backend import FakeDiscoveryBackend

HOST = "studio-mac.local."


class RecordingSink:
    """Stands in for the session arena."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, int, ipaddress.IPv4Address]] = []
        self.known: set = set()

    def __call__(
        self, host_name: str, port: int, ip: ipaddress.IPv4Address
    ) -> Optional[AddressKey]:
        self.calls.append((host_name, port, ip))
        key = (ip, port, host_name)
        if key in self.known:
            return None
        self.known.add(key)
        return key


def drain(resolver: HostResolver) -> None:
    assert resolver.subscription is not None
    while resolver.subscription.process_pending():
        pass


def test_opens_subscription_on_construction():
    backend = FakeDiscoveryBackend()
    resolver = HostResolver(HOST, 49000, backend, RecordingSink())

    assert resolver.host_name == HOST
    assert resolver.port == 49000
    assert backend.host_subscriptions[HOST] == [resolver.subscription]
    assert resolver.last_error is None


def test_decodes_addresses_and_tracks_new_keys():
    backend = FakeDiscoveryBackend()
    sink = RecordingSink()
    resolver = HostResolver(HOST, 49000, backend, sink)

    backend.emit_host(HOST, "192.168.1.20")
    backend.emit_host(HOST, "169.254.3.4")
    backend.emit_host(HOST, "192.168.1.20")
    drain(resolver)

    first = ipaddress.IPv4Address("192.168.1.20")
    second = ipaddress.IPv4Address("169.254.3.4")
    assert sink.calls == [
        (HOST, 49000, first),
        (HOST, 49000, second),
        (HOST, 49000, first),
    ]
    assert resolver.address_keys == [
        (first, 49000, HOST),
        (second, 49000, HOST),
    ]


def test_errors_are_recorded_and_not_fatal():
    backend = FakeDiscoveryBackend()
    sink = RecordingSink()
    resolver = HostResolver(HOST, 49000, backend, sink)

    backend.emit_host_error(HOST, discovery_error.NO_SUCH_RECORD)
    backend.emit_host(HOST, "10.0.0.9")
    drain(resolver)

    assert resolver.last_error is not None
    assert resolver.last_error.code == discovery_error.NO_SUCH_RECORD
    assert len(resolver.address_keys) == 1


def test_malformed_rdata_is_recorded():
    backend = FakeDiscoveryBackend()
    sink = RecordingSink()
    resolver = HostResolver(HOST, 49000, backend, sink)
    assert resolver.subscription is not None

    resolver.subscription.on_available(HostRecordEvent(HOST, b"\x01\x02"))
    drain(resolver)

    assert sink.calls == []
    assert resolver.last_error is not None
    assert resolver.last_error.code == discovery_error.UNKNOWN


def test_subscription_failure_is_recorded():
    backend = FakeDiscoveryBackend()
    backend.host_failure = DiscoveryError(discovery_error.SERVICE_NOT_RUNNING)

    resolver = HostResolver(HOST, 49000, backend, RecordingSink())

    assert resolver.subscription is None
    assert resolver.last_error is backend.host_failure
    resolver.close()


def test_close_releases_subscription():
    backend = FakeDiscoveryBackend()
    resolver = HostResolver(HOST, 49000, backend, RecordingSink())
    resolver.close()
    assert resolver.subscription is not None
    assert resolver.subscription.is_closed


def test_rejects_bad_arguments():
    backend = FakeDiscoveryBackend()
    with pytest.raises(ValueError):
        HostResolver("", 1, backend, RecordingSink())
    with pytest.raises(ValueError):
        HostResolver(HOST, 1, backend, None)  # type: ignore[arg-type]
