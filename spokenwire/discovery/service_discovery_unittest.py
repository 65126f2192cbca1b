import random
import struct
from typing import Iterator, List
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from spokenwire.config.discovery_config import DiscoveryConfig
from spokenwire.discovery.mdns import discovery_error
from spokenwire.discovery.mdns.discovery_error import DiscoveryError
from spokenwire.discovery.mdns.discovery_events import (
    FLAG_ADD,
    FLAG_MORE_COMING,
    ResolveEvent,
)
from spokenwire.discovery.service_discovery import ServiceDiscovery
from spokenwire.test.fake_discovery_backend import FakeDiscoveryBackend

TARGET = "speech-receiver"
SERVICE_TYPE = "_x-plane9._udp"
HOST = "studio-mac.local."
PORT = 49000


class FakeClock:
    def __init__(self, times: List[float]) -> None:
        self.__times: Iterator[float] = iter(times)

    def __call__(self) -> float:
        return next(self.__times)


def drain(session: ServiceDiscovery) -> None:
    while session.tick():
        pass


@pytest.fixture
def backend() -> FakeDiscoveryBackend:
    return FakeDiscoveryBackend()


@pytest_asyncio.fixture
async def session(backend: FakeDiscoveryBackend):
    discovery = ServiceDiscovery(backend, clock=FakeClock([0.0, 1.0, 5.0, 6.0]))
    await discovery.start(TARGET, SERVICE_TYPE)
    yield discovery
    await discovery.stop()


async def resolve_addresses(
    backend: FakeDiscoveryBackend, session: ServiceDiscovery, *ips: str
) -> None:
    backend.emit_resolve(HOST, PORT)
    drain(session)
    for ip in ips:
        backend.emit_host(HOST, ip)
    drain(session)


# --- start ---


@pytest.mark.asyncio
async def test_start_opens_subscriptions_and_pump(
    backend: FakeDiscoveryBackend,
) -> None:
    discovery = ServiceDiscovery(backend)
    await discovery.start(TARGET, SERVICE_TYPE)

    assert discovery.target_instance_name == TARGET
    assert len(backend.browse_subscriptions) == 1
    assert len(backend.resolve_subscriptions) == 1
    assert discovery.event_pump.is_running
    assert len(discovery.event_pump.subscriptions) == 2

    with pytest.raises(RuntimeError):
        await discovery.start(TARGET, SERVICE_TYPE)

    await discovery.stop()


@pytest.mark.asyncio
async def test_start_requires_instance_name(
    backend: FakeDiscoveryBackend,
) -> None:
    discovery = ServiceDiscovery(backend)
    with pytest.raises(ValueError):
        await discovery.start("", SERVICE_TYPE)


@pytest.mark.asyncio
async def test_subscription_failures_are_recorded_not_raised(
    backend: FakeDiscoveryBackend,
) -> None:
    backend.browse_failure = DiscoveryError(discovery_error.SERVICE_NOT_RUNNING)
    backend.resolve_failure = DiscoveryError(discovery_error.UNKNOWN)
    discovery = ServiceDiscovery(backend)

    await discovery.start(TARGET, SERVICE_TYPE)

    assert discovery.browse_error is backend.browse_failure
    assert discovery.resolve_error is backend.resolve_failure
    assert discovery.event_pump.is_running
    assert discovery.best_destination() is None
    await discovery.stop()


@pytest.mark.asyncio
async def test_invalid_service_type_is_recorded_not_raised() -> None:
    with patch(
        "spokenwire.discovery.mdns.zeroconf_backend.AsyncZeroconf"
    ) as zc_constructor:
        discovery = ServiceDiscovery()
        await discovery.start(TARGET, "_x--y._udp")

        assert discovery.browse_error is not None
        assert discovery.browse_error.code == discovery_error.BAD_PARAM
        assert discovery.resolve_error is not None
        assert discovery.resolve_error.code == discovery_error.BAD_PARAM
        assert discovery.event_pump.is_running
        assert discovery.best_destination() is None
        zc_constructor.assert_not_called()

        await discovery.stop()
    assert not discovery.event_pump.is_running


# --- browse handling ---


@pytest.mark.asyncio
async def test_browse_tracks_only_target_name(
    backend: FakeDiscoveryBackend, session: ServiceDiscovery
) -> None:
    backend.emit_browse("someone-else")
    backend.emit_browse(TARGET, FLAG_ADD | FLAG_MORE_COMING)
    backend.emit_browse(TARGET, FLAG_ADD)
    drain(session)

    assert session.advertised_names == [TARGET]

    backend.emit_browse("someone-else", 0)
    drain(session)
    assert session.advertised_names == [TARGET]

    backend.emit_browse(TARGET, FLAG_MORE_COMING)
    drain(session)
    assert session.advertised_names == []


@pytest.mark.asyncio
async def test_remove_of_unlisted_name_is_ignored(
    backend: FakeDiscoveryBackend, session: ServiceDiscovery
) -> None:
    backend.emit_browse(TARGET, 0)
    drain(session)
    assert session.advertised_names == []


def apply_literal_policy(names: List[str], present: bool) -> None:
    if present:
        if TARGET not in names:
            names.append(TARGET)
    elif TARGET in names:
        del names[0]


@pytest.mark.asyncio
@pytest.mark.parametrize("remove_matched_name", [False, True])
@pytest.mark.parametrize("seed", range(5))
async def test_advertised_names_follow_index_zero_removal(
    backend: FakeDiscoveryBackend, remove_matched_name: bool, seed: int
) -> None:
    discovery = ServiceDiscovery(
        backend, DiscoveryConfig(remove_matched_name=remove_matched_name)
    )
    await discovery.start(TARGET, SERVICE_TYPE)
    rng = random.Random(seed)
    expected: List[str] = []

    for _ in range(40):
        flags = rng.choice(
            [0, FLAG_MORE_COMING, FLAG_ADD, FLAG_ADD | FLAG_MORE_COMING]
        )
        backend.emit_browse(TARGET, flags)
        drain(discovery)
        apply_literal_policy(expected, flags & FLAG_ADD != 0)
        assert discovery.advertised_names == expected
        assert (TARGET in discovery.advertised_names) == (TARGET in expected)

    await discovery.stop()


@pytest.mark.asyncio
async def test_browse_error_is_recorded(
    backend: FakeDiscoveryBackend, session: ServiceDiscovery
) -> None:
    backend.emit_browse_error(discovery_error.UNKNOWN)
    backend.emit_browse(TARGET)
    drain(session)

    assert session.browse_error is not None
    assert session.browse_error.code == discovery_error.UNKNOWN
    assert session.advertised_names == [TARGET]


# --- resolve handling ---


@pytest.mark.asyncio
async def test_resolve_creates_one_resolver_per_host_port(
    backend: FakeDiscoveryBackend, session: ServiceDiscovery
) -> None:
    backend.emit_resolve(HOST, PORT)
    backend.emit_resolve(HOST, PORT)
    backend.emit_resolve(HOST, PORT + 1)
    backend.emit_resolve("other.local.", PORT)
    drain(session)

    keys = [(r.host_name, r.port) for r in session.resolvers]
    assert keys == [(HOST, PORT), (HOST, PORT + 1), ("other.local.", PORT)]
    assert len(backend.host_subscriptions[HOST]) == 2
    assert len(backend.host_subscriptions["other.local."]) == 1


@pytest.mark.asyncio
async def test_resolved_port_is_decoded_from_network_order(
    backend: FakeDiscoveryBackend, session: ServiceDiscovery
) -> None:
    subscription = backend.resolve_subscriptions[0]
    subscription.on_available(ResolveEvent(HOST, struct.pack("!H", 0x1234)))
    drain(session)

    assert [r.port for r in session.resolvers] == [0x1234]


@pytest.mark.asyncio
async def test_malformed_port_is_recorded(
    backend: FakeDiscoveryBackend, session: ServiceDiscovery
) -> None:
    backend.resolve_subscriptions[0].on_available(ResolveEvent(HOST, b"\x01"))
    drain(session)

    assert session.resolvers == []
    assert session.resolve_error is not None


@pytest.mark.asyncio
async def test_resolve_error_is_recorded(
    backend: FakeDiscoveryBackend, session: ServiceDiscovery
) -> None:
    backend.emit_resolve_error(discovery_error.TIMEOUT)
    drain(session)
    assert session.resolve_error is not None
    assert session.resolve_error.code == discovery_error.TIMEOUT


# --- addresses ---


@pytest.mark.asyncio
async def test_same_address_triple_creates_one_record(
    backend: FakeDiscoveryBackend, session: ServiceDiscovery
) -> None:
    await resolve_addresses(
        backend, session, "192.168.1.20", "192.168.1.20", "169.254.3.4"
    )

    addresses = session.addresses
    assert [str(a.ip) for a in addresses] == ["192.168.1.20", "169.254.3.4"]
    assert [a.created_at for a in addresses] == [0.0, 1.0]
    assert all(a.source_host == HOST and a.port == PORT for a in addresses)

    resolver = session.resolvers[0]
    assert resolver.address_keys == [a.key for a in addresses]


@pytest.mark.asyncio
async def test_same_ip_for_different_port_is_a_new_record(
    backend: FakeDiscoveryBackend, session: ServiceDiscovery
) -> None:
    backend.emit_resolve(HOST, PORT)
    backend.emit_resolve(HOST, PORT + 1)
    drain(session)
    backend.emit_host(HOST, "192.168.1.20")
    drain(session)

    assert sorted(a.port for a in session.addresses) == [PORT, PORT + 1]


@pytest.mark.asyncio
async def test_socket_failure_skips_record(
    backend: FakeDiscoveryBackend, session: ServiceDiscovery
) -> None:
    backend.emit_resolve(HOST, PORT)
    drain(session)
    with patch(
        "spokenwire.discovery.service_discovery.AddressRecord",
        side_effect=OSError("too many open files"),
    ):
        backend.emit_host(HOST, "192.168.1.20")
        drain(session)

    assert session.addresses == []
    assert session.resolvers[0].address_keys == []


# --- best destination ---


@pytest.mark.asyncio
async def test_best_destination_none_until_advertised(
    backend: FakeDiscoveryBackend, session: ServiceDiscovery
) -> None:
    assert session.best_destination() is None
    assert not session.is_connected()

    await resolve_addresses(backend, session, "10.0.0.1")
    assert session.addresses
    assert session.best_destination() is None
    assert not session.is_connected()

    backend.emit_browse(TARGET)
    drain(session)
    assert session.is_connected()
    assert session.best_destination() is session.addresses[0]

    backend.emit_browse(TARGET, 0)
    drain(session)
    assert session.best_destination() is None
    assert session.addresses


@pytest.mark.asyncio
async def test_best_destination_none_when_advertised_without_addresses(
    backend: FakeDiscoveryBackend, session: ServiceDiscovery
) -> None:
    backend.emit_browse(TARGET)
    drain(session)
    assert session.best_destination() is None
    assert not session.is_connected()


@pytest.mark.asyncio
async def test_best_destination_folds_in_discovery_order(
    backend: FakeDiscoveryBackend, session: ServiceDiscovery
) -> None:
    backend.emit_browse(TARGET)
    await resolve_addresses(
        backend, session, "1.2.3.4", "169.254.1.1", "5.6.7.8"
    )

    best = session.best_destination()
    assert best is not None
    assert str(best.ip) == "5.6.7.8"
    assert best.created_at == 5.0
    assert session.best_destination() is best


# --- stop ---


@pytest.mark.asyncio
async def test_stop_releases_everything(backend: FakeDiscoveryBackend) -> None:
    discovery = ServiceDiscovery(backend)
    await discovery.start(TARGET, SERVICE_TYPE)
    backend.emit_browse(TARGET)
    await resolve_addresses(backend, discovery, "127.0.0.1")
    record = discovery.addresses[0]
    subscriptions = (
        backend.browse_subscriptions
        + backend.resolve_subscriptions
        + backend.host_subscriptions[HOST]
    )

    await discovery.stop()
    await discovery.stop()

    assert not discovery.event_pump.is_running
    assert all(s.is_closed for s in subscriptions)
    assert record.udp_socket.fileno() == -1
    assert discovery.addresses == []
    assert discovery.resolvers == []
    assert discovery.best_destination() is None
    assert backend.close_count == 0

    with pytest.raises(RuntimeError):
        await discovery.start(TARGET, SERVICE_TYPE)


@pytest.mark.asyncio
async def test_owned_backend_is_closed_on_stop() -> None:
    owned = MagicMock(name="ZeroconfBackendInstance")
    owned.close = AsyncMock()
    with patch(
        "spokenwire.discovery.service_discovery.ZeroconfBackend",
        return_value=owned,
    ) as constructor:
        config = DiscoveryConfig(poll_interval=0.5)
        discovery = ServiceDiscovery(config=config)
        constructor.assert_called_once_with(config)

    await discovery.start(TARGET, SERVICE_TYPE)
    owned.browse.assert_called_once()
    owned.resolve_instance.assert_called_once()
    await discovery.stop()
    owned.close.assert_awaited_once()

