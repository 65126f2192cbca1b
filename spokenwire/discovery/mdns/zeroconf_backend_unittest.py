import asyncio
from typing import Any, List
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import zeroconf
from zeroconf import DNSAddress, IPVersion

from spokenwire.config.discovery_config import DiscoveryConfig
from spokenwire.discovery.mdns import discovery_error
from spokenwire.discovery.mdns.discovery_error import DiscoveryError
from spokenwire.discovery.mdns.discovery_events import (
    FLAG_ADD,
    BrowseEvent,
    HostRecordEvent,
    ResolveEvent,
)
from spokenwire.discovery.mdns.zeroconf_backend import (
    CLASS_IN,
    FLAGS_QR_QUERY,
    TYPE_A,
    ZeroconfBackend,
    normalize_service_type,
)

MODULE = "spokenwire.discovery.mdns.zeroconf_backend"
SERVICE_TYPE = "_x-plane9._udp.local."
TYPE_AAAA = 28


def drain(subscription: Any) -> None:
    while subscription.process_pending():
        pass


class Recorder:
    def __init__(self) -> None:
        self.results: List[Any] = []

    def __call__(self, result: Any) -> None:
        self.results.append(result)


@pytest.fixture
def mock_zc() -> MagicMock:
    zc = MagicMock(name="AsyncZeroconfInstance")
    zc.zeroconf = MagicMock(name="Zeroconf")
    zc.async_close = AsyncMock(name="async_close")
    return zc


@pytest.fixture
def zc_constructor(mock_zc: MagicMock):
    with patch(f"{MODULE}.AsyncZeroconf", return_value=mock_zc) as constructor:
        yield constructor


@pytest.mark.parametrize(
    "given,expected",
    [
        ("_x-plane9._udp", SERVICE_TYPE),
        ("_x-plane9._udp.local", SERVICE_TYPE),
        (SERVICE_TYPE, SERVICE_TYPE),
        ("_x-plane9", SERVICE_TYPE),
        ("_http._tcp", "_http._tcp.local."),
    ],
)
def test_normalize_service_type(given: str, expected: str) -> None:
    assert normalize_service_type(given) == expected


def test_normalize_service_type_rejects_bad_input() -> None:
    with pytest.raises(ValueError):
        normalize_service_type("x-plane9._udp")
    with pytest.raises(TypeError):
        normalize_service_type(None)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "service_type",
    ["_x--y._udp", "_-plane9._udp", "_thisnameiswaytoolong._udp"],
)
def test_normalize_service_type_applies_zeroconf_rules(
    service_type: str,
) -> None:
    with pytest.raises(ValueError):
        normalize_service_type(service_type)


@pytest.mark.parametrize(
    "method,args",
    [
        ("browse", ("_x--y._udp",)),
        ("resolve_instance", ("speech-receiver", "_x--y._udp")),
        ("browse", (None,)),
    ],
)
def test_invalid_service_type_is_discovery_error(
    zc_constructor: MagicMock, method: str, args: tuple
) -> None:
    backend = ZeroconfBackend()
    with pytest.raises(DiscoveryError) as excinfo:
        getattr(backend, method)(*args, Recorder())

    assert excinfo.value.code == discovery_error.BAD_PARAM
    zc_constructor.assert_not_called()


def test_dns_wire_constants() -> None:
    assert CLASS_IN == 1
    assert TYPE_A == 1
    assert FLAGS_QR_QUERY == 0


def test_zeroconf_created_lazily_ipv4_only(zc_constructor: MagicMock) -> None:
    backend = ZeroconfBackend()
    zc_constructor.assert_not_called()

    with patch(f"{MODULE}.AsyncServiceBrowser"):
        backend.browse(SERVICE_TYPE, Recorder())

    zc_constructor.assert_called_once()
    assert zc_constructor.call_args.kwargs["ip_version"] == IPVersion.V4Only


def test_configured_interfaces_are_filtered(zc_constructor: MagicMock) -> None:
    config = DiscoveryConfig(interfaces=("10.0.0.2", "10.9.9.9"))
    with patch(
        f"{MODULE}.filter_local_addresses", return_value=["10.0.0.2"]
    ) as mock_filter, patch(f"{MODULE}.AsyncServiceBrowser"):
        ZeroconfBackend(config).browse(SERVICE_TYPE, Recorder())

    mock_filter.assert_called_once_with(("10.0.0.2", "10.9.9.9"))
    assert zc_constructor.call_args.kwargs["interfaces"] == ["10.0.0.2"]


def test_zeroconf_start_failure_becomes_discovery_error() -> None:
    with patch(f"{MODULE}.AsyncZeroconf", side_effect=OSError("no socket")):
        backend = ZeroconfBackend()
        with pytest.raises(DiscoveryError) as excinfo:
            backend.browse(SERVICE_TYPE, Recorder())
    assert excinfo.value.code == discovery_error.SERVICE_NOT_RUNNING


@pytest.mark.asyncio
async def test_browse_forwards_listener_callbacks(
    zc_constructor: MagicMock, mock_zc: MagicMock
) -> None:
    recorder = Recorder()
    mock_browser = MagicMock(name="browser")
    mock_browser.async_cancel = AsyncMock()
    with patch(
        f"{MODULE}.AsyncServiceBrowser", return_value=mock_browser
    ) as browser_constructor:
        backend = ZeroconfBackend()
        subscription = backend.browse("_x-plane9._udp", recorder)

    args, kwargs = browser_constructor.call_args
    assert args == (mock_zc.zeroconf, [SERVICE_TYPE])
    listener = kwargs["listener"]

    listener.add_service(None, SERVICE_TYPE, f"speech-receiver.{SERVICE_TYPE}")
    listener.update_service(None, SERVICE_TYPE, f"other.{SERVICE_TYPE}")
    listener.remove_service(None, SERVICE_TYPE, f"speech-receiver.{SERVICE_TYPE}")
    listener.add_service(None, "_other._udp.local.", "x._other._udp.local.")
    drain(subscription)

    assert recorder.results == [
        BrowseEvent("speech-receiver", FLAG_ADD),
        BrowseEvent("other", FLAG_ADD),
        BrowseEvent("speech-receiver", 0),
    ]

    subscription.close()
    await backend.close()
    mock_browser.async_cancel.assert_awaited_once()
    mock_zc.async_close.assert_awaited_once()


@pytest.mark.asyncio
async def test_resolve_instance_reports_host_and_network_order_port(
    zc_constructor: MagicMock, mock_zc: MagicMock
) -> None:
    recorder = Recorder()
    mock_info = MagicMock(name="AsyncServiceInfo")
    mock_info.async_request = AsyncMock(return_value=True)
    mock_info.server = "studio-mac.local."
    mock_info.port = 49000

    with patch(
        f"{MODULE}.AsyncServiceInfo", return_value=mock_info
    ) as info_constructor:
        backend = ZeroconfBackend(DiscoveryConfig(resolve_interval=60.0))
        subscription = backend.resolve_instance(
            "speech-receiver", "_x-plane9._udp", recorder
        )
        for _ in range(3):
            await asyncio.sleep(0)

    info_constructor.assert_called_with(
        SERVICE_TYPE, f"speech-receiver.{SERVICE_TYPE}"
    )
    mock_info.async_request.assert_awaited_with(mock_zc.zeroconf, 3000)
    drain(subscription)
    assert recorder.results == [
        ResolveEvent("studio-mac.local.", b"\xbf\x68")
    ]

    subscription.close()
    await backend.close()


@pytest.mark.asyncio
async def test_resolve_instance_timeout_is_reported_as_error(
    zc_constructor: MagicMock,
) -> None:
    recorder = Recorder()
    mock_info = MagicMock(name="AsyncServiceInfo")
    mock_info.async_request = AsyncMock(return_value=False)

    with patch(f"{MODULE}.AsyncServiceInfo", return_value=mock_info):
        backend = ZeroconfBackend(DiscoveryConfig(resolve_interval=60.0))
        subscription = backend.resolve_instance(
            "speech-receiver", SERVICE_TYPE, recorder
        )
        for _ in range(3):
            await asyncio.sleep(0)

    drain(subscription)
    assert len(recorder.results) == 1
    assert isinstance(recorder.results[0], DiscoveryError)
    assert recorder.results[0].code == discovery_error.TIMEOUT

    await backend.close()


def test_resolve_instance_without_event_loop_raises(
    zc_constructor: MagicMock,
) -> None:
    backend = ZeroconfBackend()
    with pytest.raises(DiscoveryError) as excinfo:
        backend.resolve_instance("speech-receiver", SERVICE_TYPE, Recorder())
    assert excinfo.value.code == discovery_error.SERVICE_NOT_RUNNING


@pytest.mark.asyncio
async def test_resolve_host_listens_for_a_records(
    zc_constructor: MagicMock, mock_zc: MagicMock
) -> None:
    recorder = Recorder()
    backend = ZeroconfBackend(DiscoveryConfig(resolve_interval=60.0))
    subscription = backend.resolve_host("studio-mac.local", recorder)
    await asyncio.sleep(0)

    listener, question = mock_zc.zeroconf.async_add_listener.call_args.args
    assert question.name == "studio-mac.local."
    assert question.type == TYPE_A
    mock_zc.zeroconf.async_send.assert_called()

    a_record = DNSAddress(
        "studio-mac.local.", TYPE_A, CLASS_IN, 120, b"\xa9\xfe\x01\x01"
    )
    other_host = DNSAddress(
        "elsewhere.local.", TYPE_A, CLASS_IN, 120, b"\x0a\x00\x00\x01"
    )
    aaaa_record = DNSAddress(
        "studio-mac.local.", TYPE_AAAA, CLASS_IN, 120, b"\xfe\x80" + b"\x00" * 14
    )
    now = a_record.created + 1
    listener.async_update_records(
        mock_zc.zeroconf,
        now,
        [
            MagicMock(new=a_record, old=None),
            MagicMock(new=other_host, old=None),
            MagicMock(new=aaaa_record, old=None),
        ],
    )
    drain(subscription)

    assert recorder.results == [
        HostRecordEvent("studio-mac.local.", b"\xa9\xfe\x01\x01")
    ]

    subscription.close()
    mock_zc.zeroconf.async_remove_listener.assert_called_once_with(listener)
    await backend.close()


@pytest.mark.asyncio
async def test_resolve_host_ignores_goodbye_records(
    zc_constructor: MagicMock, mock_zc: MagicMock
) -> None:
    recorder = Recorder()
    backend = ZeroconfBackend(DiscoveryConfig(resolve_interval=60.0))
    subscription = backend.resolve_host("studio-mac.local.", recorder)
    await asyncio.sleep(0)
    listener = mock_zc.zeroconf.async_add_listener.call_args.args[0]

    goodbye = DNSAddress(
        "studio-mac.local.", TYPE_A, CLASS_IN, 0, b"\xc0\xa8\x01\x14"
    )
    listener.async_update_records(
        mock_zc.zeroconf,
        goodbye.created + 1,
        [MagicMock(new=goodbye, old=None)],
    )

    assert not subscription.has_pending()
    drain(subscription)
    assert recorder.results == []

    subscription.close()
    await backend.close()


@pytest.mark.asyncio
async def test_browser_failure_is_discovery_error(
    zc_constructor: MagicMock,
) -> None:
    with patch(
        f"{MODULE}.AsyncServiceBrowser",
        side_effect=zeroconf.Error("browser refused"),
    ):
        backend = ZeroconfBackend()
        with pytest.raises(DiscoveryError) as excinfo:
            backend.browse(SERVICE_TYPE, Recorder())

    assert excinfo.value.code == discovery_error.UNKNOWN
    await backend.close()


@pytest.mark.asyncio
async def test_shared_zeroconf_is_not_closed() -> None:
    shared = MagicMock(name="shared")
    shared.zeroconf = MagicMock()
    shared.async_close = AsyncMock()

    with patch(f"{MODULE}.AsyncZeroconf") as constructor, patch(
        f"{MODULE}.AsyncServiceBrowser"
    ):
        backend = ZeroconfBackend(zc_instance=shared)
        backend.browse(SERVICE_TYPE, Recorder())
        constructor.assert_not_called()

    await backend.close()
    shared.async_close.assert_not_called()


@pytest.mark.asyncio
async def test_closed_backend_refuses_new_subscriptions(
    zc_constructor: MagicMock,
) -> None:
    backend = ZeroconfBackend()
    await backend.close()
    await backend.close()
    with pytest.raises(DiscoveryError):
        backend.resolve_host("studio-mac.local.", Recorder())
