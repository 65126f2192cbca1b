import asyncio
import ipaddress
import socket
from typing import Iterator, List, Optional
from unittest.mock import MagicMock

import pytest

from spokenwire.config.discovery_config import DiscoveryConfig
from spokenwire.discovery.address_record import AddressRecord
from spokenwire.discovery.service_discovery import ServiceDiscovery
from spokenwire.test.fake_discovery_backend import FakeDiscoveryBackend
from spokenwire.transport.payload import PING, decode_utterance
from spokenwire.transport.transcript_link import (
    DEFAULT_INSTANCE_NAME,
    DEFAULT_SERVICE_TYPE,
    TranscriptLink,
)


class StubDiscovery:
    """Stands in for ServiceDiscovery with a settable best destination."""

    def __init__(self, config: DiscoveryConfig) -> None:
        self.config = config
        self.destination: Optional[AddressRecord] = None
        self.started_with: Optional[tuple] = None
        self.stop_count = 0

    async def start(self, instance_name: str, service_type: str) -> None:
        self.started_with = (instance_name, service_type)

    async def stop(self) -> None:
        self.stop_count += 1

    def best_destination(self) -> Optional[AddressRecord]:
        return self.destination


class RecordingClient(TranscriptLink.Client):
    def __init__(self) -> None:
        self.changes: List[bool] = []

    def _on_connection_changed(self, connected: bool) -> None:
        self.changes.append(connected)


def make_record(host: str) -> AddressRecord:
    return AddressRecord(
        ipaddress.IPv4Address("10.0.0.5"),
        49000,
        host,
        0.0,
        MagicMock(spec=socket.socket),
    )


def sent_payloads(record: AddressRecord) -> List[bytes]:
    sendto = record.udp_socket.sendto  # type: ignore[attr-defined]
    return [c.args[0] for c in sendto.call_args_list]


@pytest.fixture
def discovery() -> StubDiscovery:
    return StubDiscovery(DiscoveryConfig(keepalive_interval=0.01))


@pytest.fixture
def client() -> RecordingClient:
    return RecordingClient()


@pytest.fixture
def link(discovery: StubDiscovery, client: RecordingClient) -> TranscriptLink:
    return TranscriptLink(discovery, client)  # type: ignore[arg-type]


def test_connected_signal_is_edge_triggered(
    discovery: StubDiscovery, client: RecordingClient, link: TranscriptLink
) -> None:
    d1, d2 = make_record("one.local."), make_record("two.local.")

    for destination in [None, d1, d1, d2, None]:
        discovery.destination = destination
        link.send_keepalive()

    assert client.changes == [True, False]
    assert not link.connected
    assert sent_payloads(d1) == [PING, PING]
    assert sent_payloads(d2) == [PING]


def test_repeated_partial_results_are_not_resent(
    discovery: StubDiscovery, link: TranscriptLink
) -> None:
    record = make_record("one.local.")
    discovery.destination = record

    assert link.on_transcript(1, "hel")
    assert not link.on_transcript(1, "hel")
    assert link.on_transcript(1, "hello")
    assert not link.on_transcript(1, "hello", is_final=True)
    # A final result forgets the text, so the same words go out again.
    assert link.on_transcript(1, "hello")
    assert link.on_transcript(2, "hello")

    decoded = [decode_utterance(p) for p in sent_payloads(record)]
    assert [(u.utterance_id, u.text) for u in decoded] == [
        (1, "hel"),
        (1, "hello"),
        (1, "hello"),
        (2, "hello"),
    ]


def test_new_utterance_resets_last_text(
    discovery: StubDiscovery, link: TranscriptLink
) -> None:
    record = make_record("one.local.")
    discovery.destination = record

    link.on_transcript(5, "same")
    link.on_transcript(6, "same")
    link.on_transcript(5, "same")

    assert len(sent_payloads(record)) == 3


def test_transcript_without_destination_is_dropped(
    link: TranscriptLink, client: RecordingClient
) -> None:
    assert not link.on_transcript(1, "nobody listening")
    assert not link.send_keepalive()
    assert client.changes == []


@pytest.mark.asyncio
async def test_keepalive_runs_until_stopped(
    discovery: StubDiscovery, client: RecordingClient, link: TranscriptLink
) -> None:
    record = make_record("one.local.")
    discovery.destination = record

    await link.start()
    assert discovery.started_with == (
        DEFAULT_INSTANCE_NAME,
        DEFAULT_SERVICE_TYPE,
    )
    with pytest.raises(RuntimeError):
        await link.start()

    await asyncio.sleep(0.05)
    assert link.connected
    assert len(sent_payloads(record)) >= 2
    assert set(sent_payloads(record)) == {PING}

    await link.stop()
    sends_at_stop = len(sent_payloads(record))
    await asyncio.sleep(0.03)

    assert len(sent_payloads(record)) == sends_at_stop
    assert discovery.stop_count == 1
    assert not link.connected
    assert client.changes == [True, False]


@pytest.mark.asyncio
async def test_keepalive_without_destination_keeps_ticking(
    discovery: StubDiscovery, link: TranscriptLink
) -> None:
    await link.start()
    await asyncio.sleep(0.03)

    record = make_record("late.local.")
    discovery.destination = record
    await asyncio.sleep(0.03)

    assert link.connected
    assert PING in sent_payloads(record)
    await link.stop()


def test_client_exception_is_logged(
    discovery: StubDiscovery, caplog: pytest.LogCaptureFixture
) -> None:
    client = MagicMock(spec=TranscriptLink.Client)
    client._on_connection_changed.side_effect = RuntimeError("ui gone")
    link = TranscriptLink(discovery, client)  # type: ignore[arg-type]
    discovery.destination = make_record("one.local.")

    assert link.send_keepalive()
    assert link.connected
    assert "ui gone" in caplog.text


@pytest.fixture
def receiver() -> Iterator[socket.socket]:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(2.0)
    yield sock
    sock.close()


@pytest.mark.asyncio
async def test_transcript_reaches_discovered_receiver(
    receiver: socket.socket,
) -> None:
    backend = FakeDiscoveryBackend()
    session = ServiceDiscovery(backend, DiscoveryConfig(keepalive_interval=60.0))
    client = RecordingClient()
    link = TranscriptLink(session, client)
    await link.start()

    port = receiver.getsockname()[1]
    backend.emit_browse(DEFAULT_INSTANCE_NAME)
    backend.emit_resolve("receiver.local.", port)
    while session.tick():
        pass
    backend.emit_host("receiver.local.", "127.0.0.1")
    while session.tick():
        pass

    assert link.on_transcript(3, "cleared to land")
    assert client.changes == [True]
    assert decode_utterance(receiver.recvfrom(1024)[0]).text == (
        "cleared to land"
    )

    await link.stop()
    assert client.changes == [True, False]


def test_config_with_existing_session_is_rejected(
    discovery: StubDiscovery,
) -> None:
    with pytest.raises(ValueError):
        TranscriptLink(
            discovery,  # type: ignore[arg-type]
            config=DiscoveryConfig(keepalive_interval=1.0),
        )


def test_config_builds_owned_session() -> None:
    config = DiscoveryConfig(keepalive_interval=1.0)
    link = TranscriptLink(config=config)
    assert link.discovery.config is config
