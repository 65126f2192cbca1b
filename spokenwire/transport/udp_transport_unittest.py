import ipaddress
import logging
import socket
from typing import Iterator, List, Optional
from unittest.mock import MagicMock

import pytest

from spokenwire.discovery.address_record import AddressRecord
from spokenwire.transport.payload import PING
from spokenwire.transport.udp_transport import Transport

LOOPBACK = ipaddress.IPv4Address("127.0.0.1")


class StubSession:
    """Answers best_destination() from a scripted sequence."""

    def __init__(self, answers: List[Optional[AddressRecord]]) -> None:
        self.__answers: Iterator[Optional[AddressRecord]] = iter(answers)

    def best_destination(self) -> Optional[AddressRecord]:
        return next(self.__answers)


class RecordingClient(Transport.Client):
    def __init__(self) -> None:
        self.changes: List[Optional[AddressRecord]] = []

    def _on_destination_changed(
        self, destination: Optional[AddressRecord]
    ) -> None:
        self.changes.append(destination)


@pytest.fixture
def receiver() -> Iterator[socket.socket]:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(2.0)
    yield sock
    sock.close()


@pytest.fixture
def records(receiver: socket.socket) -> Iterator[List[AddressRecord]]:
    port = receiver.getsockname()[1]
    created = [
        AddressRecord(LOOPBACK, port, "one.local.", 0.0),
        AddressRecord(LOOPBACK, port, "two.local.", 1.0),
    ]
    yield created
    for record in created:
        record.close()


def test_destination_changes_are_reported_by_identity(
    records: List[AddressRecord],
) -> None:
    d1, d2 = records
    client = RecordingClient()
    transport = Transport(client)
    session = StubSession([None, d1, d1, d2, None])

    results = [transport.send(session, PING) for _ in range(5)]  # type: ignore[arg-type]

    assert client.changes == [d1, d2, None]
    assert results == [False, True, True, True, False]
    assert transport.current_destination is None


def test_send_delivers_one_datagram(
    receiver: socket.socket, records: List[AddressRecord]
) -> None:
    transport = Transport()
    session = StubSession([records[0], records[0]])

    assert transport.send(session, b'{"utteranceID":1,"text":"hi"}')  # type: ignore[arg-type]
    assert transport.send(session, "ping")  # type: ignore[arg-type]

    assert receiver.recvfrom(1024)[0] == b'{"utteranceID":1,"text":"hi"}'
    assert receiver.recvfrom(1024)[0] == b"ping"
    assert transport.current_destination is records[0]


def test_send_without_destination_is_dropped() -> None:
    client = RecordingClient()
    transport = Transport(client)

    assert not transport.send(StubSession([None]), PING)  # type: ignore[arg-type]
    assert client.changes == []


def test_socket_errors_are_logged_not_raised(
    caplog: pytest.LogCaptureFixture,
) -> None:
    failing_socket = MagicMock(spec=socket.socket)
    failing_socket.sendto.side_effect = OSError("Network is unreachable")
    record = AddressRecord(LOOPBACK, 9, "down.local.", 0.0, failing_socket)
    transport = Transport()

    with caplog.at_level(logging.WARNING):
        sent = transport.send(StubSession([record]), PING)  # type: ignore[arg-type]

    assert not sent
    failing_socket.sendto.assert_called_once_with(PING, ("127.0.0.1", 9))
    assert "Network is unreachable" in caplog.text
    assert transport.current_destination is record


def test_client_exception_does_not_break_send(
    caplog: pytest.LogCaptureFixture,
    receiver: socket.socket,
    records: List[AddressRecord],
) -> None:
    client = MagicMock(spec=Transport.Client)
    client._on_destination_changed.side_effect = ValueError("client bug")
    transport = Transport(client)

    with caplog.at_level(logging.ERROR):
        assert transport.send(StubSession([records[0]]), PING)  # type: ignore[arg-type]

    assert "client bug" in caplog.text
    assert receiver.recvfrom(1024)[0] == PING
