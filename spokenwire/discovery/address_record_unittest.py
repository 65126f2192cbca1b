import ipaddress
import socket
from unittest.mock import MagicMock

import pytest

from spokenwire.discovery.address_record import AddressRecord


def test_creates_non_blocking_udp_socket():
    record = AddressRecord(
        ipaddress.IPv4Address("127.0.0.1"), 49000, "studio-mac.local.", 12.5
    )
    try:
        sock = record.udp_socket
        assert sock.family == socket.AF_INET
        assert sock.type == socket.SOCK_DGRAM
        assert sock.getblocking() is False
    finally:
        record.close()
    assert record.udp_socket.fileno() == -1


def test_fields_and_key():
    ip = ipaddress.IPv4Address("192.168.1.20")
    record = AddressRecord(ip, 49000, "studio-mac.local.", 3.0, MagicMock())

    assert record.ip == ip
    assert record.port == 49000
    assert record.source_host == "studio-mac.local."
    assert record.created_at == 3.0
    assert record.key == (ip, 49000, "studio-mac.local.")
    assert record.socket_address == ("192.168.1.20", 49000)
    assert record.is_link_local is False
    assert "192.168.1.20:49000" in repr(record)


def test_link_local():
    record = AddressRecord(
        ipaddress.IPv4Address("169.254.7.8"), 1, "h", 0.0, MagicMock()
    )
    assert record.is_link_local is True


def test_close_is_idempotent():
    mock_socket = MagicMock()
    mock_socket.fileno.side_effect = [5, -1]
    record = AddressRecord(
        ipaddress.IPv4Address("10.0.0.1"), 1, "h", 0.0, mock_socket
    )
    record.close()
    record.close()
    mock_socket.close.assert_called_once()


def test_rejects_bad_arguments():
    with pytest.raises(TypeError):
        AddressRecord("10.0.0.1", 1, "h", 0.0, MagicMock())  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        AddressRecord(
            ipaddress.IPv4Address("10.0.0.1"), 70000, "h", 0.0, MagicMock()
        )
