import ipaddress
import socket

import pytest

from spokenwire.util import ip as ip_util


def create_mock_address(mocker, family, address):
    mock_addr = mocker.MagicMock()
    mock_addr.family = family
    mock_addr.address = address
    return mock_addr


class TestIpUtils:

    # --- Tests for get_all_address_strings ---

    def test_get_all_address_strings_no_interfaces(self, mocker):
        mock_net_if_addrs = mocker.patch("psutil.net_if_addrs")
        mock_net_if_addrs.return_value = {}

        assert ip_util.get_all_address_strings() == []
        mock_net_if_addrs.assert_called_once()

    def test_get_all_address_strings_skips_non_ipv4(self, mocker):
        mock_net_if_addrs = mocker.patch("psutil.net_if_addrs")
        mock_net_if_addrs.return_value = {
            "en0": [
                create_mock_address(mocker, socket.AF_INET6, "fe80::1"),
                create_mock_address(mocker, socket.AF_INET, "192.168.1.20"),
            ],
            "lo0": [create_mock_address(mocker, socket.AF_INET, "127.0.0.1")],
        }

        result = ip_util.get_all_address_strings()

        assert sorted(result) == ["127.0.0.1", "192.168.1.20"]

    # --- Tests for filter_local_addresses ---

    def test_filter_local_addresses_keeps_order_and_drops_unknown(
        self, mocker
    ):
        mocker.patch(
            "spokenwire.util.ip.get_all_address_strings",
            return_value=["10.0.0.5", "169.254.3.4", "127.0.0.1"],
        )

        result = ip_util.filter_local_addresses(
            ["169.254.3.4", "192.168.99.99", "10.0.0.5"]
        )

        assert result == ["169.254.3.4", "10.0.0.5"]

    def test_filter_local_addresses_nothing_local(self, mocker):
        mocker.patch(
            "spokenwire.util.ip.get_all_address_strings", return_value=[]
        )
        assert ip_util.filter_local_addresses(["10.0.0.1"]) == []

    # --- Tests for decode_ipv4 ---

    def test_decode_ipv4_is_big_endian(self):
        assert ip_util.decode_ipv4(bytes([192, 168, 1, 7])) == (
            ipaddress.IPv4Address("192.168.1.7")
        )
        assert ip_util.decode_ipv4(b"\xa9\xfe\x01\x01") == (
            ipaddress.IPv4Address("169.254.1.1")
        )

    @pytest.mark.parametrize("rdata", [b"", b"\x01\x02\x03", b"\x00" * 16])
    def test_decode_ipv4_rejects_wrong_length(self, rdata):
        with pytest.raises(ValueError):
            ip_util.decode_ipv4(rdata)

    # --- Tests for is_link_local ---

    @pytest.mark.parametrize(
        "address,expected",
        [
            ("169.254.0.0", True),
            ("169.254.1.1", True),
            ("169.254.255.255", True),
            ("169.255.0.1", False),
            ("169.253.255.255", False),
            ("1.2.3.4", False),
            (ipaddress.IPv4Address("169.254.10.20"), True),
        ],
    )
    def test_is_link_local(self, address, expected):
        assert ip_util.is_link_local(address) is expected
