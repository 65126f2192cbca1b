"""Utilities for IPv4 addresses and local network interfaces."""

import ipaddress
import logging
import socket
from typing import Iterable, Union

import psutil  # type: ignore[import-untyped]

LINK_LOCAL_NETWORK = ipaddress.IPv4Network("169.254.0.0/16")


def get_all_address_strings() -> list[str]:
    """Retrieves all IPv4 address strings for all network interfaces.

    Returns:
        A list of IPv4 address strings. Empty if no IPv4 addresses found.
    """
    addresses: list[str] = []
    for _, interface_addresses in psutil.net_if_addrs().items():
        for address in interface_addresses:
            if address.family == socket.AF_INET:
                addresses.append(address.address)
    return addresses


def filter_local_addresses(requested: Iterable[str]) -> list[str]:
    """Keeps only the requested addresses assigned to a local interface.

    Addresses that are not present on this machine are dropped with a
    warning, so a stale configuration does not prevent discovery from
    starting on the interfaces that do exist.

    Args:
        requested: IPv4 address strings to keep.

    Returns:
        The requested addresses that exist locally, in the order given.
    """
    local = set(get_all_address_strings())
    kept: list[str] = []
    for address in requested:
        if address in local:
            kept.append(address)
        else:
            logging.warning(
                "Configured interface address %s is not assigned locally; "
                "ignoring it.",
                address,
            )
    return kept


def decode_ipv4(rdata: bytes) -> ipaddress.IPv4Address:
    """Decodes the 4 raw bytes of an A record (network order).

    Raises:
        ValueError: If `rdata` is not exactly 4 bytes long.
    """
    if len(rdata) != 4:
        raise ValueError(
            f"A record data must be 4 bytes, got {len(rdata)}."
        )
    return ipaddress.IPv4Address(int.from_bytes(rdata, "big"))


def is_link_local(
    address: Union[str, ipaddress.IPv4Address],
) -> bool:
    """Returns True if |address| lies in 169.254.0.0/16."""
    return ipaddress.IPv4Address(address) in LINK_LOCAL_NETWORK
