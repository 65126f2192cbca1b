"""Initializes the spokenwire.discovery package and exposes its key components.

This package finds a named service instance on the local network, resolves
it to IPv4 addresses, and decides which address is the best destination.
"""

from spokenwire.discovery.address_record import AddressRecord
from spokenwire.discovery.destination_selector import select_best_destination
from spokenwire.discovery.host_resolver import HostResolver
from spokenwire.discovery.service_discovery import ServiceDiscovery

__all__ = [
    "AddressRecord",
    "HostResolver",
    "ServiceDiscovery",
    "select_best_destination",
]
