"""Initializes the spokenwire.discovery.mdns package.

This package holds the boundary to the multicast DNS discovery protocol: the
`DiscoveryBackend` capability interface, the events and pollable
subscriptions it produces, and a concrete backend built on `zeroconf`.
"""

from spokenwire.discovery.mdns.discovery_backend import DiscoveryBackend
from spokenwire.discovery.mdns.discovery_error import DiscoveryError
from spokenwire.discovery.mdns.discovery_events import (
    FLAG_ADD,
    FLAG_MORE_COMING,
    BrowseEvent,
    HostRecordEvent,
    ResolveEvent,
)
from spokenwire.discovery.mdns.subscription import Subscription
from spokenwire.discovery.mdns.zeroconf_backend import ZeroconfBackend

__all__ = [
    "BrowseEvent",
    "DiscoveryBackend",
    "DiscoveryError",
    "FLAG_ADD",
    "FLAG_MORE_COMING",
    "HostRecordEvent",
    "ResolveEvent",
    "Subscription",
    "ZeroconfBackend",
]
