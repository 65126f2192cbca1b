import socket
import struct
from typing import Dict, List, Optional

from spokenwire.discovery.mdns import discovery_error
from spokenwire.discovery.mdns.discovery_backend import DiscoveryBackend
from spokenwire.discovery.mdns.discovery_error import DiscoveryError
from spokenwire.discovery.mdns.discovery_events import (
    FLAG_ADD,
    BrowseEvent,
    HostRecordEvent,
    ResolveEvent,
)
from spokenwire.discovery.mdns.subscription import (
    ResultCallback,
    Subscription,
)


class FakeDiscoveryBackend(DiscoveryBackend):
    """In-memory DiscoveryBackend driven explicitly by tests.

    Results pushed with the `emit_*` helpers are queued on the matching
    subscriptions exactly as a real backend would queue them, and only
    reach the session when its event pump ticks.
    """

    __test__ = False

    def __init__(self) -> None:
        self.browse_subscriptions: List[Subscription[BrowseEvent]] = []
        self.resolve_subscriptions: List[Subscription[ResolveEvent]] = []
        self.host_subscriptions: Dict[
            str, List[Subscription[HostRecordEvent]]
        ] = {}
        self.browse_failure: Optional[DiscoveryError] = None
        self.resolve_failure: Optional[DiscoveryError] = None
        self.host_failure: Optional[DiscoveryError] = None
        self.close_count = 0

    def browse(
        self, service_type: str, callback: ResultCallback[BrowseEvent]
    ) -> Subscription[BrowseEvent]:
        if self.browse_failure is not None:
            raise self.browse_failure
        subscription: Subscription[BrowseEvent] = Subscription(
            f"browse {service_type}", callback
        )
        self.browse_subscriptions.append(subscription)
        return subscription

    def resolve_instance(
        self,
        instance_name: str,
        service_type: str,
        callback: ResultCallback[ResolveEvent],
    ) -> Subscription[ResolveEvent]:
        if self.resolve_failure is not None:
            raise self.resolve_failure
        subscription: Subscription[ResolveEvent] = Subscription(
            f"resolve {instance_name}", callback
        )
        self.resolve_subscriptions.append(subscription)
        return subscription

    def resolve_host(
        self, host_name: str, callback: ResultCallback[HostRecordEvent]
    ) -> Subscription[HostRecordEvent]:
        if self.host_failure is not None:
            raise self.host_failure
        subscription: Subscription[HostRecordEvent] = Subscription(
            f"query A {host_name}", callback
        )
        self.host_subscriptions.setdefault(host_name, []).append(subscription)
        return subscription

    async def close(self) -> None:
        self.close_count += 1

    def emit_browse(self, service_name: str, flags: int = FLAG_ADD) -> None:
        for subscription in self.browse_subscriptions:
            subscription.on_available(BrowseEvent(service_name, flags))

    def emit_resolve(self, host_name: str, port: int) -> None:
        for subscription in self.resolve_subscriptions:
            subscription.on_available(
                ResolveEvent(host_name, struct.pack("!H", port))
            )

    def emit_host(self, host_name: str, address: str) -> None:
        for subscription in self.host_subscriptions.get(host_name, []):
            subscription.on_available(
                HostRecordEvent(host_name, socket.inet_aton(address))
            )

    def emit_host_error(
        self, host_name: str, code: int = discovery_error.UNKNOWN
    ) -> None:
        for subscription in self.host_subscriptions.get(host_name, []):
            subscription.on_available(DiscoveryError(code))

    def emit_browse_error(self, code: int = discovery_error.UNKNOWN) -> None:
        for subscription in self.browse_subscriptions:
            subscription.on_available(DiscoveryError(code))

    def emit_resolve_error(self, code: int = discovery_error.TIMEOUT) -> None:
        for subscription in self.resolve_subscriptions:
            subscription.on_available(DiscoveryError(code))
