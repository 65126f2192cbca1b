"""DiscoveryBackend ABC, the capability interface to the discovery protocol."""

from abc import ABC, abstractmethod

from spokenwire.discovery.mdns.discovery_events import (
    BrowseEvent,
    HostRecordEvent,
    ResolveEvent,
)
from spokenwire.discovery.mdns.subscription import (
    ResultCallback,
    Subscription,
)


class DiscoveryBackend(ABC):
    """Opens continuous discovery subscriptions.

    Each operation returns immediately with a `Subscription`. Results arrive
    asynchronously and are queued on it until the owner drains them. A
    backend that cannot open a subscription raises `DiscoveryError`.
    """

    @abstractmethod
    def browse(
        self, service_type: str, callback: ResultCallback[BrowseEvent]
    ) -> Subscription[BrowseEvent]:
        """Browses the local domain for instances of `service_type`."""
        raise NotImplementedError(
            "DiscoveryBackend.browse must be implemented by subclasses."
        )

    @abstractmethod
    def resolve_instance(
        self,
        instance_name: str,
        service_type: str,
        callback: ResultCallback[ResolveEvent],
    ) -> Subscription[ResolveEvent]:
        """Resolves a named instance to its target host and port."""
        raise NotImplementedError(
            "DiscoveryBackend.resolve_instance must be implemented by subclasses."
        )

    @abstractmethod
    def resolve_host(
        self, host_name: str, callback: ResultCallback[HostRecordEvent]
    ) -> Subscription[HostRecordEvent]:
        """Watches the A records of `host_name`."""
        raise NotImplementedError(
            "DiscoveryBackend.resolve_host must be implemented by subclasses."
        )

    @abstractmethod
    async def close(self) -> None:
        """Stops all outstanding work and releases protocol resources."""
        raise NotImplementedError()
