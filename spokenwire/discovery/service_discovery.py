"""Discovers one named service instance and tracks where it can be reached."""

import ipaddress
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from spokenwire.config.discovery_config import DiscoveryConfig
from spokenwire.discovery.address_record import AddressKey, AddressRecord
from spokenwire.discovery.destination_selector import select_best_destination
from spokenwire.discovery.event_pump import EventPump
from spokenwire.discovery.host_resolver import HostResolver
from spokenwire.discovery.mdns import discovery_error
from spokenwire.discovery.mdns.discovery_backend import DiscoveryBackend
from spokenwire.discovery.mdns.discovery_error import DiscoveryError
from spokenwire.discovery.mdns.discovery_events import (
    BrowseEvent,
    ResolveEvent,
)
from spokenwire.discovery.mdns.subscription import Subscription
from spokenwire.discovery.mdns.zeroconf_backend import ZeroconfBackend

ResolverKey = Tuple[str, int]


class ServiceDiscovery:
    """A discovery session for one target service instance.

    Browses for instances of a service type, resolves the target instance
    to host:port pairs, and runs one `HostResolver` per distinct pair. All
    results are handled from the session's `EventPump`, so the collections
    below are only ever touched from the event loop that started the
    session.

    The session owns every `HostResolver` and `AddressRecord` it creates.
    Resolvers are keyed by (host_name, port) and records by
    (ip, port, host_name); neither is ever removed before `stop()`.
    """

    def __init__(
        self,
        backend: Optional[DiscoveryBackend] = None,
        config: Optional[DiscoveryConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initializes the ServiceDiscovery session.

        Args:
            backend: Discovery protocol backend. When omitted a
                `ZeroconfBackend` is created and owned (closed on `stop()`).
                A supplied backend is never closed by the session.
            config: Session configuration. Defaults to `DiscoveryConfig()`.
            clock: Source of `AddressRecord.created_at` timestamps.
        """
        self.__config = config if config is not None else DiscoveryConfig()
        self.__owns_backend = backend is None
        self.__backend: DiscoveryBackend = (
            backend if backend is not None else ZeroconfBackend(self.__config)
        )
        self.__clock = clock
        self.__pump = EventPump(self.__config.poll_interval)

        self.__target_instance_name: Optional[str] = None
        self.__advertised_names: List[str] = []
        self.__resolvers: Dict[ResolverKey, HostResolver] = {}
        self.__addresses: Dict[AddressKey, AddressRecord] = {}

        self.__browse_subscription: Optional[Subscription[BrowseEvent]] = None
        self.__resolve_subscription: Optional[Subscription[ResolveEvent]] = (
            None
        )
        self.__browse_error: Optional[DiscoveryError] = None
        self.__resolve_error: Optional[DiscoveryError] = None

        self.__is_started = False
        self.__is_stopped = False

    @property
    def config(self) -> DiscoveryConfig:
        return self.__config

    @property
    def target_instance_name(self) -> Optional[str]:
        return self.__target_instance_name

    @property
    def advertised_names(self) -> List[str]:
        return list(self.__advertised_names)

    @property
    def resolvers(self) -> List[HostResolver]:
        return list(self.__resolvers.values())

    @property
    def addresses(self) -> List[AddressRecord]:
        """Every resolved record across all resolvers, in discovery order."""
        return list(self.__addresses.values())

    @property
    def browse_error(self) -> Optional[DiscoveryError]:
        return self.__browse_error

    @property
    def resolve_error(self) -> Optional[DiscoveryError]:
        return self.__resolve_error

    @property
    def event_pump(self) -> EventPump:
        return self.__pump

    async def start(self, instance_name: str, service_type: str) -> None:
        """Starts browsing and resolving, then starts the event pump.

        Failures to open either subscription, including a malformed
        `service_type`, are logged and recorded in `browse_error` /
        `resolve_error`; the session keeps running with whatever could be
        opened.

        Args:
            instance_name: The service instance to look for.
            service_type: Service type to browse, e.g. "_x-plane9._udp".

        Raises:
            ValueError: If `instance_name` is empty.
            RuntimeError: If the session was already started.
        """
        if not instance_name:
            raise ValueError("instance_name cannot be empty.")
        if self.__is_started or self.__is_stopped:
            raise RuntimeError("ServiceDiscovery has already been started.")

        self.__target_instance_name = instance_name

        try:
            self.__browse_subscription = self.__backend.browse(
                service_type, self._on_browse_result
            )
            self.__pump.add(self.__browse_subscription)
        except DiscoveryError as e:
            self.__browse_error = e
            logging.error("Error browsing for %s: %s", service_type, e)

        try:
            self.__resolve_subscription = self.__backend.resolve_instance(
                instance_name, service_type, self._on_resolve_result
            )
            self.__pump.add(self.__resolve_subscription)
        except DiscoveryError as e:
            self.__resolve_error = e
            logging.error("Error resolving %s: %s", instance_name, e)

        self.__pump.start()
        self.__is_started = True
        logging.info(
            "ServiceDiscovery started for '%s' (%s).",
            instance_name,
            service_type,
        )

    def tick(self) -> int:
        """Runs one event pump pass on the calling thread."""
        return self.__pump.tick()

    def _on_browse_result(self, result: BrowseEvent | DiscoveryError) -> None:
        if isinstance(result, DiscoveryError):
            self.__browse_error = result
            logging.warning("Browse reported error %s", result.code)
            return

        name = result.service_name
        if name != self.__target_instance_name:
            logging.debug("Ignoring browse result for '%s'.", name)
            return

        if result.is_present:
            if name not in self.__advertised_names:
                self.__advertised_names.append(name)
                logging.info("Service '%s' is advertised.", name)
            return

        if name not in self.__advertised_names:
            return
        if self.__config.remove_matched_name:
            self.__advertised_names.remove(name)
        else:
            # Drops the first entry, which is not necessarily |name|.
            del self.__advertised_names[0]
        logging.info("Service '%s' is no longer advertised.", name)

    def _on_resolve_result(
        self, result: ResolveEvent | DiscoveryError
    ) -> None:
        if isinstance(result, DiscoveryError):
            self.__resolve_error = result
            logging.warning("Instance resolution reported error %s", result.code)
            return

        if len(result.raw_port) != 2:
            self.__resolve_error = DiscoveryError(
                discovery_error.UNKNOWN,
                f"Port must be 2 bytes, got {len(result.raw_port)}.",
            )
            logging.warning(
                "Ignoring resolve result for %s with malformed port.",
                result.host_name,
            )
            return

        port = int.from_bytes(result.raw_port, "big")
        key = (result.host_name, port)
        if key in self.__resolvers:
            return

        logging.info("Resolved '%s' to %s:%s", self.__target_instance_name, *key)
        resolver = HostResolver(
            result.host_name, port, self.__backend, self.__add_address
        )
        self.__resolvers[key] = resolver
        if resolver.subscription is not None:
            self.__pump.add(resolver.subscription)

    def __add_address(
        self, host_name: str, port: int, ip: ipaddress.IPv4Address
    ) -> Optional[AddressKey]:
        key: AddressKey = (ip, port, host_name)
        if key in self.__addresses or self.__is_stopped:
            return None

        try:
            record = AddressRecord(ip, port, host_name, self.__clock())
        except OSError as e:
            logging.error(
                "Could not open a socket for %s:%s: %s", ip, port, e
            )
            return None

        self.__addresses[key] = record
        logging.info("New destination %s:%s for %s", ip, port, host_name)
        return key

    def best_destination(self) -> Optional[AddressRecord]:
        """Returns the record currently judged most likely to be live.

        None while the target instance is not advertised or before any
        address has been resolved. Has no side effects.
        """
        if not self.is_connected():
            return None
        return select_best_destination(
            list(self.__addresses.values()),
            self.__config.same_generation_window,
        )

    def is_connected(self) -> bool:
        """True iff the target is advertised and some address is known."""
        return (
            self.__target_instance_name is not None
            and self.__target_instance_name in self.__advertised_names
            and len(self.__addresses) > 0
        )

    async def stop(self) -> None:
        # Stops the pump and releases every subscription and socket.
        if self.__is_stopped:
            return
        self.__is_stopped = True
        logging.info("Stopping ServiceDiscovery...")

        await self.__pump.stop()

        for subscription in (
            self.__browse_subscription,
            self.__resolve_subscription,
        ):
            if subscription is not None:
                subscription.close()
        self.__browse_subscription = None
        self.__resolve_subscription = None

        for resolver in self.__resolvers.values():
            resolver.close()
        for record in self.__addresses.values():
            record.close()
        self.__resolvers.clear()
        self.__addresses.clear()
        self.__advertised_names.clear()

        if self.__owns_backend:
            await self.__backend.close()
        logging.info("ServiceDiscovery stopped.")
