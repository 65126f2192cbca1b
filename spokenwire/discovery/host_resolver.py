"""Watches the A records of one resolved service host."""

import ipaddress
import logging
from typing import Callable, List, Optional

from spokenwire.discovery.address_record import AddressKey
from spokenwire.discovery.mdns import discovery_error
from spokenwire.discovery.mdns.discovery_backend import DiscoveryBackend
from spokenwire.discovery.mdns.discovery_error import DiscoveryError
from spokenwire.discovery.mdns.discovery_events import HostRecordEvent
from spokenwire.discovery.mdns.subscription import Subscription
from spokenwire.util.ip import decode_ipv4

# Called with (host_name, port, ip). Returns the key of a newly created
# AddressRecord, or None if the session already had one for that triple.
AddressSink = Callable[
    [str, int, ipaddress.IPv4Address], Optional[AddressKey]
]


class HostResolver:
    """Continuously resolves one host name for one service port.

    Holds no strong reference to its session: newly decoded addresses are
    handed to the `AddressSink` bound at construction, and only the keys of
    the records created for this host are kept here.
    """

    def __init__(
        self,
        host_name: str,
        port: int,
        backend: DiscoveryBackend,
        address_sink: AddressSink,
    ) -> None:
        """Initializes the HostResolver and opens its A-record subscription.

        A failure to open the subscription is recorded in `last_error`.

        Args:
            host_name: Host name reported by instance resolution.
            port: Service port, in host byte order.
            backend: Backend used to open the subscription.
            address_sink: Receives every successfully decoded address.

        Raises:
            ValueError: If `host_name` is empty or `address_sink` is None.
        """
        if not host_name:
            raise ValueError("host_name cannot be empty for HostResolver.")
        if address_sink is None:
            raise ValueError("address_sink cannot be None for HostResolver.")

        self.__host_name = host_name
        self.__port = port
        self.__address_sink = address_sink
        self.__last_error: Optional[DiscoveryError] = None
        self.__address_keys: List[AddressKey] = []
        self.__subscription: Optional[Subscription[HostRecordEvent]] = None

        try:
            self.__subscription = backend.resolve_host(
                host_name, self._on_result
            )
        except DiscoveryError as e:
            self.__last_error = e
            logging.error(
                "Failed to start resolving %s:%s: %s", host_name, port, e
            )

    @property
    def host_name(self) -> str:
        return self.__host_name

    @property
    def port(self) -> int:
        return self.__port

    @property
    def last_error(self) -> Optional[DiscoveryError]:
        return self.__last_error

    @property
    def subscription(self) -> Optional[Subscription[HostRecordEvent]]:
        return self.__subscription

    @property
    def address_keys(self) -> List[AddressKey]:
        """Keys of the records created for this host, in discovery order."""
        return list(self.__address_keys)

    def _on_result(self, result: HostRecordEvent | DiscoveryError) -> None:
        if isinstance(result, DiscoveryError):
            self.__last_error = result
            logging.warning(
                "A record query for %s reported error %s",
                self.__host_name,
                result.code,
            )
            return

        try:
            ip = decode_ipv4(result.rdata)
        except ValueError as e:
            self.__last_error = DiscoveryError(discovery_error.UNKNOWN, str(e))
            logging.warning(
                "Ignoring malformed A record for %s: %s", self.__host_name, e
            )
            return

        logging.debug("Resolved %s -> %s", self.__host_name, ip)
        key = self.__address_sink(self.__host_name, self.__port, ip)
        if key is not None:
            self.__address_keys.append(key)

    def close(self) -> None:
        """Releases the A-record subscription."""
        if self.__subscription is not None:
            self.__subscription.close()
