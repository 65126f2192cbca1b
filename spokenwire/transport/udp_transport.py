"""Best-effort UDP sends to a discovery session's best destination."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from spokenwire.discovery.address_record import AddressRecord
from spokenwire.discovery.service_discovery import ServiceDiscovery


class Transport:
    """Sends single datagrams to whatever destination is currently best.

    Every send re-evaluates `ServiceDiscovery.best_destination()`. When the
    answer differs by identity from the previous one, the cached destination
    is replaced and the client is told, including when the new answer is
    None. Sends with no destination are dropped. Nothing is buffered,
    acknowledged or retried.
    """

    # pylint: disable=R0903 # Abstract listener interface
    class Client(ABC):
        """Interface for `Transport` clients."""

        @abstractmethod
        def _on_destination_changed(
            self, destination: Optional[AddressRecord]
        ) -> None:
            """Called when the cached destination changes.

            Args:
                destination: The new destination, or None if there is none.
            """
            raise NotImplementedError(
                "Transport.Client._on_destination_changed must be implemented by subclasses."
            )

    def __init__(self, client: Optional["Transport.Client"] = None) -> None:
        self.__client = client
        self.__current_destination: Optional[AddressRecord] = None

    @property
    def current_destination(self) -> Optional[AddressRecord]:
        return self.__current_destination

    def send(self, session: ServiceDiscovery, payload: bytes | str) -> bool:
        """Sends |payload| as one datagram to the session's best destination.

        Never raises for network conditions: socket errors are logged and the
        next periodic send acts as the retry.

        Args:
            session: Discovery session to ask for the destination.
            payload: Datagram body. A str is encoded as UTF-8.

        Returns:
            True if the datagram was handed to the socket.
        """
        destination = session.best_destination()
        if destination is not self.__current_destination:
            self.__current_destination = destination
            if destination is not None:
                logging.info(
                    "Connected to %s:%s", destination.ip, destination.port
                )
            else:
                logging.info("No connection!")
            self.__notify_client(destination)

        if destination is None:
            return False

        data = payload.encode("utf-8") if isinstance(payload, str) else payload
        try:
            destination.udp_socket.sendto(data, destination.socket_address)
        except OSError as e:
            logging.warning(
                "Failed to send %d bytes to %s:%s: %s",
                len(data),
                destination.ip,
                destination.port,
                e,
            )
            return False
        return True

    def __notify_client(self, destination: Optional[AddressRecord]) -> None:
        if self.__client is None:
            return
        try:
            # pylint: disable=W0212 # Calling client's notification method
            self.__client._on_destination_changed(destination)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logging.error(
                "Transport client raised while handling destination change: %s",
                e,
                exc_info=True,
            )
