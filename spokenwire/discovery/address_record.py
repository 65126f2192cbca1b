"""Defines AddressRecord, one resolved destination for a service host."""

import ipaddress
import logging
import socket
from typing import Optional, Tuple

from spokenwire.util.ip import is_link_local

AddressKey = Tuple[ipaddress.IPv4Address, int, str]


class AddressRecord:
    """One IPv4 address resolved for a host:port, with its own UDP socket.

    Records are immutable once created. The owning discovery session closes
    the socket when it is torn down.
    """

    def __init__(
        self,
        ip: ipaddress.IPv4Address,
        port: int,
        source_host: str,
        created_at: float,
        sock: Optional[socket.socket] = None,
    ) -> None:
        """Initializes the AddressRecord.

        Args:
            ip: The resolved address.
            port: Destination port, in host byte order.
            source_host: Host name `ip` was resolved from.
            created_at: Session clock reading at resolution time.
            sock: Socket to send with. A non-blocking UDP socket is created
                when omitted.

        Raises:
            TypeError: If `ip` is not an IPv4Address.
            ValueError: If `port` is outside 0-65535.
        """
        if not isinstance(ip, ipaddress.IPv4Address):
            raise TypeError(
                f"ip must be IPv4Address, got {type(ip).__name__}."
            )
        if not 0 <= port <= 0xFFFF:
            raise ValueError(f"port must fit in 16 bits, got {port}.")

        if sock is None:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            sock.setblocking(False)

        self.__ip = ip
        self.__port = port
        self.__source_host = source_host
        self.__created_at = created_at
        self.__socket = sock

    @property
    def ip(self) -> ipaddress.IPv4Address:
        return self.__ip

    @property
    def port(self) -> int:
        return self.__port

    @property
    def source_host(self) -> str:
        return self.__source_host

    @property
    def created_at(self) -> float:
        return self.__created_at

    @property
    def udp_socket(self) -> socket.socket:
        return self.__socket

    @property
    def key(self) -> AddressKey:
        """Identity of this record within its session."""
        return (self.__ip, self.__port, self.__source_host)

    @property
    def socket_address(self) -> Tuple[str, int]:
        """Destination in the form expected by `socket.sendto`."""
        return (str(self.__ip), self.__port)

    @property
    def is_link_local(self) -> bool:
        return is_link_local(self.__ip)

    def close(self) -> None:
        """Closes the socket. Safe to call more than once."""
        if self.__socket.fileno() == -1:
            return
        try:
            self.__socket.close()
        except OSError as e:
            logging.warning(
                "Error closing socket for %s:%s: %s", self.__ip, self.__port, e
            )

    def __repr__(self) -> str:
        return (
            f"AddressRecord({self.__ip}:{self.__port} from "
            f"{self.__source_host!r}, created_at={self.__created_at})"
        )
