"""Event types delivered by discovery subscriptions."""

import dataclasses
from typing import TypeVar, Union

from spokenwire.discovery.mdns.discovery_error import DiscoveryError

# Browse flag bits.
FLAG_MORE_COMING = 0x1
FLAG_ADD = 0x2


@dataclasses.dataclass(frozen=True)
class BrowseEvent:
    """A service instance of the browsed type appeared or went away.

    `flags` is a combination of `FLAG_ADD` and `FLAG_MORE_COMING`.
    """

    service_name: str
    flags: int

    @property
    def is_present(self) -> bool:
        """True if this event announces the service rather than removing it."""
        return self.flags in (FLAG_ADD, FLAG_ADD | FLAG_MORE_COMING)


@dataclasses.dataclass(frozen=True)
class ResolveEvent:
    """A service instance resolved to a target host.

    `raw_port` is the two byte port exactly as carried in the SRV record,
    in network byte order.
    """

    host_name: str
    raw_port: bytes


@dataclasses.dataclass(frozen=True)
class HostRecordEvent:
    """An A record for a host. `rdata` holds the 4 address bytes."""

    host_name: str
    rdata: bytes


EventT = TypeVar("EventT", BrowseEvent, ResolveEvent, HostRecordEvent)

DiscoveryResult = Union[EventT, DiscoveryError]
