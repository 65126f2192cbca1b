# spokenwire/config/discovery_config.py
from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class DiscoveryConfig:
    """Configuration for a discovery session and its transport."""

    # Seconds between event pump ticks.
    poll_interval: float = 0.25

    # Seconds between keep-alive datagrams.
    keepalive_interval: float = 0.25

    # Records created within this many seconds of each other are considered
    # to belong to the same generation when picking a destination.
    same_generation_window: float = 2.0

    # When False, a browse "remove" for the target name drops the first
    # advertised name rather than the matched one.
    remove_matched_name: bool = False

    # Period between repeated instance / host queries issued by the backend.
    resolve_interval: float = 5.0

    # Timeout for a single instance resolution request.
    resolve_timeout: float = 3.0

    # Local IPv4 addresses to run mDNS on. None means all interfaces.
    interfaces: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        for field_name in (
            "poll_interval",
            "keepalive_interval",
            "resolve_interval",
            "resolve_timeout",
        ):
            value = getattr(self, field_name)
            if value <= 0:
                raise ValueError(
                    f"{field_name} must be positive, got {value}."
                )
        if self.same_generation_window < 0:
            raise ValueError(
                "same_generation_window must be non-negative, got "
                f"{self.same_generation_window}."
            )
        if self.interfaces is not None and not isinstance(
            self.interfaces, tuple
        ):
            raise TypeError(
                "interfaces must be a tuple of address strings, got "
                f"{type(self.interfaces).__name__}."
            )
