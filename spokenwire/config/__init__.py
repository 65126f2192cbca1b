"""Configuration types for spokenwire discovery sessions."""

from spokenwire.config.discovery_config import DiscoveryConfig

__all__ = ["DiscoveryConfig"]
