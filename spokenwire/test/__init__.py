# spokenwire - Test Utilities
# Allows "from spokenwire.test import ..." for shared fakes and helpers.

from spokenwire.test.fake_discovery_backend import FakeDiscoveryBackend

__all__ = ["FakeDiscoveryBackend"]
