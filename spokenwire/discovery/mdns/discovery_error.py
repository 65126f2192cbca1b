"""Error type reported by discovery subscriptions."""

# Numeric codes follow the DNS-SD error space.
NO_ERROR = 0
UNKNOWN = -65537
BAD_PARAM = -65540
NO_SUCH_RECORD = -65554
SERVICE_NOT_RUNNING = -65563
TIMEOUT = -65568


class DiscoveryError(Exception):
    """A failure reported by the discovery protocol.

    Discovery errors are never fatal. Subscriptions deliver them as values
    alongside regular events and sessions record the most recent one for
    diagnostics.
    """

    def __init__(self, code: int, message: str = "") -> None:
        super().__init__(message or f"discovery error {code}")
        self.code = code

    def __repr__(self) -> str:
        return f"DiscoveryError(code={self.code}, message={str(self)!r})"
