import pytest

from spokenwire.discovery.mdns.discovery_error import DiscoveryError, TIMEOUT
from spokenwire.discovery.mdns.discovery_events import (
    FLAG_ADD,
    FLAG_MORE_COMING,
    BrowseEvent,
)


@pytest.mark.parametrize(
    "flags,expected",
    [
        (FLAG_ADD, True),
        (FLAG_ADD | FLAG_MORE_COMING, True),
        (FLAG_MORE_COMING, False),
        (0, False),
    ],
)
def test_browse_event_is_present(flags, expected):
    assert BrowseEvent("speech-receiver", flags).is_present is expected


def test_discovery_error_carries_code():
    error = DiscoveryError(TIMEOUT, "no answer")
    assert error.code == TIMEOUT
    assert str(error) == "no answer"
    assert "code=-65568" in repr(error)


def test_discovery_error_default_message():
    assert str(DiscoveryError(-1)) == "discovery error -1"
