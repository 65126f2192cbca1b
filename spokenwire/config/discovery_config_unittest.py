import dataclasses

import pytest

from spokenwire.config.discovery_config import DiscoveryConfig


def test_defaults():
    config = DiscoveryConfig()
    assert config.poll_interval == 0.25
    assert config.keepalive_interval == 0.25
    assert config.same_generation_window == 2.0
    assert config.remove_matched_name is False
    assert config.interfaces is None


def test_is_frozen():
    config = DiscoveryConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.poll_interval = 1.0  # type: ignore[misc]


@pytest.mark.parametrize(
    "field_name",
    ["poll_interval", "keepalive_interval", "resolve_interval", "resolve_timeout"],
)
@pytest.mark.parametrize("value", [0, -0.5])
def test_rejects_non_positive_intervals(field_name, value):
    with pytest.raises(ValueError, match=field_name):
        DiscoveryConfig(**{field_name: value})


def test_rejects_negative_generation_window():
    with pytest.raises(ValueError, match="same_generation_window"):
        DiscoveryConfig(same_generation_window=-1.0)


def test_zero_generation_window_allowed():
    assert DiscoveryConfig(same_generation_window=0.0).same_generation_window == 0.0


def test_interfaces_must_be_tuple():
    with pytest.raises(TypeError):
        DiscoveryConfig(interfaces=["10.0.0.1"])  # type: ignore[arg-type]
    assert DiscoveryConfig(interfaces=("10.0.0.1",)).interfaces == ("10.0.0.1",)
