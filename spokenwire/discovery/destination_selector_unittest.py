import ipaddress
from unittest.mock import MagicMock

from spokenwire.discovery.address_record import AddressRecord
from spokenwire.discovery.destination_selector import select_best_destination


def make_record(ip: str, created_at: float, port: int = 49000) -> AddressRecord:
    return AddressRecord(
        ipaddress.IPv4Address(ip), port, "host.local.", created_at, MagicMock()
    )


def test_empty_returns_none():
    assert select_best_destination([]) is None


def test_single_record():
    only = make_record("10.0.0.1", 0.0)
    assert select_best_destination([only]) is only


def test_link_local_wins_then_newer_generation_wins():
    a = make_record("1.2.3.4", 0.0)
    b = make_record("169.254.1.1", 1.0)
    c = make_record("5.6.7.8", 5.0)

    assert select_best_destination([a, b, c]) is c


def test_fold_compares_against_current_best():
    first = make_record("10.0.0.1", 10.0)
    second = make_record("169.254.9.9", 10.5)
    third = make_record("10.0.0.3", 13.0)

    # 13.0 - 10.0 would also be > 2, but the comparison is against the
    # link-local record that replaced the seed.
    assert select_best_destination([first, second, third]) is third


def test_same_generation_non_link_local_keeps_first():
    first = make_record("10.0.0.1", 0.0)
    second = make_record("10.0.0.2", 1.9)
    assert select_best_destination([first, second]) is first


def test_same_generation_prefers_last_link_local():
    first = make_record("169.254.0.1", 0.0)
    second = make_record("169.254.0.2", 0.5)
    third = make_record("10.0.0.3", 1.0)
    assert select_best_destination([first, second, third]) is second


def test_older_record_never_replaces():
    newer = make_record("10.0.0.1", 10.0)
    older = make_record("169.254.0.1", 5.0)
    assert select_best_destination([newer, older]) is newer


def test_exactly_window_apart_counts_as_newer():
    first = make_record("169.254.0.1", 0.0)
    second = make_record("10.0.0.2", 2.0)
    assert select_best_destination([first, second]) is second


def test_result_depends_on_order():
    a = make_record("10.0.0.1", 0.0)
    b = make_record("10.0.0.2", 1.0)
    assert select_best_destination([a, b]) is a
    assert select_best_destination([b, a]) is b


def test_custom_window():
    first = make_record("10.0.0.1", 0.0)
    second = make_record("10.0.0.2", 1.0)
    assert select_best_destination([first, second], 0.5) is second
