"""Picks the single best destination among resolved addresses."""

from typing import Optional, Sequence

from spokenwire.discovery.address_record import AddressRecord

DEFAULT_SAME_GENERATION_WINDOW = 2.0


def select_best_destination(
    records: Sequence[AddressRecord],
    same_generation_window: float = DEFAULT_SAME_GENERATION_WINDOW,
) -> Optional[AddressRecord]:
    """Folds over |records| in discovery order and returns the best one.

    The fold is seeded with the first record. A candidate created within
    |same_generation_window| seconds of the current best replaces it only if
    the candidate is link-local. Otherwise a strictly newer candidate always
    replaces it. The outcome depends on the order of |records|.

    Returns:
        The chosen record, or None if |records| is empty.
    """
    if not records:
        return None

    best = records[0]
    for candidate in records:
        time_diff = candidate.created_at - best.created_at
        if abs(time_diff) < same_generation_window:
            if candidate.is_link_local:
                best = candidate
        elif time_diff > 0:
            best = candidate
    return best
