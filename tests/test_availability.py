from __future__ import annotations

import random
from datetime import date, timedelta

import pytest

from booking_engine.availability import AvailabilityIndex, overlaps
from booking_engine.errors import InvalidDateRangeError, RangeConflictError
from booking_engine.models import ReservationToken


def d(month: int, day: int) -> date:
    return date(2025, month, day)


def test_adjacent_ranges_do_not_conflict() -> None:
    index = AvailabilityIndex()
    index.reserve("A", d(1, 1), d(1, 5))

    assert index.query("A", d(1, 5), d(1, 7))
    assert not index.query("A", d(1, 3), d(1, 7))
    assert not index.query("A", d(1, 2), d(1, 3))
    assert index.query("A", d(12, 1), d(12, 2))


def test_reserve_rejects_overlap_and_keeps_existing_range() -> None:
    index = AvailabilityIndex()
    held = index.reserve("A", d(1, 10), d(1, 15))

    with pytest.raises(RangeConflictError):
        index.reserve("A", d(1, 8), d(1, 11))
    with pytest.raises(RangeConflictError):
        index.reserve("A", d(1, 1), d(2, 1))

    assert index.ranges("A") == [held]


def test_accommodations_are_independent() -> None:
    index = AvailabilityIndex()
    index.reserve("A", d(1, 1), d(1, 5))

    assert index.query("B", d(1, 1), d(1, 5))
    index.reserve("B", d(1, 1), d(1, 5))


def test_empty_or_inverted_range_is_rejected() -> None:
    index = AvailabilityIndex()
    with pytest.raises(InvalidDateRangeError):
        index.reserve("A", d(1, 5), d(1, 5))
    with pytest.raises(InvalidDateRangeError):
        index.query("A", d(1, 6), d(1, 5))


def test_release_is_idempotent() -> None:
    index = AvailabilityIndex()
    token = index.reserve("A", d(1, 1), d(1, 5))

    assert index.release("A", token) is True
    assert index.release("A", token) is False
    assert index.ranges("A") == []
    assert index.query("A", d(1, 1), d(1, 5))


def test_release_only_removes_the_matching_token() -> None:
    index = AvailabilityIndex()
    first = index.reserve("A", d(1, 1), d(1, 5))
    index.release("A", first)
    second = index.reserve("A", d(1, 1), d(1, 5))

    # a stale token for the same dates must not free the new holder
    assert index.release("A", first) is False
    assert index.ranges("A") == [second]


def test_move_swaps_range_atomically() -> None:
    index = AvailabilityIndex()
    token = index.reserve("A", d(1, 1), d(1, 5))
    index.reserve("A", d(1, 10), d(1, 12))

    moved = index.move(token, d(1, 3), d(1, 8))
    assert (moved.check_in, moved.check_out) == (d(1, 3), d(1, 8))
    assert index.query("A", d(1, 1), d(1, 3))

    with pytest.raises(RangeConflictError):
        index.move(moved, d(1, 9), d(1, 11))
    assert moved in index.ranges("A")


def test_move_may_overlap_its_own_range() -> None:
    index = AvailabilityIndex()
    index.reserve("A", d(1, 1), d(1, 3))
    token = index.reserve("A", d(1, 5), d(1, 10))
    index.reserve("A", d(1, 12), d(1, 14))

    moved = index.move(token, d(1, 4), d(1, 11))
    assert [(t.check_in, t.check_out) for t in index.ranges("A")] == [
        (d(1, 1), d(1, 3)),
        (d(1, 4), d(1, 11)),
        (d(1, 12), d(1, 14)),
    ]
    with pytest.raises(RangeConflictError):
        index.move(moved, d(1, 2), d(1, 6))


def test_random_reservations_never_overlap() -> None:
    rng = random.Random(7)
    index = AvailabilityIndex()
    start = d(1, 1)
    for _ in range(500):
        check_in = start + timedelta(days=rng.randrange(0, 200))
        check_out = check_in + timedelta(days=rng.randrange(1, 10))
        free = index.query("A", check_in, check_out)
        try:
            index.reserve("A", check_in, check_out)
            assert free
        except RangeConflictError:
            assert not free

    held = index.ranges("A")
    for first, second in zip(held, held[1:]):
        assert first.check_out <= second.check_in
        assert not overlaps(first.check_in, first.check_out, second.check_in, second.check_out)


def test_release_ignores_token_of_another_accommodation() -> None:
    index = AvailabilityIndex()
    token = index.reserve("A", d(1, 1), d(1, 5))

    assert index.release("B", token) is False
    assert index.ranges("A") == [token]


def test_open_move_holds_old_and_new_dates() -> None:
    index = AvailabilityIndex()
    token = index.reserve("A", d(1, 1), d(1, 5))

    pending = index.begin_move(token, d(1, 10), d(1, 12))
    assert not index.query("A", d(1, 1), d(1, 5))
    assert not index.query("A", d(1, 10), d(1, 12))

    index.abort_move(pending)
    assert index.ranges("A") == [token]
    assert index.query("A", d(1, 10), d(1, 12))


def test_open_overlapping_move_holds_the_union() -> None:
    index = AvailabilityIndex()
    token = index.reserve("A", d(1, 5), d(1, 10))

    pending = index.begin_move(token, d(1, 8), d(1, 14))
    assert not index.query("A", d(1, 5), d(1, 6))
    assert not index.query("A", d(1, 13), d(1, 14))

    moved = index.commit_move(pending)
    assert index.ranges("A") == [moved]
    assert index.query("A", d(1, 5), d(1, 8))


def test_conflict_lookup_skips_the_moving_token() -> None:
    index = AvailabilityIndex()
    token = index.reserve("A", d(1, 5), d(1, 6))
    index.reserve("A", d(1, 6), d(1, 9))

    # the neighbour right of the ignored token must still be seen
    with pytest.raises(RangeConflictError):
        index.begin_move(token, d(1, 4), d(1, 7))
    assert index.ranges("A")[0] == token


def test_restore_keeps_the_persisted_token_id() -> None:
    index = AvailabilityIndex()
    token = ReservationToken(id="rsv_saved", accommodation_id="A", check_in=d(1, 1), check_out=d(1, 3))

    index.restore(token)

    assert index.ranges("A") == [token]
    with pytest.raises(RangeConflictError):
        index.restore(ReservationToken(id="rsv_other", accommodation_id="A", check_in=d(1, 2), check_out=d(1, 4)))
