from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from booking_engine.availability import AvailabilityIndex
from booking_engine.errors import IllegalTransitionError, PersistenceError
from booking_engine.models import Booking, BookingStatus, Receipt, ReceiptKind
from booking_engine.state_machine import BookingEvent, BookingStateMachine

NOW = datetime(2025, 1, 1, 12, tzinfo=timezone.utc)


def _receipt() -> Receipt:
    return Receipt(id="rcpt_1", booking_id="bk_1", amount=Decimal("400"), kind=ReceiptKind.CHARGE, created_at=NOW)


@pytest.fixture
def index() -> AvailabilityIndex:
    return AvailabilityIndex()


@pytest.fixture
def machine(index: AvailabilityIndex) -> BookingStateMachine:
    return BookingStateMachine(index)


@pytest.fixture
def booking(index: AvailabilityIndex) -> Booking:
    token = index.reserve("acc-a", date(2025, 2, 1), date(2025, 2, 5))
    return Booking(
        id="bk_1",
        guest_id="g1",
        accommodation_id="acc-a",
        check_in=token.check_in,
        check_out=token.check_out,
        status=BookingStatus.PENDING,
        created_at=NOW,
        reservation_token=token,
    )


def test_happy_path_sets_timestamps(machine: BookingStateMachine, booking: Booking, index: AvailabilityIndex) -> None:
    saved = []
    confirmed = machine.apply(booking, BookingEvent.CONFIRM, NOW, persist=saved.append, receipt=_receipt())
    checked_in = machine.apply(confirmed, BookingEvent.CHECK_IN, NOW, persist=saved.append)
    assert index.ranges("acc-a")

    checked_out = machine.apply(checked_in, BookingEvent.CHECK_OUT, NOW, persist=saved.append)

    assert confirmed.status is BookingStatus.CONFIRMED
    assert confirmed.confirmed_at == NOW
    assert confirmed.amount_paid == Decimal("400")
    assert checked_in.checked_in_at == NOW
    assert checked_out.status is BookingStatus.CHECKED_OUT
    assert saved == [confirmed, checked_in, checked_out]
    assert index.ranges("acc-a") == []
    # the input booking is left untouched
    assert booking.status is BookingStatus.PENDING


def test_confirm_requires_payment(machine: BookingStateMachine, booking: Booking) -> None:
    with pytest.raises(IllegalTransitionError):
        machine.transition(booking, BookingEvent.CONFIRM, NOW)


@pytest.mark.parametrize(
    "status, event",
    [
        (BookingStatus.PENDING, BookingEvent.CHECK_IN),
        (BookingStatus.PENDING, BookingEvent.NO_SHOW),
        (BookingStatus.CONFIRMED, BookingEvent.CHECK_OUT),
        (BookingStatus.CHECKED_IN, BookingEvent.CANCEL),
        (BookingStatus.CHECKED_OUT, BookingEvent.CANCEL),
        (BookingStatus.CANCELLED, BookingEvent.CONFIRM),
        (BookingStatus.EXPIRED, BookingEvent.CANCEL),
        (BookingStatus.NO_SHOW, BookingEvent.CHECK_IN),
        (BookingStatus.PENDING, BookingEvent.INTERRUPT),
        (BookingStatus.CONFIRMED, BookingEvent.INTERRUPT),
    ],
)
def test_edges_outside_the_table_fail(
    machine: BookingStateMachine, booking: Booking, status: BookingStatus, event: BookingEvent
) -> None:
    booking.status = status
    with pytest.raises(IllegalTransitionError):
        machine.transition(booking, event, NOW, receipt=_receipt())


@pytest.mark.parametrize(
    "status, event",
    [
        (BookingStatus.CANCELLED, BookingEvent.CANCEL),
        (BookingStatus.EXPIRED, BookingEvent.EXPIRE),
        (BookingStatus.NO_SHOW, BookingEvent.NO_SHOW),
        (BookingStatus.CHECKED_OUT, BookingEvent.CHECK_OUT),
    ],
)
def test_repeating_a_terminal_transition_is_a_no_op(
    machine: BookingStateMachine, booking: Booking, status: BookingStatus, event: BookingEvent
) -> None:
    booking.status = status
    assert machine.transition(booking, event, NOW) is booking


def test_cancel_releases_range(machine: BookingStateMachine, booking: Booking, index: AvailabilityIndex) -> None:
    cancelled = machine.apply(booking, BookingEvent.CANCEL, NOW, persist=lambda _: None)

    assert cancelled.status is BookingStatus.CANCELLED
    assert cancelled.cancelled_at == NOW
    assert index.query("acc-a", booking.check_in, booking.check_out)
    # cancelling again is a no-op and does not disturb a new holder
    new_token = index.reserve("acc-a", booking.check_in, booking.check_out)
    machine.apply(cancelled, BookingEvent.CANCEL, NOW, persist=lambda _: None)
    assert index.ranges("acc-a") == [new_token]


def test_transition_alone_keeps_the_range(
    machine: BookingStateMachine, booking: Booking, index: AvailabilityIndex
) -> None:
    machine.transition(booking, BookingEvent.CANCEL, NOW)

    assert index.ranges("acc-a") == [booking.reservation_token]


def test_failed_persist_keeps_the_range(
    machine: BookingStateMachine, booking: Booking, index: AvailabilityIndex
) -> None:
    def persist(_: Booking) -> None:
        raise PersistenceError("store is down")

    with pytest.raises(PersistenceError):
        machine.apply(booking, BookingEvent.EXPIRE, NOW, persist=persist)

    assert not index.query("acc-a", booking.check_in, booking.check_out)


def test_interrupt_cancels_a_checked_in_stay(
    machine: BookingStateMachine, booking: Booking, index: AvailabilityIndex
) -> None:
    booking.status = BookingStatus.CHECKED_IN

    interrupted = machine.apply(booking, BookingEvent.INTERRUPT, NOW, persist=lambda _: None)

    assert interrupted.status is BookingStatus.CANCELLED
    assert interrupted.cancelled_at == NOW
    assert index.ranges("acc-a") == []


def test_expire_from_pending_and_confirmed(machine: BookingStateMachine, booking: Booking) -> None:
    assert machine.transition(booking, BookingEvent.EXPIRE, NOW).status is BookingStatus.EXPIRED
    booking.status = BookingStatus.CONFIRMED
    assert machine.transition(booking, BookingEvent.EXPIRE, NOW).status is BookingStatus.EXPIRED
