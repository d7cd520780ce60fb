from __future__ import annotations

import time
from datetime import date

from booking_engine.models import BookingStatus
from booking_engine.scheduler import ExpirySweeper
from booking_engine.service import ReservationCoordinator

from conftest import FakeClock


def test_run_once_expires_and_marks_no_shows(coordinator: ReservationCoordinator, clock: FakeClock) -> None:
    pending = coordinator.create_booking(
        guest_id="g1", accommodation_id="acc-a", check_in=date(2025, 3, 1), check_out=date(2025, 3, 4)
    )
    arriving = coordinator.create_booking(
        guest_id="g2", accommodation_id="acc-a", check_in=date(2024, 12, 2), check_out=date(2024, 12, 4)
    )
    coordinator.confirm_booking(arriving.id)
    clock.advance(days=3)

    result = ExpirySweeper(coordinator).run_once()

    assert result.expired == [pending.id]
    assert result.no_shows == [arriving.id]
    assert coordinator.get_booking(arriving.id).status is BookingStatus.NO_SHOW


def test_background_thread_sweeps_and_stops(coordinator: ReservationCoordinator, clock: FakeClock) -> None:
    booking = coordinator.create_booking(
        guest_id="g1", accommodation_id="acc-a", check_in=date(2025, 3, 1), check_out=date(2025, 3, 4)
    )
    clock.advance(hours=2)
    sweeper = ExpirySweeper(coordinator, interval_seconds=0.01)

    sweeper.start()
    try:
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            if coordinator.get_booking(booking.id).status is BookingStatus.EXPIRED:
                break
            time.sleep(0.01)
    finally:
        sweeper.stop(timeout=5)

    assert coordinator.get_booking(booking.id).status is BookingStatus.EXPIRED
    assert not sweeper.running
