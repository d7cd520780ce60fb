from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from booking_engine.models import Accommodation
from booking_engine.payments import InMemoryPaymentGateway
from booking_engine.policy import DEFAULT_POLICIES
from booking_engine.service import ReservationCoordinator
from booking_engine.storage import InMemoryBookingStorage


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 12, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def storage() -> InMemoryBookingStorage:
    storage = InMemoryBookingStorage(policies=DEFAULT_POLICIES.values())
    storage.add_accommodation(
        Accommodation(
            id="acc-a",
            property_id="prop-1",
            price_per_night=Decimal("100.00"),
            max_guest_count=4,
            cancellation_policy_id=DEFAULT_POLICIES["Moderate - 5 Days"].id,
        )
    )
    storage.add_accommodation(
        Accommodation(
            id="acc-b",
            property_id="prop-1",
            price_per_night=Decimal("80.00"),
            max_guest_count=2,
            cancellation_policy_id=DEFAULT_POLICIES["Stay Interrupted"].id,
        )
    )
    return storage


@pytest.fixture
def payments() -> InMemoryPaymentGateway:
    return InMemoryPaymentGateway()


@pytest.fixture
def coordinator(
    storage: InMemoryBookingStorage, payments: InMemoryPaymentGateway, clock: FakeClock
) -> ReservationCoordinator:
    return ReservationCoordinator(storage=storage, payments=payments, clock=clock)
