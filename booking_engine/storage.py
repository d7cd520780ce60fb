from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from threading import RLock
from typing import Dict, Iterable, List, Optional, Protocol

from .errors import (
    AccommodationInUseError,
    AccommodationNotFoundError,
    PolicyInUseError,
    PolicyNotFoundError,
)
from .models import Accommodation, Booking, BookingStatus, CancellationPolicy

_MUTABLE_ACCOMMODATION_FIELDS = ("price_per_night", "description")


class BookingStore(Protocol):
    def save(self, booking: Booking) -> None: ...

    def load(self, booking_id: str) -> Optional[Booking]: ...

    def find_by_accommodation(self, accommodation_id: str) -> List[Booking]: ...

    def list_bookings(self, status: Optional[BookingStatus] = None) -> List[Booking]: ...

    def get_accommodation(self, accommodation_id: str) -> Optional[Accommodation]: ...

    def get_policy(self, policy_id: str) -> Optional[CancellationPolicy]: ...


class InMemoryBookingStorage:
    """Thread-safe in-memory storage for bookings, accommodations and policies.

    Ownership rules that a relational store would enforce with foreign keys
    are checked here explicitly: a policy referenced by an accommodation and
    an accommodation referenced by a booking cannot be deleted.
    """

    def __init__(self, policies: Iterable[CancellationPolicy] = ()) -> None:
        self._lock = RLock()
        self._bookings: Dict[str, Booking] = {}
        self._accommodations: Dict[str, Accommodation] = {}
        self._policies: Dict[str, CancellationPolicy] = {}
        for policy in policies:
            self.save_policy(policy)

    def save(self, booking: Booking) -> None:
        with self._lock:
            self._bookings[booking.id] = booking

    def load(self, booking_id: str) -> Optional[Booking]:
        with self._lock:
            return self._bookings.get(booking_id)

    def find_by_accommodation(self, accommodation_id: str) -> List[Booking]:
        with self._lock:
            return [b for b in self._bookings.values() if b.accommodation_id == accommodation_id]

    def list_bookings(self, status: Optional[BookingStatus] = None) -> List[Booking]:
        with self._lock:
            bookings = list(self._bookings.values())
        if status is None:
            return bookings
        return [b for b in bookings if b.status == status]

    def save_policy(self, policy: CancellationPolicy) -> None:
        with self._lock:
            for existing in self._policies.values():
                if existing.name == policy.name and existing.id != policy.id:
                    raise PolicyInUseError(f"policy name {policy.name!r} is already taken")
            self._policies[policy.id] = policy

    def get_policy(self, policy_id: str) -> Optional[CancellationPolicy]:
        with self._lock:
            return self._policies.get(policy_id)

    def list_policies(self) -> List[CancellationPolicy]:
        with self._lock:
            return list(self._policies.values())

    def delete_policy(self, policy_id: str) -> None:
        with self._lock:
            if policy_id not in self._policies:
                raise PolicyNotFoundError(policy_id)
            if any(a.cancellation_policy_id == policy_id for a in self._accommodations.values()):
                raise PolicyInUseError("policy is assigned to accommodations")
            del self._policies[policy_id]

    def add_accommodation(self, accommodation: Accommodation) -> None:
        with self._lock:
            if accommodation.cancellation_policy_id not in self._policies:
                raise PolicyNotFoundError(accommodation.cancellation_policy_id)
            self._accommodations[accommodation.id] = accommodation

    def get_accommodation(self, accommodation_id: str) -> Optional[Accommodation]:
        with self._lock:
            return self._accommodations.get(accommodation_id)

    def list_accommodations(self) -> List[Accommodation]:
        with self._lock:
            return list(self._accommodations.values())

    def update_accommodation(
        self,
        accommodation_id: str,
        *,
        price_per_night: Optional[Decimal] = None,
        description: Optional[str] = None,
        **other_changes: object,
    ) -> Accommodation:
        """Apply changes; only price and description may change once booked."""
        with self._lock:
            current = self._accommodations.get(accommodation_id)
            if current is None:
                raise AccommodationNotFoundError(accommodation_id)
            changes = dict(other_changes)
            if price_per_night is not None:
                changes["price_per_night"] = price_per_night
            if description is not None:
                changes["description"] = description
            restricted = [k for k in changes if k not in _MUTABLE_ACCOMMODATION_FIELDS]
            if restricted and self._has_bookings(accommodation_id):
                raise AccommodationInUseError(
                    f"cannot change {', '.join(sorted(restricted))} on a booked accommodation"
                )
            updated = replace(current, **changes)
            self._accommodations[accommodation_id] = updated
            return updated

    def delete_accommodation(self, accommodation_id: str) -> None:
        with self._lock:
            if accommodation_id not in self._accommodations:
                raise AccommodationNotFoundError(accommodation_id)
            if self._has_bookings(accommodation_id):
                raise AccommodationInUseError("accommodation has bookings")
            del self._accommodations[accommodation_id]

    def _has_bookings(self, accommodation_id: str) -> bool:
        return any(b.accommodation_id == accommodation_id for b in self._bookings.values())
