from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from .availability import AvailabilityIndex
from .errors import IllegalTransitionError
from .models import Booking, BookingStatus, Receipt

logger = logging.getLogger(__name__)


class BookingEvent(str, Enum):
    CONFIRM = "confirm"
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"
    CANCEL = "cancel"
    EXPIRE = "expire"
    NO_SHOW = "no_show"
    INTERRUPT = "interrupt"


_TRANSITIONS: Dict[Tuple[BookingStatus, BookingEvent], BookingStatus] = {
    (BookingStatus.PENDING, BookingEvent.CONFIRM): BookingStatus.CONFIRMED,
    (BookingStatus.CONFIRMED, BookingEvent.CHECK_IN): BookingStatus.CHECKED_IN,
    (BookingStatus.CHECKED_IN, BookingEvent.CHECK_OUT): BookingStatus.CHECKED_OUT,
    (BookingStatus.PENDING, BookingEvent.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.CONFIRMED, BookingEvent.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.PENDING, BookingEvent.EXPIRE): BookingStatus.EXPIRED,
    (BookingStatus.CONFIRMED, BookingEvent.EXPIRE): BookingStatus.EXPIRED,
    (BookingStatus.CONFIRMED, BookingEvent.NO_SHOW): BookingStatus.NO_SHOW,
    (BookingStatus.CHECKED_IN, BookingEvent.INTERRUPT): BookingStatus.CANCELLED,
}

_EVENT_TARGETS = {event: target for (_, event), target in _TRANSITIONS.items()}

_TIMESTAMP_FIELDS = {
    BookingStatus.CONFIRMED: "confirmed_at",
    BookingStatus.CHECKED_IN: "checked_in_at",
    BookingStatus.CHECKED_OUT: "checked_out_at",
    BookingStatus.CANCELLED: "cancelled_at",
}


def target_status(current: BookingStatus, event: BookingEvent) -> Optional[BookingStatus]:
    return _TRANSITIONS.get((current, event))


class BookingStateMachine:
    """Applies booking events according to the allowed edge table.

    Bookings are never changed in place; every transition returns a copy.
    Entering a terminal status hands the booking's range back to the index,
    but only once the new status has been persisted.
    """

    def __init__(self, availability: AvailabilityIndex) -> None:
        self._availability = availability

    def transition(
        self,
        booking: Booking,
        event: BookingEvent,
        at: datetime,
        *,
        receipt: Optional[Receipt] = None,
    ) -> Booking:
        current = booking.status
        if current.is_terminal and _EVENT_TARGETS.get(event) == current:
            return booking

        target = target_status(current, event)
        if target is None:
            logger.error(
                "Illegal booking transition requested",
                extra={"booking_id": booking.id, "status": current.value, "event": event.value},
            )
            raise IllegalTransitionError(current.value, event.value)

        changes = {"status": target, "updated_at": at}
        if event is BookingEvent.CONFIRM:
            if receipt is None:
                raise IllegalTransitionError(current.value, "confirm without payment")
            changes["payment_receipt"] = receipt
        timestamp_field = _TIMESTAMP_FIELDS.get(target)
        if timestamp_field:
            changes[timestamp_field] = at

        return replace(booking, **changes)

    def apply(
        self,
        booking: Booking,
        event: BookingEvent,
        at: datetime,
        *,
        persist: Callable[[Booking], None],
        receipt: Optional[Receipt] = None,
    ) -> Booking:
        """Transition, persist, then release the range if the booking is done.

        A failing ``persist`` leaves the index untouched, so the stored status
        and the held range never disagree.
        """
        updated = self.transition(booking, event, at, receipt=receipt)
        if updated is booking:
            return booking
        persist(updated)
        token = booking.reservation_token
        if updated.status.is_terminal and token is not None:
            self._availability.release(token.accommodation_id, token)
        return updated
