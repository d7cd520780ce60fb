from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from threading import Lock
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from .availability import AvailabilityIndex
from .errors import (
    AccommodationNotFoundError,
    AlreadyTerminalError,
    AppError,
    BadRequestError,
    BookingNotFoundError,
    IllegalTransitionError,
    InvalidDateRangeError,
    PaymentError,
    PersistenceError,
    PolicyNotFoundError,
)
from .models import (
    ZERO,
    Accommodation,
    Booking,
    BookingStatus,
    CancellationPolicy,
    RefundDecision,
    ReservationToken,
    Receipt,
    Settlement,
    day_start,
    utcnow,
)
from .payments import PaymentGateway
from .policy import days_before_check_in, evaluate, refund_amount
from .state_machine import BookingEvent, BookingStateMachine
from .storage import BookingStore

logger = logging.getLogger(__name__)


def ensure_utc(dt: datetime, field: str) -> datetime:
    if dt.tzinfo is None:
        raise BadRequestError("timestamp must be timezone-aware", field=field)
    return dt.astimezone(timezone.utc)


class ReservationCoordinator:
    """Creates and changes bookings; nothing else writes booking status.

    Index locks are only held while the calendar is mutated. Status changes of
    one booking are serialized with a per-booking lock so that the expiry sweep
    and a guest cancelling the same booking cannot both win.
    """

    def __init__(
        self,
        storage: BookingStore,
        payments: PaymentGateway,
        availability: Optional[AvailabilityIndex] = None,
        *,
        hold_window: timedelta = timedelta(minutes=30),
        no_show_grace: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._storage = storage
        self._payments = payments
        self._availability = availability or AvailabilityIndex()
        self._state_machine = BookingStateMachine(self._availability)
        self._hold_window = hold_window
        self._no_show_grace = no_show_grace
        self._clock = clock
        self._locks_guard = Lock()
        self._booking_locks: Dict[str, Lock] = {}

    @property
    def availability_index(self) -> AvailabilityIndex:
        return self._availability

    def restore(self) -> int:
        """Rebuild the availability index from persisted bookings."""
        restored = self._availability.rebuild(self._storage.list_bookings())
        logger.info("Availability restored", extra={"ranges": restored})
        return restored

    def create_booking(
        self,
        *,
        guest_id: str,
        accommodation_id: str,
        check_in: date,
        check_out: date,
        guest_count: int = 1,
    ) -> Booking:
        now = ensure_utc(self._clock(), "now")
        self._validate_dates(check_in, check_out, now)
        accommodation = self._get_accommodation(accommodation_id)
        if guest_count < 1 or guest_count > accommodation.max_guest_count:
            raise BadRequestError(
                f"guest_count must be between 1 and {accommodation.max_guest_count}", field="guest_count"
            )

        token = self._availability.reserve(accommodation_id, check_in, check_out)
        booking = Booking(
            id=self._generate_booking_id(),
            guest_id=guest_id,
            accommodation_id=accommodation_id,
            check_in=check_in,
            check_out=check_out,
            status=BookingStatus.PENDING,
            created_at=now,
            updated_at=now,
            total_price=_price(accommodation, check_in, check_out),
            guest_count=guest_count,
            reservation_token=token,
        )
        try:
            self._save(booking)
        except PersistenceError:
            self._availability.release(accommodation_id, token)
            raise

        logger.info(
            "Booking created",
            extra={"booking_id": booking.id, "accommodation_id": accommodation_id, "guest_id": guest_id},
        )
        return booking

    def get_booking(self, booking_id: str) -> Booking:
        return self._load(booking_id)

    def is_available(self, accommodation_id: str, check_in: date, check_out: date) -> bool:
        self._get_accommodation(accommodation_id)
        return self._availability.query(accommodation_id, check_in, check_out)

    def held_ranges(self, accommodation_id: str) -> List[ReservationToken]:
        self._get_accommodation(accommodation_id)
        return self._availability.ranges(accommodation_id)

    def cancel_booking(self, booking_id: str, at_time: Optional[datetime] = None) -> RefundDecision:
        at = ensure_utc(at_time or self._clock(), "at_time")
        with self._lock_for(booking_id):
            booking = self._load(booking_id)
            if booking.status.is_terminal:
                raise AlreadyTerminalError(booking.id, booking.status.value)
            policy = self._policy_for(booking)
            fraction = evaluate(
                policy,
                booking.check_in,
                at,
                booked_at=booking.created_at,
                check_out=booking.check_out,
            )
            event = BookingEvent.CANCEL
            if booking.status is BookingStatus.CHECKED_IN and policy.prorate_after_checkin:
                event = BookingEvent.INTERRUPT
            cancelled = self._state_machine.apply(booking, event, at, persist=self._save)
            self._forget_lock(booking_id)

        decision = self._settle(cancelled, policy, fraction, at)
        logger.info(
            "Booking cancelled",
            extra={
                "booking_id": booking.id,
                "accommodation_id": booking.accommodation_id,
                "event": event.value,
                "refund_fraction": str(decision.fraction),
                "settlement": decision.settlement.value,
            },
        )
        return decision

    def modify_booking(self, booking_id: str, *, check_in: date, check_out: date) -> Booking:
        now = ensure_utc(self._clock(), "now")
        self._validate_dates(check_in, check_out, now)
        with self._lock_for(booking_id):
            booking = self._load(booking_id)
            if booking.status.is_terminal:
                raise AlreadyTerminalError(booking.id, booking.status.value)
            if booking.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
                raise IllegalTransitionError(booking.status.value, "modify")
            if booking.reservation_token is None:
                raise IllegalTransitionError(booking.status.value, "modify without a reservation")
            accommodation = self._get_accommodation(booking.accommodation_id)

            # old dates stay held until the new ones are persisted
            pending = self._availability.begin_move(booking.reservation_token, check_in, check_out)
            modified = replace(
                booking,
                check_in=check_in,
                check_out=check_out,
                reservation_token=pending.target,
                total_price=_price(accommodation, check_in, check_out),
                updated_at=now,
            )
            try:
                self._save(modified)
            except PersistenceError:
                self._availability.abort_move(pending)
                raise
            self._availability.commit_move(pending)

        logger.info(
            "Booking modified",
            extra={"booking_id": booking.id, "accommodation_id": booking.accommodation_id},
        )
        return modified

    def confirm_booking(self, booking_id: str) -> Booking:
        booking = self._load(booking_id)
        if booking.status.is_terminal:
            raise AlreadyTerminalError(booking.id, booking.status.value)
        if booking.status is not BookingStatus.PENDING:
            raise IllegalTransitionError(booking.status.value, BookingEvent.CONFIRM.value)

        try:
            receipt = self._payments.charge(booking.id, booking.total_price)
        except PaymentError:
            logger.warning("Payment failed, booking stays pending", extra={"booking_id": booking.id})
            raise

        with self._lock_for(booking_id):
            current = self._load(booking_id)
            if current.status is BookingStatus.PENDING:
                try:
                    confirmed = self._state_machine.apply(
                        current, BookingEvent.CONFIRM, self._clock(), persist=self._save, receipt=receipt
                    )
                except (IllegalTransitionError, PersistenceError):
                    self._void(receipt)
                    raise

        if current.status is not BookingStatus.PENDING:
            # another caller settled the booking while this charge was in flight
            self._void(receipt)
            if current.status.is_terminal:
                raise AlreadyTerminalError(current.id, current.status.value)
            logger.info(
                "Booking already confirmed by a concurrent request",
                extra={"booking_id": booking.id, "receipt_id": receipt.id},
            )
            return current

        logger.info("Booking confirmed", extra={"booking_id": booking.id, "receipt_id": receipt.id})
        return confirmed

    def check_in(self, booking_id: str, at: Optional[datetime] = None) -> Booking:
        at = ensure_utc(at or self._clock(), "at")
        with self._lock_for(booking_id):
            booking = self._load(booking_id)
            if booking.status.is_terminal:
                raise AlreadyTerminalError(booking.id, booking.status.value)
            if at < day_start(booking.check_in):
                raise BadRequestError("check-in opens on the check-in date", field="at")
            checked_in = self._state_machine.apply(booking, BookingEvent.CHECK_IN, at, persist=self._save)
        logger.info("Guest checked in", extra={"booking_id": booking.id})
        return checked_in

    def check_out(self, booking_id: str, at: Optional[datetime] = None) -> Booking:
        at = ensure_utc(at or self._clock(), "at")
        with self._lock_for(booking_id):
            booking = self._load(booking_id)
            if booking.status.is_terminal:
                raise AlreadyTerminalError(booking.id, booking.status.value)
            checked_out = self._state_machine.apply(booking, BookingEvent.CHECK_OUT, at, persist=self._save)
            self._forget_lock(booking_id)
        logger.info("Guest checked out", extra={"booking_id": booking.id})
        return checked_out

    def expire_stale_pending(self, now: Optional[datetime] = None) -> List[str]:
        """Expire pending bookings whose hold window has run out."""
        now = ensure_utc(now or self._clock(), "now")
        cutoff = now - self._hold_window
        candidates = [b for b in self._storage.list_bookings(BookingStatus.PENDING) if b.created_at <= cutoff]
        return self._sweep(candidates, BookingStatus.PENDING, BookingEvent.EXPIRE, now)

    def mark_no_shows(self, now: Optional[datetime] = None) -> List[str]:
        """Close confirmed bookings whose check-in day ended without the guest arriving."""
        now = ensure_utc(now or self._clock(), "now")
        candidates = [
            b
            for b in self._storage.list_bookings(BookingStatus.CONFIRMED)
            if day_start(b.check_in) + timedelta(days=1) + self._no_show_grace <= now
        ]
        return self._sweep(candidates, BookingStatus.CONFIRMED, BookingEvent.NO_SHOW, now)

    def _sweep(
        self,
        candidates: List[Booking],
        expected: BookingStatus,
        event: BookingEvent,
        now: datetime,
    ) -> List[str]:
        swept: List[str] = []
        for candidate in candidates:
            try:
                with self._lock_for(candidate.id):
                    current = self._storage.load(candidate.id)
                    # changed since listing (cancelled, confirmed, already swept)
                    if current is None or current.status is not expected:
                        continue
                    updated = self._state_machine.apply(current, event, now, persist=self._save)
                    self._forget_lock(candidate.id)
            except AppError:
                logger.exception(
                    "Sweep failed for booking",
                    extra={"booking_id": candidate.id, "event": event.value},
                )
                continue
            swept.append(candidate.id)
            logger.info(
                "Booking swept",
                extra={"booking_id": candidate.id, "event": event.value, "status": updated.status.value},
            )
        return swept

    def _settle(
        self,
        booking: Booking,
        policy: CancellationPolicy,
        fraction: Decimal,
        at: datetime,
    ) -> RefundDecision:
        paid = booking.amount_paid
        decision = RefundDecision(
            booking_id=booking.id,
            fraction=fraction,
            amount=refund_amount(paid, fraction),
            policy_name=policy.name,
            days_before_check_in=days_before_check_in(booking.check_in, at),
        )
        if paid == ZERO or fraction == ZERO:
            return decision
        try:
            receipt = self._payments.refund(booking.id, fraction)
        except PaymentError:
            logger.exception("Refund settlement failed", extra={"booking_id": booking.id})
            return replace(decision, settlement=Settlement.FAILED)
        return replace(decision, settlement=Settlement.ISSUED, receipt=receipt)

    def _void(self, receipt: Receipt) -> None:
        try:
            self._payments.void(receipt)
        except PaymentError:
            logger.exception(
                "Void of orphaned charge failed",
                extra={"booking_id": receipt.booking_id, "receipt_id": receipt.id},
            )

    def _save(self, booking: Booking) -> None:
        try:
            self._storage.save(booking)
        except AppError:
            raise
        except Exception as exc:
            logger.exception("Booking could not be persisted", extra={"booking_id": booking.id})
            raise PersistenceError(f"booking {booking.id} could not be saved") from exc

    def _load(self, booking_id: str) -> Booking:
        booking = self._storage.load(booking_id)
        if not booking:
            raise BookingNotFoundError(booking_id)
        return booking

    def _get_accommodation(self, accommodation_id: str) -> Accommodation:
        accommodation = self._storage.get_accommodation(accommodation_id)
        if not accommodation:
            raise AccommodationNotFoundError(accommodation_id)
        return accommodation

    def _policy_for(self, booking: Booking) -> CancellationPolicy:
        accommodation = self._get_accommodation(booking.accommodation_id)
        policy = self._storage.get_policy(accommodation.cancellation_policy_id)
        if not policy:
            raise PolicyNotFoundError(accommodation.cancellation_policy_id)
        return policy

    def _lock_for(self, booking_id: str) -> Lock:
        with self._locks_guard:
            lock = self._booking_locks.get(booking_id)
            if lock is None:
                lock = Lock()
                self._booking_locks[booking_id] = lock
            return lock

    def _forget_lock(self, booking_id: str) -> None:
        # terminal bookings never change again, so their lock is not needed
        with self._locks_guard:
            self._booking_locks.pop(booking_id, None)

    def _validate_dates(self, check_in: date, check_out: date, now: datetime) -> None:
        if check_in >= check_out:
            raise InvalidDateRangeError("check_out must be after check_in", field="check_out")
        if check_in < now.date():
            raise InvalidDateRangeError("check_in must not be in the past", field="check_in")

    def _generate_booking_id(self) -> str:
        return f"bk_{uuid4().hex[:12]}"


def _price(accommodation: Accommodation, check_in: date, check_out: date) -> Decimal:
    return accommodation.price_per_night * (check_out - check_in).days
