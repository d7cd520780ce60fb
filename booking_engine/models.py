from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Sequence, Tuple, Union
from uuid import uuid4

from .errors import InvalidPolicyError

Fraction = Union[Decimal, float, int, str]

ZERO = Decimal("0")
ONE = Decimal("1")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def day_start(day: date) -> datetime:
    """Check-in/check-out dates turn over at 00:00 UTC."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def to_fraction(value: Fraction) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    NO_SHOW = "no_show"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def blocks_availability(self) -> bool:
        return self in BLOCKING_STATUSES


TERMINAL_STATUSES = frozenset(
    {BookingStatus.CANCELLED, BookingStatus.EXPIRED, BookingStatus.NO_SHOW, BookingStatus.CHECKED_OUT}
)
BLOCKING_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN})


class AccommodationTier(str, Enum):
    REGULAR = "regular"
    PRIME = "prime"


class ReceiptKind(str, Enum):
    CHARGE = "charge"
    REFUND = "refund"
    VOID = "void"


class Settlement(str, Enum):
    ISSUED = "issued"
    NOT_REQUIRED = "not_required"
    FAILED = "failed"


@dataclass(frozen=True)
class RefundTier:
    days_before: int
    fraction: Decimal


@dataclass(frozen=True)
class CancellationPolicy:
    id: str
    name: str
    description: str = ""
    tiers: Tuple[RefundTier, ...] = ()
    default_fraction: Decimal = ZERO
    grace_period: Optional[timedelta] = None
    grace_min_lead: timedelta = timedelta(0)
    prorate_after_checkin: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise InvalidPolicyError("policy name is required", field="name")
        tiers = tuple(RefundTier(int(t.days_before), to_fraction(t.fraction)) for t in self.tiers)
        default_fraction = to_fraction(self.default_fraction)
        for tier in tiers:
            if tier.days_before < 0:
                raise InvalidPolicyError("tier thresholds must be non-negative", field="tiers")
            if not ZERO <= tier.fraction <= ONE:
                raise InvalidPolicyError("refund fractions must be within [0, 1]", field="tiers")
        for previous, current in zip(tiers, tiers[1:]):
            if current.days_before >= previous.days_before:
                raise InvalidPolicyError("tier thresholds must be strictly descending", field="tiers")
            if current.fraction > previous.fraction:
                raise InvalidPolicyError("refund fractions must not increase as check-in nears", field="tiers")
        if not ZERO <= default_fraction <= ONE:
            raise InvalidPolicyError("default fraction must be within [0, 1]", field="default_fraction")
        if tiers and default_fraction > tiers[-1].fraction:
            raise InvalidPolicyError(
                "default fraction must not exceed the last tier's fraction", field="default_fraction"
            )
        if self.grace_period is not None and self.grace_period <= timedelta(0):
            raise InvalidPolicyError("grace period must be positive", field="grace_period")
        object.__setattr__(self, "tiers", tiers)
        object.__setattr__(self, "default_fraction", default_fraction)

    @classmethod
    def build(
        cls,
        name: str,
        tiers: Sequence[Tuple[int, Fraction]] = (),
        default_fraction: Fraction = ZERO,
        *,
        policy_id: Optional[str] = None,
        description: str = "",
        grace_period: Optional[timedelta] = None,
        grace_min_lead: timedelta = timedelta(0),
        prorate_after_checkin: bool = False,
    ) -> "CancellationPolicy":
        return cls(
            id=policy_id or f"pol_{uuid4().hex[:12]}",
            name=name,
            description=description,
            tiers=tuple(RefundTier(days, to_fraction(fraction)) for days, fraction in tiers),
            default_fraction=to_fraction(default_fraction),
            grace_period=grace_period,
            grace_min_lead=grace_min_lead,
            prorate_after_checkin=prorate_after_checkin,
        )


@dataclass
class Accommodation:
    id: str
    property_id: str
    price_per_night: Decimal
    max_guest_count: int
    cancellation_policy_id: str
    tier: AccommodationTier = AccommodationTier.REGULAR
    description: Optional[str] = None


@dataclass(frozen=True)
class ReservationToken:
    id: str
    accommodation_id: str
    check_in: date
    check_out: date


@dataclass(frozen=True)
class Receipt:
    id: str
    booking_id: str
    amount: Decimal
    kind: ReceiptKind
    created_at: datetime


@dataclass
class Booking:
    id: str
    guest_id: str
    accommodation_id: str
    check_in: date
    check_out: date
    status: BookingStatus
    created_at: datetime
    total_price: Decimal = ZERO
    guest_count: int = 1
    reservation_token: Optional[ReservationToken] = None
    payment_receipt: Optional[Receipt] = None
    confirmed_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    checked_out_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days

    @property
    def amount_paid(self) -> Decimal:
        if self.payment_receipt is None:
            return ZERO
        return self.payment_receipt.amount


@dataclass(frozen=True)
class RefundDecision:
    booking_id: str
    fraction: Decimal
    amount: Decimal
    policy_name: str
    days_before_check_in: int
    settlement: Settlement = Settlement.NOT_REQUIRED
    receipt: Optional[Receipt] = None
