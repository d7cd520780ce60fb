from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import Booking, RefundDecision, ReservationToken


class BookingCreateRequest(BaseModel):
    guest_id: str = Field(..., min_length=1)
    accommodation_id: str = Field(..., min_length=1)
    check_in: date
    check_out: date
    guest_count: int = Field(default=1, ge=1)


class BookingModifyRequest(BaseModel):
    check_in: date
    check_out: date


class CancelRequest(BaseModel):
    at_time: Optional[datetime] = None


class StayEventRequest(BaseModel):
    at: Optional[datetime] = None


class BookingResponse(BaseModel):
    id: str
    status: str
    guest_id: str
    accommodation_id: str
    check_in: date
    check_out: date
    guest_count: int
    total_price: Decimal
    amount_paid: Decimal
    created_at: datetime
    updated_at: datetime
    cancelled_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            status=booking.status.value,
            guest_id=booking.guest_id,
            accommodation_id=booking.accommodation_id,
            check_in=booking.check_in,
            check_out=booking.check_out,
            guest_count=booking.guest_count,
            total_price=booking.total_price,
            amount_paid=booking.amount_paid,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
            cancelled_at=booking.cancelled_at,
        )


class RefundResponse(BaseModel):
    booking_id: str
    refund_fraction: Decimal
    refund_amount: Decimal
    policy_name: str
    days_before_check_in: int
    settlement: str

    @classmethod
    def from_domain(cls, decision: RefundDecision) -> "RefundResponse":
        return cls(
            booking_id=decision.booking_id,
            refund_fraction=decision.fraction,
            refund_amount=decision.amount,
            policy_name=decision.policy_name,
            days_before_check_in=decision.days_before_check_in,
            settlement=decision.settlement.value,
        )


class HeldRange(BaseModel):
    check_in: date
    check_out: date

    @classmethod
    def from_domain(cls, token: ReservationToken) -> "HeldRange":
        return cls(check_in=token.check_in, check_out=token.check_out)


class AvailabilityQuery(BaseModel):
    check_in: Optional[date] = None
    check_out: Optional[date] = None


class AvailabilityResponse(BaseModel):
    accommodation_id: str
    available: Optional[bool] = None
    held: List[HeldRange]


class SweepResponse(BaseModel):
    expired: List[str]
    no_shows: List[str]
