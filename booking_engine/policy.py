"""Refund computation for cancellation policies.

Everything here is pure: no storage, no clock, no logging.
"""

from __future__ import annotations

import math
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional

from .errors import BadRequestError
from .models import ONE, ZERO, CancellationPolicy, day_start

CENTS = Decimal("0.01")


def days_before_check_in(check_in: date, cancellation_time: datetime) -> int:
    """Whole days between the cancellation and the check-in boundary, floored."""
    if cancellation_time.tzinfo is None:
        raise BadRequestError("cancellation time must be timezone-aware", field="at_time")
    delta = day_start(check_in) - cancellation_time.astimezone(timezone.utc)
    return math.floor(delta / timedelta(days=1))


def evaluate(
    policy: CancellationPolicy,
    check_in: date,
    cancellation_time: datetime,
    *,
    booked_at: Optional[datetime] = None,
    check_out: Optional[date] = None,
) -> Decimal:
    days_before = days_before_check_in(check_in, cancellation_time)
    if cancellation_time >= day_start(check_in):
        if policy.prorate_after_checkin and check_out is not None:
            return evaluate_stay_interrupted(check_in, check_out, cancellation_time)
        return ZERO

    if booked_at is not None and _within_grace(policy, check_in, cancellation_time, booked_at):
        return ONE

    for tier in policy.tiers:
        if days_before >= tier.days_before:
            return tier.fraction
    return policy.default_fraction


def evaluate_stay_interrupted(check_in: date, check_out: date, cancellation_time: datetime) -> Decimal:
    """Pro-rated refund of the nights not yet started when the stay was cut short."""
    total_nights = (check_out - check_in).days
    if total_nights <= 0:
        return ZERO
    at = cancellation_time.astimezone(timezone.utc)
    # the night in progress is consumed
    first_unused = at.date() + timedelta(days=1)
    if first_unused < check_in:
        first_unused = check_in
    unused = max(0, (check_out - first_unused).days)
    return (Decimal(unused) / Decimal(total_nights)).quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)


def refund_amount(amount_paid: Decimal, fraction: Decimal) -> Decimal:
    return (amount_paid * fraction).quantize(CENTS, rounding=ROUND_HALF_UP)


def _within_grace(
    policy: CancellationPolicy, check_in: date, cancellation_time: datetime, booked_at: datetime
) -> bool:
    if policy.grace_period is None:
        return False
    if cancellation_time - booked_at > policy.grace_period:
        return False
    return day_start(check_in) - cancellation_time >= policy.grace_min_lead


def _catalog() -> Dict[str, CancellationPolicy]:
    policies = [
        CancellationPolicy.build(
            "Flexible - 1 Day",
            [(1, 1)],
            policy_id="flexible-1-day",
            description="Full refund up to 1 day before check-in. No refund for later cancellations.",
        ),
        CancellationPolicy.build(
            "Flexible - Same Day",
            [(0, 1)],
            policy_id="flexible-same-day",
            description="Full refund any time before check-in.",
        ),
        CancellationPolicy.build(
            "Moderate - 3 Days",
            [(3, 1)],
            "0.5",
            policy_id="moderate-3-days",
            description="Full refund up to 3 days before check-in. 50% refund within 3 days.",
        ),
        CancellationPolicy.build(
            "Moderate - 5 Days",
            [(5, 1)],
            "0.5",
            policy_id="moderate-5-days",
            description="Full refund up to 5 days before check-in. 50% refund within 5 days.",
        ),
        CancellationPolicy.build(
            "Strict - 7 Days",
            [(7, "0.5")],
            policy_id="strict-7-days",
            description="50% refund up to 7 days before check-in. No refund within 7 days.",
        ),
        CancellationPolicy.build(
            "Strict - 14 Days",
            [(14, "0.5")],
            policy_id="strict-14-days",
            description="50% refund up to 14 days before check-in. No refund within 14 days.",
        ),
        CancellationPolicy.build(
            "Non-refundable",
            policy_id="non-refundable",
            description="No refund, regardless of cancellation time.",
        ),
        CancellationPolicy.build(
            "Fully Refundable - 48h After Booking",
            policy_id="refundable-48h",
            description="Full refund within 48 hours of booking if check-in is at least 14 days away.",
            grace_period=timedelta(hours=48),
            grace_min_lead=timedelta(days=14),
        ),
        CancellationPolicy.build(
            "Business Traveler Policy",
            [(1, 1)],
            policy_id="business-traveler",
            description="Full refund up to 24 hours before check-in.",
        ),
        CancellationPolicy.build(
            "Last-Minute Grace",
            policy_id="last-minute-grace",
            description="Full refund within 2 hours of booking and at least 48 hours before check-in.",
            grace_period=timedelta(hours=2),
            grace_min_lead=timedelta(hours=48),
        ),
        CancellationPolicy.build(
            "Tiered Refund Policy",
            [(10, "0.75"), (5, "0.5")],
            policy_id="tiered",
            description="75% refund up to 10 days before check-in, 50% up to 5 days, none afterward.",
        ),
        CancellationPolicy.build(
            "Stay Interrupted",
            policy_id="stay-interrupted",
            description="Pro-rated refund if the stay is cut short.",
            prorate_after_checkin=True,
        ),
    ]
    return {policy.name: policy for policy in policies}


DEFAULT_POLICIES: Dict[str, CancellationPolicy] = _catalog()
