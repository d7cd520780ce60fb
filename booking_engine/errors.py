from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class AppError(Exception):
    code: str
    message: str
    status_code: int
    field: Optional[str] = None

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, str]:
        payload = {"code": self.code, "message": self.message}
        if self.field:
            payload["field"] = self.field
        return payload


class BadRequestError(AppError):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(code="BAD_REQUEST", message=message, status_code=400, field=field)


class InvalidDateRangeError(AppError):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(code="INVALID_DATE_RANGE", message=message, status_code=400, field=field)


class AccommodationNotFoundError(AppError):
    def __init__(self, accommodation_id: str):
        super().__init__(
            code="ACCOMMODATION_NOT_FOUND",
            message=f"accommodation {accommodation_id} not found",
            status_code=404,
        )


class BookingNotFoundError(AppError):
    def __init__(self, booking_id: str):
        super().__init__(code="BOOKING_NOT_FOUND", message=f"booking {booking_id} not found", status_code=404)


class PolicyNotFoundError(AppError):
    def __init__(self, policy_id: str):
        super().__init__(code="POLICY_NOT_FOUND", message=f"cancellation policy {policy_id} not found", status_code=404)


class RangeConflictError(AppError):
    """The requested dates overlap a range already held on the accommodation."""

    def __init__(self, message: str = "requested dates overlap an existing booking"):
        super().__init__(code="RANGE_CONFLICT", message=message, status_code=409)


class AlreadyTerminalError(AppError):
    def __init__(self, booking_id: str, status: str):
        super().__init__(
            code="ALREADY_TERMINAL",
            message=f"booking {booking_id} is already {status}",
            status_code=409,
        )


class AccommodationInUseError(AppError):
    def __init__(self, message: str):
        super().__init__(code="ACCOMMODATION_IN_USE", message=message, status_code=409)


class PolicyInUseError(AppError):
    def __init__(self, message: str):
        super().__init__(code="POLICY_IN_USE", message=message, status_code=409)


class IllegalTransitionError(AppError):
    """A status change outside the allowed edge table was requested."""

    def __init__(self, current: str, event: str):
        super().__init__(
            code="ILLEGAL_TRANSITION",
            message=f"cannot apply {event} to a booking in status {current}",
            status_code=409,
        )


class InvalidPolicyError(AppError):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(code="INVALID_POLICY", message=message, status_code=422, field=field)


class PaymentError(AppError):
    def __init__(self, message: str):
        super().__init__(code="PAYMENT_FAILED", message=message, status_code=402)


class PersistenceError(AppError):
    def __init__(self, message: str):
        super().__init__(code="PERSISTENCE_FAILED", message=message, status_code=503)
