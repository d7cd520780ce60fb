from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse

from .config import Settings
from .errors import AppError, BadRequestError
from .payments import InMemoryPaymentGateway
from .policy import DEFAULT_POLICIES
from .scheduler import ExpirySweeper
from .schemas import (
    AvailabilityQuery,
    AvailabilityResponse,
    BookingCreateRequest,
    BookingModifyRequest,
    BookingResponse,
    CancelRequest,
    HeldRange,
    RefundResponse,
    StayEventRequest,
    SweepResponse,
)
from .service import ReservationCoordinator
from .storage import InMemoryBookingStorage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sweeper = None
    if settings.sweep_enabled:
        sweeper = ExpirySweeper(get_service(), interval_seconds=settings.sweep_interval_seconds)
        sweeper.start()
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.stop(timeout=5)


app = FastAPI(title="Booking Reservation API", version="1.0.0", lifespan=lifespan)


def get_settings() -> Settings:
    if not hasattr(get_settings, "_instance"):
        get_settings._instance = Settings()
    return get_settings._instance  # type: ignore[attr-defined]


def get_service() -> ReservationCoordinator:
    if not hasattr(get_service, "_instance"):
        settings = get_settings()
        policies = DEFAULT_POLICIES.values() if settings.seed_default_policies else ()
        storage = InMemoryBookingStorage(policies=policies)
        get_service._instance = ReservationCoordinator(
            storage=storage,
            payments=InMemoryPaymentGateway(),
            hold_window=timedelta(minutes=settings.hold_window_minutes),
            no_show_grace=timedelta(hours=settings.no_show_grace_hours),
        )
    return get_service._instance  # type: ignore[attr-defined]


@app.exception_handler(AppError)
async def handle_app_error(_: Request, exc: AppError) -> JSONResponse:
    logger.warning("Request failed", extra={"code": exc.code, "error_message": exc.message})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.post("/v1/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreateRequest,
    service: ReservationCoordinator = Depends(get_service),
) -> BookingResponse:
    booking = service.create_booking(
        guest_id=payload.guest_id,
        accommodation_id=payload.accommodation_id,
        check_in=payload.check_in,
        check_out=payload.check_out,
        guest_count=payload.guest_count,
    )
    return BookingResponse.from_domain(booking)


@app.get("/v1/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(booking_id: str, service: ReservationCoordinator = Depends(get_service)) -> BookingResponse:
    return BookingResponse.from_domain(service.get_booking(booking_id))


@app.patch("/v1/bookings/{booking_id}", response_model=BookingResponse)
async def modify_booking(
    booking_id: str,
    payload: BookingModifyRequest,
    service: ReservationCoordinator = Depends(get_service),
) -> BookingResponse:
    booking = service.modify_booking(booking_id, check_in=payload.check_in, check_out=payload.check_out)
    return BookingResponse.from_domain(booking)


@app.post("/v1/bookings/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(booking_id: str, service: ReservationCoordinator = Depends(get_service)) -> BookingResponse:
    return BookingResponse.from_domain(service.confirm_booking(booking_id))


@app.post("/v1/bookings/{booking_id}/check-in", response_model=BookingResponse)
async def check_in(
    booking_id: str,
    payload: Optional[StayEventRequest] = None,
    service: ReservationCoordinator = Depends(get_service),
) -> BookingResponse:
    at = payload.at if payload else None
    return BookingResponse.from_domain(service.check_in(booking_id, at))


@app.post("/v1/bookings/{booking_id}/check-out", response_model=BookingResponse)
async def check_out(
    booking_id: str,
    payload: Optional[StayEventRequest] = None,
    service: ReservationCoordinator = Depends(get_service),
) -> BookingResponse:
    at = payload.at if payload else None
    return BookingResponse.from_domain(service.check_out(booking_id, at))


@app.post("/v1/bookings/{booking_id}/cancel", response_model=RefundResponse)
async def cancel_booking(
    booking_id: str,
    payload: Optional[CancelRequest] = None,
    service: ReservationCoordinator = Depends(get_service),
) -> RefundResponse:
    at_time = payload.at_time if payload else None
    return RefundResponse.from_domain(service.cancel_booking(booking_id, at_time))


@app.get("/v1/accommodations/{accommodation_id}/availability", response_model=AvailabilityResponse)
async def get_availability(
    accommodation_id: str,
    query: AvailabilityQuery = Depends(),
    service: ReservationCoordinator = Depends(get_service),
) -> AvailabilityResponse:
    available = None
    if query.check_in is not None or query.check_out is not None:
        if query.check_in is None or query.check_out is None:
            raise BadRequestError("check_in and check_out must be given together", field="check_out")
        available = service.is_available(accommodation_id, query.check_in, query.check_out)
    held = [HeldRange.from_domain(token) for token in service.held_ranges(accommodation_id)]
    return AvailabilityResponse(accommodation_id=accommodation_id, available=available, held=held)


@app.post("/v1/maintenance/expire", response_model=SweepResponse)
async def run_sweep(service: ReservationCoordinator = Depends(get_service)) -> SweepResponse:
    result = ExpirySweeper(service).run_once()
    return SweepResponse(expired=result.expired, no_shows=result.no_shows)
