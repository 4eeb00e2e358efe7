from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request, Response, status
from fastapi.responses import JSONResponse

from . import availability, pricing, rules
from .config import Settings
from .errors import AppError, BadRequestError, NotFoundError
from .models import BookingStatus
from .recorder import BookingRecorder
from .schemas import (
    BookingCreateRequest,
    BookingCreatedResponse,
    BookingListQuery,
    BookingResponse,
    BookingsListResponse,
    BookingStatsResponse,
    CalendarResponse,
    CancelRequest,
    DepartureResponse,
    DeparturesListResponse,
    DraftPayload,
    PaymentUpdateRequest,
    PriceResponse,
    QuoteResponse,
    RefundResponse,
    RepriceRequest,
    TourResponse,
)
from .storage import InMemoryBookingStorage

settings = Settings.from_env()
logging.basicConfig(level=settings.log_level)

app = FastAPI(title="Tour Reservation API", version="1.0.0")


def get_recorder() -> BookingRecorder:
    if not hasattr(get_recorder, "_instance"):
        storage = InMemoryBookingStorage()
        get_recorder._instance = BookingRecorder(storage=storage, settings=settings)
    return get_recorder._instance  # type: ignore[attr-defined]


def get_user_id(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> str:
    if not x_user_id:
        raise BadRequestError("X-User-Id header is required", field="X-User-Id")
    return x_user_id


@app.exception_handler(AppError)
async def handle_app_error(_: Request, exc: AppError) -> JSONResponse:
    logging.getLogger(__name__).warning("Request failed", extra={"code": exc.code, "error_message": exc.message})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/v1/tours/{tour_id}", response_model=TourResponse)
async def get_tour(tour_id: str, recorder: BookingRecorder = Depends(get_recorder)) -> TourResponse:
    return TourResponse.from_domain(recorder.get_tour(tour_id))


@app.get("/v1/tours/{tour_id}/departures", response_model=DeparturesListResponse)
async def list_departures(tour_id: str, recorder: BookingRecorder = Depends(get_recorder)) -> DeparturesListResponse:
    tour = recorder.get_tour(tour_id)
    bookable = availability.list_bookable(tour, datetime.now(timezone.utc))
    items = [DepartureResponse.from_domain(d, pricing.per_person_price(tour, d)) for d in bookable]
    return DeparturesListResponse(items=items, total=len(items))


@app.get("/v1/tours/{tour_id}/departures/best-price", response_model=DepartureResponse)
async def best_price(tour_id: str, recorder: BookingRecorder = Depends(get_recorder)) -> DepartureResponse:
    tour = recorder.get_tour(tour_id)
    departure = availability.best_discount(tour, datetime.now(timezone.utc))
    if departure is None:
        raise NotFoundError("no discounted departure available")
    return DepartureResponse.from_domain(departure, pricing.per_person_price(tour, departure))


@app.get("/v1/tours/{tour_id}/calendar", response_model=CalendarResponse)
async def tour_calendar(
    tour_id: str,
    year: int = Query(..., ge=1970),
    month: int = Query(..., ge=1, le=12),
    recorder: BookingRecorder = Depends(get_recorder),
) -> CalendarResponse:
    tour = recorder.get_tour(tour_id)
    days = availability.calendar_month(tour, year, month, datetime.now(timezone.utc))
    return CalendarResponse(
        year=year,
        month=month,
        days={day: DepartureResponse.from_domain(d, pricing.per_person_price(tour, d)) for day, d in days.items()},
    )


@app.post("/v1/tours/{tour_id}/quote", response_model=QuoteResponse)
async def quote_draft(
    tour_id: str,
    payload: DraftPayload,
    recorder: BookingRecorder = Depends(get_recorder),
) -> QuoteResponse:
    tour = recorder.get_tour(tour_id)
    draft = payload.to_draft(tour_id)
    errors = rules.extras_errors(draft)
    if errors:
        raise errors[0]
    departure = None
    if draft.selected_date_id:
        departure = availability.resolve(tour, draft.selected_date_id)
        if departure is None:
            raise NotFoundError("departure date not found")
    extras = pricing.catalog_extras(tour, draft.priced_extras())
    return QuoteResponse(
        per_person_price=pricing.per_person_price(tour, departure),
        extras_total=pricing.extras_total(extras),
        grand_total=pricing.grand_total(tour, departure, draft.traveler_count, extras),
        currency=tour.pricing.currency,
    )


@app.post("/v1/bookings", response_model=BookingCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreateRequest,
    response: Response,
    recorder: BookingRecorder = Depends(get_recorder),
    user_id: str = Depends(get_user_id),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
) -> BookingCreatedResponse:
    booking, created = recorder.submit(
        payload.to_draft(payload.tour_id),
        user_id=user_id,
        idempotency_key=idempotency_key,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return BookingCreatedResponse(
        id=booking.id,
        booking_reference=booking.booking_reference,
        status=booking.status.value,
        price=PriceResponse.from_domain(booking.price),
    )


@app.get("/v1/bookings", response_model=BookingsListResponse)
async def list_bookings(
    query: BookingListQuery = Depends(),
    recorder: BookingRecorder = Depends(get_recorder),
    user_id: str = Depends(get_user_id),
) -> BookingsListResponse:
    try:
        booking_status = BookingStatus(query.status) if query.status else None
    except ValueError as exc:
        raise BadRequestError("unsupported booking status", field="status") from exc
    bookings, total = recorder.list_bookings(
        user_id=user_id, status=booking_status, page=query.page, page_size=query.page_size
    )
    items = [BookingResponse.from_domain(booking) for booking in bookings]
    return BookingsListResponse(items=items, page=query.page, page_size=query.page_size, total=total)


@app.get("/v1/bookings/stats", response_model=BookingStatsResponse)
async def booking_stats(recorder: BookingRecorder = Depends(get_recorder)) -> BookingStatsResponse:
    return BookingStatsResponse(**recorder.booking_stats())


@app.get("/v1/bookings/{booking_id}", response_model=BookingResponse)
async def get_booking(booking_id: str, recorder: BookingRecorder = Depends(get_recorder)) -> BookingResponse:
    return BookingResponse.from_domain(recorder.get_booking(booking_id))


@app.post("/v1/bookings/{booking_id}/cancel", response_model=RefundResponse)
async def cancel_booking(
    booking_id: str,
    payload: CancelRequest,
    recorder: BookingRecorder = Depends(get_recorder),
) -> RefundResponse:
    booking = recorder.cancel_booking(booking_id, requested_at=payload.requested_at, reason=payload.reason)
    return RefundResponse(
        booking_id=booking.id,
        refund_percent=booking.cancellation.refund_percent,
        refund_amount=booking.cancellation.refund_amount,
        refund_status=booking.cancellation.refund_status.value,
    )


@app.post("/v1/bookings/{booking_id}/payment", response_model=BookingResponse)
async def record_payment(
    booking_id: str,
    payload: PaymentUpdateRequest,
    recorder: BookingRecorder = Depends(get_recorder),
) -> BookingResponse:
    booking = recorder.record_payment(
        booking_id, status=payload.status, method=payload.method, transaction_id=payload.transaction_id
    )
    return BookingResponse.from_domain(booking)


@app.post("/v1/bookings/{booking_id}/reprice", response_model=BookingResponse)
async def reprice_booking(
    booking_id: str,
    payload: RepriceRequest,
    recorder: BookingRecorder = Depends(get_recorder),
) -> BookingResponse:
    booking = recorder.reprice_booking(
        booking_id,
        base_price=payload.base_price,
        discount_amount=payload.discount_amount,
        taxes=payload.taxes,
    )
    return BookingResponse.from_domain(booking)


@app.post("/v1/bookings/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(booking_id: str, recorder: BookingRecorder = Depends(get_recorder)) -> BookingResponse:
    return BookingResponse.from_domain(recorder.confirm_booking(booking_id))


@app.post("/v1/bookings/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(booking_id: str, recorder: BookingRecorder = Depends(get_recorder)) -> BookingResponse:
    return BookingResponse.from_domain(recorder.complete_booking(booking_id))


@app.post("/v1/bookings/{booking_id}/no-show", response_model=BookingResponse)
async def mark_no_show(booking_id: str, recorder: BookingRecorder = Depends(get_recorder)) -> BookingResponse:
    return BookingResponse.from_domain(recorder.mark_no_show(booking_id))
