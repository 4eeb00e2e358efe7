from __future__ import annotations

import logging
import random
import time
from collections import Counter
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional, Tuple
from uuid import uuid4

from . import availability, refunds, rules
from .config import Settings
from .errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    PersistenceFailureError,
    StaleAvailabilityError,
)
from .models import (
    Booking,
    BookingStatus,
    IdempotencyRecord,
    PaymentStatus,
    RefundStatus,
    ReservationDraft,
    Tour,
)
from .pricing import catalog_extras, price_breakdown, reprice
from .storage import DuplicateReferenceError, InMemoryBookingStorage

logger = logging.getLogger(__name__)


def ensure_utc(dt: datetime, field: str) -> datetime:
    if dt.tzinfo is None:
        raise BadRequestError("timestamp must be timezone-aware", field=field)
    return dt.astimezone(timezone.utc)


def generate_reference(prefix: str = "NXT", now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{prefix}-{str(now_ms)[-8:]}-{random.randint(0, 999):03d}"


class BookingRecorder:
    def __init__(
        self,
        storage: InMemoryBookingStorage,
        settings: Optional[Settings] = None,
        reference_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._storage = storage
        self._settings = settings or Settings()
        self._reference_factory = reference_factory or (
            lambda: generate_reference(self._settings.reference_prefix)
        )

    def get_tour(self, tour_id: str) -> Tour:
        tour = self._storage.get_tour(tour_id)
        if not tour:
            raise NotFoundError("tour not found")
        return tour

    def submit(
        self,
        draft: ReservationDraft,
        *,
        user_id: str,
        idempotency_key: str | None = None,
        now: Optional[datetime] = None,
    ) -> Tuple[Booking, bool]:
        """Turn a completed draft into a pending booking.

        Returns the booking and whether it was created by this call; a replayed
        idempotency key returns the original booking with ``False``.
        """
        now = ensure_utc(now, "now") if now else datetime.now(timezone.utc)
        fingerprint = self._fingerprint(draft, user_id)

        replayed = self._replay(idempotency_key, fingerprint)
        if replayed:
            return replayed, False

        tour = self.get_tour(draft.tour_id)
        errors = (
            rules.traveler_errors(draft) + rules.extras_errors(draft) + rules.contact_errors(draft)
        )
        if errors:
            raise errors[0]
        departure = availability.require_bookable(
            tour, draft.selected_date_id, now, draft.traveler_count
        )
        extras = catalog_extras(tour, draft.priced_extras())
        breakdown = price_breakdown(tour, departure, draft.traveler_count, extras)

        with self._storage.lock:
            replayed = self._replay(idempotency_key, fingerprint)
            if replayed:
                return replayed, False
            if not self._storage.take_spots(tour.id, departure.id, draft.traveler_count, now):
                raise StaleAvailabilityError(
                    "departure date is no longer available", departure_id=departure.id
                )
            try:
                booking = self._insert_with_unique_reference(
                    lambda reference: Booking(
                        id=self._generate_booking_id(),
                        booking_reference=reference,
                        tour_id=tour.id,
                        user_id=user_id,
                        departure_id=departure.id,
                        start_date=departure.start_date,
                        traveler_count=draft.traveler_count,
                        travelers=[draft.primary_traveler],
                        extras=extras,
                        contact_info=draft.contact_info,
                        price=breakdown,
                        created_at=now,
                        updated_at=now,
                    )
                )
            except PersistenceFailureError:
                self._storage.release_spots(tour.id, departure.id, draft.traveler_count)
                raise

            if idempotency_key:
                self._storage.save_idempotency_record(
                    IdempotencyRecord(
                        key=idempotency_key,
                        booking_id=booking.id,
                        fingerprint=fingerprint,
                        created_at=now,
                        expires_at=now + timedelta(hours=self._settings.idempotency_ttl_hours),
                    )
                )

        logger.info(
            "Booking created",
            extra={
                "booking_id": booking.id,
                "booking_reference": booking.booking_reference,
                "tour_id": tour.id,
                "departure_id": departure.id,
                "travelers": draft.traveler_count,
                "total_price": str(breakdown.total_price),
            },
        )
        return booking, True

    def get_booking(self, booking_id: str) -> Booking:
        booking = self._storage.get_booking(booking_id)
        if not booking:
            raise NotFoundError("booking not found")
        return booking

    def list_bookings(
        self,
        *,
        user_id: str | None = None,
        status: BookingStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Booking], int]:
        bookings = [
            booking
            for booking in self._storage.list_bookings()
            if (user_id is None or booking.user_id == user_id)
            and (status is None or booking.status == status)
        ]
        bookings.sort(key=lambda b: b.created_at, reverse=True)
        total = len(bookings)
        start_index = (page - 1) * page_size
        return bookings[start_index : start_index + page_size], total

    def cancel_booking(
        self,
        booking_id: str,
        *,
        requested_at: Optional[datetime] = None,
        reason: str | None = None,
    ) -> Booking:
        requested_at = ensure_utc(requested_at, "requested_at") if requested_at else datetime.now(timezone.utc)
        with self._storage.lock:
            booking = self.get_booking(booking_id)
            if booking.status == BookingStatus.CANCELLED:
                raise ConflictError("booking is already cancelled")
            booking.transition(BookingStatus.CANCELLED)
            booking.cancellation = replace(
                booking.cancellation,
                is_cancelled=True,
                cancelled_at=requested_at,
                reason=reason or "Cancelled by user",
                refund_percent=refunds.refund_percent(booking.start_date, requested_at),
                refund_amount=refunds.refund_amount(booking, requested_at),
                refund_status=RefundStatus.PENDING,
            )
            self._storage.save_booking(booking)
            self._storage.release_spots(booking.tour_id, booking.departure_id, booking.traveler_count)

        logger.info(
            "Booking cancelled",
            extra={
                "booking_id": booking.id,
                "refund_percent": booking.cancellation.refund_percent,
                "refund_amount": str(booking.cancellation.refund_amount),
            },
        )
        return booking

    def record_payment(
        self,
        booking_id: str,
        *,
        status: PaymentStatus,
        method: str | None = None,
        transaction_id: str | None = None,
    ) -> Booking:
        with self._storage.lock:
            booking = self.get_booking(booking_id)
            if booking.status == BookingStatus.CANCELLED and status == PaymentStatus.PAID:
                raise ConflictError("cannot take payment for a cancelled booking")
            booking.payment = replace(
                booking.payment,
                status=status,
                method=method or booking.payment.method,
                transaction_id=transaction_id or booking.payment.transaction_id,
            )
            booking.updated_at = datetime.now(timezone.utc)
            self._storage.save_booking(booking)
        logger.info("Payment recorded", extra={"booking_id": booking.id, "payment_status": status.value})
        return booking

    def confirm_booking(self, booking_id: str) -> Booking:
        with self._storage.lock:
            booking = self.get_booking(booking_id)
            if booking.payment.status != PaymentStatus.PAID:
                raise BadRequestError("payment must be completed before confirming booking", field="payment")
            return self._move(booking, BookingStatus.CONFIRMED)

    def complete_booking(self, booking_id: str) -> Booking:
        with self._storage.lock:
            return self._move(self.get_booking(booking_id), BookingStatus.COMPLETED)

    def mark_no_show(self, booking_id: str) -> Booking:
        with self._storage.lock:
            return self._move(self.get_booking(booking_id), BookingStatus.NO_SHOW)

    def reprice_booking(
        self,
        booking_id: str,
        *,
        base_price: Decimal | None = None,
        discount_amount: Decimal | None = None,
        taxes: Decimal | None = None,
    ) -> Booking:
        with self._storage.lock:
            booking = self.get_booking(booking_id)
            if booking.status != BookingStatus.PENDING:
                raise ConflictError("only pending bookings can be repriced")
            try:
                booking.price = reprice(
                    booking.price,
                    booking.traveler_count,
                    base_price=base_price,
                    discount_amount=discount_amount,
                    taxes=taxes,
                )
            except ValueError as exc:
                raise BadRequestError(str(exc), field="price") from exc
            booking.updated_at = datetime.now(timezone.utc)
            self._storage.save_booking(booking)
        logger.info(
            "Booking repriced",
            extra={"booking_id": booking.id, "total_price": str(booking.price.total_price)},
        )
        return booking

    def booking_stats(self) -> dict:
        bookings = self._storage.list_bookings()
        by_status = Counter(booking.status.value for booking in bookings)
        revenue_by_status: dict[str, Decimal] = {}
        for booking in bookings:
            key = booking.status.value
            revenue_by_status[key] = revenue_by_status.get(key, Decimal("0")) + booking.price.total_price
        total_revenue = sum(revenue_by_status.values(), Decimal("0"))
        monthly: dict[tuple[int, int], dict] = {}
        for booking in bookings:
            month = (booking.created_at.year, booking.created_at.month)
            entry = monthly.setdefault(month, {"year": month[0], "month": month[1], "bookings": 0, "revenue": Decimal("0")})
            entry["bookings"] += 1
            entry["revenue"] += booking.price.total_price
        return {
            "total_bookings": len(bookings),
            "total_revenue": total_revenue,
            "average_booking_value": (total_revenue / len(bookings)).quantize(Decimal("0.01"))
            if bookings
            else Decimal("0"),
            "by_status": dict(by_status),
            "revenue_by_status": revenue_by_status,
            # Most recent twelve months that have bookings, newest first.
            "monthly_stats": [monthly[month] for month in sorted(monthly, reverse=True)[:12]],
        }

    def _move(self, booking: Booking, target: BookingStatus) -> Booking:
        previous = booking.status
        booking.transition(target)
        self._storage.save_booking(booking)
        logger.info(
            "Booking status changed",
            extra={"booking_id": booking.id, "from_status": previous.value, "to_status": target.value},
        )
        return booking

    def _insert_with_unique_reference(self, build: Callable[[str], Booking]) -> Booking:
        for attempt in range(1, self._settings.reference_retries + 1):
            booking = build(self._reference_factory())
            try:
                self._storage.insert_booking(booking)
                return booking
            except DuplicateReferenceError as exc:
                logger.warning(
                    "Booking reference collision",
                    extra={"booking_reference": exc.reference, "attempt": attempt},
                )
            except Exception as exc:
                logger.error("Booking insert failed", extra={"error": repr(exc)})
                raise PersistenceFailureError() from exc
        raise PersistenceFailureError("could not allocate a unique booking reference, please retry")

    def _replay(self, idempotency_key: str | None, fingerprint: str) -> Optional[Booking]:
        if not idempotency_key:
            return None
        record = self._storage.get_idempotency_record(idempotency_key)
        if record and record.fingerprint != fingerprint:
            raise ConflictError("idempotency key already used with different parameters")
        if record:
            return self._storage.get_booking(record.booking_id)
        return None

    def _generate_booking_id(self) -> str:
        return f"bkg_{uuid4().hex[:12]}"

    def _fingerprint(self, draft: ReservationDraft, user_id: str) -> str:
        extras = ",".join(
            f"{extra.ref_id}:{extra.traveler_count}" for extra in sorted(draft.priced_extras(), key=lambda e: e.ref_id)
        )
        return "|".join(
            [
                user_id,
                draft.tour_id,
                draft.selected_date_id or "",
                str(draft.traveler_count),
                draft.primary_traveler.first_name,
                draft.primary_traveler.last_name,
                extras,
                draft.contact_info.email,
            ]
        )
