from __future__ import annotations

from datetime import datetime, timezone
from threading import RLock
from typing import Dict, Optional

from .models import Booking, IdempotencyRecord, Tour


class DuplicateReferenceError(Exception):
    def __init__(self, reference: str) -> None:
        super().__init__(f"booking reference {reference} already exists")
        self.reference = reference


class InMemoryBookingStorage:
    """Thread-safe in-memory storage for tours, bookings and related metadata.

    Seat counters are only changed through :meth:`take_spots` and
    :meth:`release_spots`, which check and write under one lock.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._tours: Dict[str, Tour] = {}
        self._bookings: Dict[str, Booking] = {}
        self._references: Dict[str, str] = {}
        self._idempotency: Dict[str, IdempotencyRecord] = {}

    @property
    def lock(self) -> RLock:
        return self._lock

    def save_tour(self, tour: Tour) -> None:
        with self._lock:
            self._tours[tour.id] = tour

    def get_tour(self, tour_id: str) -> Optional[Tour]:
        with self._lock:
            return self._tours.get(tour_id)

    def take_spots(self, tour_id: str, departure_id: str, count: int, as_of: datetime) -> bool:
        """Decrement a departure's spots only if it can still take ``count`` travelers."""
        with self._lock:
            tour = self._tours.get(tour_id)
            if tour is None or not tour.is_active:
                return False
            for departure in tour.departures:
                if departure.id != departure_id:
                    continue
                if not departure.is_active or departure.start_date <= as_of:
                    return False
                if departure.available_spots < count:
                    return False
                departure.available_spots -= count
                return True
            return False

    def release_spots(self, tour_id: str, departure_id: str, count: int) -> None:
        with self._lock:
            tour = self._tours.get(tour_id)
            if tour is None:
                return
            for departure in tour.departures:
                if departure.id == departure_id:
                    departure.available_spots += count
                    return

    def insert_booking(self, booking: Booking) -> None:
        with self._lock:
            if booking.booking_reference in self._references:
                raise DuplicateReferenceError(booking.booking_reference)
            self._bookings[booking.id] = booking
            self._references[booking.booking_reference] = booking.id

    def save_booking(self, booking: Booking) -> None:
        with self._lock:
            self._bookings[booking.id] = booking

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        with self._lock:
            return self._bookings.get(booking_id)

    def get_booking_by_reference(self, reference: str) -> Optional[Booking]:
        with self._lock:
            booking_id = self._references.get(reference)
            return self._bookings.get(booking_id) if booking_id else None

    def list_bookings(self) -> list[Booking]:
        with self._lock:
            return list(self._bookings.values())

    def get_idempotency_record(self, key: str) -> Optional[IdempotencyRecord]:
        with self._lock:
            record = self._idempotency.get(key)
            if record and record.expires_at <= datetime.now(timezone.utc):
                del self._idempotency[key]
                return None
            return record

    def save_idempotency_record(self, record: IdempotencyRecord) -> None:
        with self._lock:
            self._idempotency[record.key] = record
