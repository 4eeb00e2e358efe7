from __future__ import annotations

import calendar
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from .errors import NotFoundError, StaleAvailabilityError
from .models import DepartureDate, Tour
from .pricing import per_person_price


def is_bookable(tour: Tour, departure: DepartureDate, as_of: datetime, travelers: int = 1) -> bool:
    return (
        tour.is_active
        and departure.is_active
        and departure.available_spots > 0
        and departure.available_spots >= travelers
        and departure.start_date > as_of
    )


def list_bookable(tour: Tour, as_of: datetime) -> list[DepartureDate]:
    bookable = [departure for departure in tour.departures if is_bookable(tour, departure, as_of)]
    bookable.sort(key=lambda d: (d.start_date, d.id))
    return bookable


def resolve(tour: Tour, date_id: str) -> Optional[DepartureDate]:
    for departure in tour.departures:
        if departure.id == date_id:
            return departure
    return None


def is_available(tour: Tour, date_id: str, as_of: datetime, travelers: int = 1) -> bool:
    departure = resolve(tour, date_id)
    return departure is not None and is_bookable(tour, departure, as_of, travelers)


def require_bookable(tour: Tour, date_id: Optional[str], as_of: datetime, travelers: int = 1) -> DepartureDate:
    """Resolve ``date_id`` or raise.

    Unknown ids raise :class:`NotFoundError`; ids that exist but can no longer
    take ``travelers`` raise :class:`StaleAvailabilityError`.
    """
    departure = resolve(tour, date_id) if date_id else None
    if departure is None:
        raise NotFoundError("departure date not found")
    if not is_bookable(tour, departure, as_of, travelers):
        if departure.available_spots > 0 and departure.available_spots < travelers and departure.is_active:
            message = f"only {departure.available_spots} spots left for this date"
        else:
            message = "departure date is no longer available"
        raise StaleAvailabilityError(message, departure_id=departure.id)
    return departure


def saving_per_person(tour: Tour, departure: DepartureDate) -> Decimal:
    return tour.pricing.base_price - per_person_price(tour, departure)


def best_discount(tour: Tour, as_of: datetime) -> Optional[DepartureDate]:
    """Bookable departure with the largest per-person saving against the list price.

    Ties go to the earliest start date, then to the lowest id. Returns ``None``
    when no departure saves anything.
    """
    best: Optional[DepartureDate] = None
    best_saving = None
    for departure in list_bookable(tour, as_of):
        saving = saving_per_person(tour, departure)
        if saving <= 0:
            continue
        if best_saving is None or saving > best_saving:
            best, best_saving = departure, saving
    return best


def calendar_month(tour: Tour, year: int, month: int, as_of: datetime) -> dict[date, DepartureDate]:
    _, days_in_month = calendar.monthrange(year, month)
    first, last = date(year, month, 1), date(year, month, days_in_month)
    days: dict[date, DepartureDate] = {}
    for departure in list_bookable(tour, as_of):
        day = departure.start_date.date()
        if first <= day <= last and day not in days:
            days[day] = departure
    return days
