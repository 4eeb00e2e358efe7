from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from .config import PricingLimits
from .errors import BadRequestError, InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class RefundStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    DECLINED = "declined"


class ExtraKind(str, Enum):
    ACTIVITY = "activity"
    ACCOMMODATION = "accommodation"


_ALLOWED_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW},
    BookingStatus.CANCELLED: set(),
    BookingStatus.COMPLETED: set(),
    BookingStatus.NO_SHOW: set(),
}


@dataclass
class TourPricing:
    base_price: Decimal
    currency: str = "USD"
    discount_percent: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        self.base_price = Decimal(self.base_price)
        self.discount_percent = Decimal(self.discount_percent)
        if self.base_price < 0:
            raise BadRequestError("base price cannot be negative", field="base_price")
        if not PricingLimits.MIN_DISCOUNT_PERCENT <= self.discount_percent <= PricingLimits.MAX_DISCOUNT_PERCENT:
            raise BadRequestError(
                f"discount must be between {PricingLimits.MIN_DISCOUNT_PERCENT} "
                f"and {PricingLimits.MAX_DISCOUNT_PERCENT} percent",
                field="discount_percent",
            )


@dataclass
class DepartureDate:
    id: str
    start_date: datetime
    end_date: datetime
    available_spots: int
    price_override: Optional[Decimal] = None
    is_active: bool = True

    def __post_init__(self) -> None:
        if self.available_spots < 0:
            raise BadRequestError("available spots cannot be negative", field="available_spots")
        if self.price_override is not None:
            self.price_override = Decimal(self.price_override)


@dataclass
class ExtraOffer:

    id: str
    name: str
    unit_price: Decimal
    kind: ExtraKind = ExtraKind.ACTIVITY
    currency: str = "USD"
    day: Optional[int] = None


@dataclass
class Tour:
    id: str
    name: str
    pricing: TourPricing
    departures: list[DepartureDate] = field(default_factory=list)
    extras: list[ExtraOffer] = field(default_factory=list)
    is_active: bool = True

    def find_extra(self, ref_id: str) -> Optional[ExtraOffer]:
        for offer in self.extras:
            if offer.id == ref_id:
                return offer
        return None


@dataclass(frozen=True)
class ExtraSelection:
    ref_id: str
    unit_price: Decimal
    currency: str
    traveler_count: int
    kind: ExtraKind = ExtraKind.ACTIVITY


@dataclass(frozen=True)
class Traveler:
    first_name: str
    last_name: str
    title: str = ""


@dataclass(frozen=True)
class ContactInfo:
    email: str
    phone: str
    address: str = ""
    city: str = ""
    country: str = ""
    postal_code: str = ""


@dataclass
class PriceBreakdown:
    base_price: Decimal
    discount_amount: Decimal
    extras_amount: Decimal
    taxes: Decimal
    total_price: Decimal
    currency: str


@dataclass
class Payment:
    method: str = "pending"
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: Optional[str] = None


@dataclass
class Cancellation:
    is_cancelled: bool = False
    cancelled_at: Optional[datetime] = None
    reason: Optional[str] = None
    refund_percent: int = 0
    refund_amount: Decimal = Decimal("0")
    refund_status: RefundStatus = RefundStatus.PENDING


@dataclass
class Booking:
    id: str
    booking_reference: str
    tour_id: str
    user_id: str
    departure_id: str
    start_date: datetime
    traveler_count: int
    travelers: list[Traveler]
    extras: list[ExtraSelection]
    contact_info: ContactInfo
    price: PriceBreakdown
    created_at: datetime
    payment: Payment = field(default_factory=Payment)
    status: BookingStatus = BookingStatus.PENDING
    cancellation: Cancellation = field(default_factory=Cancellation)
    updated_at: datetime = field(default_factory=utcnow)

    def transition(self, target: BookingStatus) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.status.value, target.value)
        self.status = target
        self.updated_at = utcnow()


@dataclass
class IdempotencyRecord:
    key: str
    booking_id: str
    fingerprint: str
    created_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class ReservationDraft:

    tour_id: str
    traveler_count: int = 1
    primary_traveler: Traveler = Traveler(first_name="", last_name="")
    selected_date_id: Optional[str] = None
    extras: tuple[ExtraSelection, ...] = ()
    accommodation_upgrade: Optional[ExtraSelection] = None
    contact_info: ContactInfo = ContactInfo(email="", phone="")
    arrival_option: str = "same-day"
    departure_option: str = "same-day"

    def priced_extras(self) -> list[ExtraSelection]:
        selections = list(self.extras)
        if self.accommodation_upgrade is not None:
            selections.append(self.accommodation_upgrade)
        return selections
