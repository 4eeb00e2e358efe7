from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .models import (
    Booking,
    ContactInfo,
    DepartureDate,
    ExtraKind,
    ExtraOffer,
    ExtraSelection,
    PaymentStatus,
    PriceBreakdown,
    ReservationDraft,
    Tour,
    TourPricing,
    Traveler,
)


class TravelerPayload(BaseModel):
    title: str = ""
    first_name: str = ""
    last_name: str = ""


class ContactInfoPayload(BaseModel):
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    country: str = ""
    postal_code: str = ""


class ExtraSelectionPayload(BaseModel):
    ref_id: str = Field(..., min_length=1)
    traveler_count: int = Field(..., ge=0)
    unit_price: Decimal = Decimal("0")
    currency: str = "USD"
    kind: ExtraKind = ExtraKind.ACTIVITY

    def to_domain(self) -> ExtraSelection:
        return ExtraSelection(
            ref_id=self.ref_id,
            unit_price=self.unit_price,
            currency=self.currency,
            traveler_count=self.traveler_count,
            kind=self.kind,
        )

    @classmethod
    def from_domain(cls, extra: ExtraSelection) -> "ExtraSelectionPayload":
        return cls(
            ref_id=extra.ref_id,
            traveler_count=extra.traveler_count,
            unit_price=extra.unit_price,
            currency=extra.currency,
            kind=extra.kind,
        )


class DraftPayload(BaseModel):
    selected_date_id: Optional[str] = None
    traveler_count: int = Field(default=1, ge=0)
    primary_traveler: TravelerPayload = Field(default_factory=TravelerPayload)
    extras: List[ExtraSelectionPayload] = Field(default_factory=list)
    accommodation_upgrade: Optional[ExtraSelectionPayload] = None
    contact_info: ContactInfoPayload = Field(default_factory=ContactInfoPayload)
    arrival_option: str = "same-day"
    departure_option: str = "same-day"

    def to_draft(self, tour_id: str) -> ReservationDraft:
        # Zero-count selections are not part of a draft.
        extras = tuple(extra.to_domain() for extra in self.extras if extra.traveler_count > 0)
        upgrade = self.accommodation_upgrade
        return ReservationDraft(
            tour_id=tour_id,
            traveler_count=self.traveler_count,
            primary_traveler=Traveler(**self.primary_traveler.model_dump()),
            selected_date_id=self.selected_date_id,
            extras=extras,
            accommodation_upgrade=upgrade.to_domain() if upgrade and upgrade.traveler_count > 0 else None,
            contact_info=ContactInfo(**self.contact_info.model_dump()),
            arrival_option=self.arrival_option,
            departure_option=self.departure_option,
        )


class BookingCreateRequest(DraftPayload):
    tour_id: str = Field(..., min_length=1)

    @classmethod
    def from_draft(cls, draft: ReservationDraft) -> "BookingCreateRequest":
        upgrade = draft.accommodation_upgrade
        return cls(
            tour_id=draft.tour_id,
            selected_date_id=draft.selected_date_id,
            traveler_count=draft.traveler_count,
            primary_traveler=TravelerPayload(
                title=draft.primary_traveler.title,
                first_name=draft.primary_traveler.first_name,
                last_name=draft.primary_traveler.last_name,
            ),
            extras=[ExtraSelectionPayload.from_domain(extra) for extra in draft.extras],
            accommodation_upgrade=ExtraSelectionPayload.from_domain(upgrade) if upgrade else None,
            contact_info=ContactInfoPayload(
                email=draft.contact_info.email,
                phone=draft.contact_info.phone,
                address=draft.contact_info.address,
                city=draft.contact_info.city,
                country=draft.contact_info.country,
                postal_code=draft.contact_info.postal_code,
            ),
            arrival_option=draft.arrival_option,
            departure_option=draft.departure_option,
        )


class PriceResponse(BaseModel):
    base_price: Decimal
    discount_amount: Decimal
    extras_amount: Decimal
    taxes: Decimal
    total_price: Decimal
    currency: str

    @classmethod
    def from_domain(cls, price: PriceBreakdown) -> "PriceResponse":
        return cls(
            base_price=price.base_price,
            discount_amount=price.discount_amount,
            extras_amount=price.extras_amount,
            taxes=price.taxes,
            total_price=price.total_price,
            currency=price.currency,
        )

    def to_domain(self) -> PriceBreakdown:
        return PriceBreakdown(
            base_price=self.base_price,
            discount_amount=self.discount_amount,
            extras_amount=self.extras_amount,
            taxes=self.taxes,
            total_price=self.total_price,
            currency=self.currency,
        )


class BookingCreatedResponse(BaseModel):
    id: str
    booking_reference: str
    status: str
    price: PriceResponse


class CancellationResponse(BaseModel):
    is_cancelled: bool
    cancelled_at: Optional[datetime] = None
    reason: Optional[str] = None
    refund_percent: int
    refund_amount: Decimal
    refund_status: str


class BookingResponse(BaseModel):
    id: str
    booking_reference: str
    tour_id: str
    user_id: str
    departure_id: str
    start_date: datetime
    traveler_count: int
    travelers: List[TravelerPayload]
    extras: List[ExtraSelectionPayload]
    contact_info: ContactInfoPayload
    price: PriceResponse
    payment_method: str
    payment_status: str
    status: str
    cancellation: CancellationResponse
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, booking: Booking) -> "BookingResponse":
        cancellation = booking.cancellation
        return cls(
            id=booking.id,
            booking_reference=booking.booking_reference,
            tour_id=booking.tour_id,
            user_id=booking.user_id,
            departure_id=booking.departure_id,
            start_date=booking.start_date,
            traveler_count=booking.traveler_count,
            travelers=[
                TravelerPayload(title=t.title, first_name=t.first_name, last_name=t.last_name)
                for t in booking.travelers
            ],
            extras=[ExtraSelectionPayload.from_domain(extra) for extra in booking.extras],
            contact_info=ContactInfoPayload(
                email=booking.contact_info.email,
                phone=booking.contact_info.phone,
                address=booking.contact_info.address,
                city=booking.contact_info.city,
                country=booking.contact_info.country,
                postal_code=booking.contact_info.postal_code,
            ),
            price=PriceResponse.from_domain(booking.price),
            payment_method=booking.payment.method,
            payment_status=booking.payment.status.value,
            status=booking.status.value,
            cancellation=CancellationResponse(
                is_cancelled=cancellation.is_cancelled,
                cancelled_at=cancellation.cancelled_at,
                reason=cancellation.reason,
                refund_percent=cancellation.refund_percent,
                refund_amount=cancellation.refund_amount,
                refund_status=cancellation.refund_status.value,
            ),
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        )


class BookingsListResponse(BaseModel):
    items: List[BookingResponse]
    page: int
    page_size: int
    total: int


class BookingListQuery(BaseModel):
    status: Optional[str] = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class CancelRequest(BaseModel):
    requested_at: Optional[datetime] = None
    reason: Optional[str] = None


class RefundResponse(BaseModel):
    booking_id: str
    refund_percent: int
    refund_amount: Decimal
    refund_status: str


class PaymentUpdateRequest(BaseModel):
    status: PaymentStatus
    method: Optional[str] = None
    transaction_id: Optional[str] = None


class RepriceRequest(BaseModel):
    base_price: Optional[Decimal] = Field(default=None, ge=0)
    discount_amount: Optional[Decimal] = None
    taxes: Optional[Decimal] = Field(default=None, ge=0)


class MonthlyStatsResponse(BaseModel):
    year: int
    month: int
    bookings: int
    revenue: Decimal


class BookingStatsResponse(BaseModel):
    total_bookings: int
    total_revenue: Decimal
    average_booking_value: Decimal
    by_status: Dict[str, int]
    revenue_by_status: Dict[str, Decimal]
    monthly_stats: List[MonthlyStatsResponse]


class DepartureResponse(BaseModel):
    id: str
    start_date: datetime
    end_date: datetime
    available_spots: int
    price_override: Optional[Decimal] = None
    is_active: bool = True
    per_person_price: Optional[Decimal] = None

    @classmethod
    def from_domain(cls, departure: DepartureDate, per_person_price: Optional[Decimal] = None) -> "DepartureResponse":
        return cls(
            id=departure.id,
            start_date=departure.start_date,
            end_date=departure.end_date,
            available_spots=departure.available_spots,
            price_override=departure.price_override,
            is_active=departure.is_active,
            per_person_price=per_person_price,
        )

    def to_domain(self) -> DepartureDate:
        return DepartureDate(
            id=self.id,
            start_date=self.start_date,
            end_date=self.end_date,
            available_spots=self.available_spots,
            price_override=self.price_override,
            is_active=self.is_active,
        )


class ExtraOfferResponse(BaseModel):
    id: str
    name: str
    unit_price: Decimal
    kind: ExtraKind = ExtraKind.ACTIVITY
    currency: str = "USD"
    day: Optional[int] = None


class TourResponse(BaseModel):
    id: str
    name: str
    base_price: Decimal
    currency: str
    discount_percent: Decimal
    is_active: bool
    departures: List[DepartureResponse]
    extras: List[ExtraOfferResponse]

    @classmethod
    def from_domain(cls, tour: Tour) -> "TourResponse":
        return cls(
            id=tour.id,
            name=tour.name,
            base_price=tour.pricing.base_price,
            currency=tour.pricing.currency,
            discount_percent=tour.pricing.discount_percent,
            is_active=tour.is_active,
            departures=[DepartureResponse.from_domain(d) for d in tour.departures],
            extras=[ExtraOfferResponse(**vars(offer)) for offer in tour.extras],
        )

    def to_domain(self) -> Tour:
        return Tour(
            id=self.id,
            name=self.name,
            pricing=TourPricing(
                base_price=self.base_price,
                currency=self.currency,
                discount_percent=self.discount_percent,
            ),
            departures=[d.to_domain() for d in self.departures],
            extras=[ExtraOffer(**offer.model_dump()) for offer in self.extras],
            is_active=self.is_active,
        )


class DeparturesListResponse(BaseModel):
    items: List[DepartureResponse]
    total: int


class CalendarResponse(BaseModel):
    year: int
    month: int
    days: Dict[date, DepartureResponse]


class QuoteResponse(BaseModel):
    per_person_price: Decimal
    extras_total: Decimal
    grand_total: Decimal
    currency: str
