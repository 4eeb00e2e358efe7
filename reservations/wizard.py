from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Union
from uuid import uuid4

from . import pricing
from .availability import list_bookable, resolve
from .config import WizardSteps
from .errors import AppError, StaleAvailabilityError, SubmissionConflictError, ValidationError
from .gateway import BookingGateway, SubmissionResult
from .models import (
    ContactInfo,
    DepartureDate,
    ExtraKind,
    ExtraOffer,
    ExtraSelection,
    ReservationDraft,
    Tour,
    Traveler,
)
from .rules import step_errors

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WizardState:
    draft: ReservationDraft
    step: int = WizardSteps.FIRST
    furthest_step: int = WizardSteps.FIRST
    tour: Optional[Tour] = None
    loading: bool = False
    load_error: Optional[str] = None
    errors: tuple[ValidationError, ...] = ()
    submitting: bool = False
    submission_error: Optional[AppError] = None
    result: Optional[SubmissionResult] = None

    @property
    def submitted(self) -> bool:
        return self.result is not None


@dataclass(frozen=True)
class Quote:
    per_person: Decimal
    extras: Decimal
    total: Decimal


# Events


@dataclass(frozen=True)
class TourRequested:
    pass


@dataclass(frozen=True)
class TourLoaded:
    tour: Tour


@dataclass(frozen=True)
class TourLoadFailed:
    message: str


@dataclass(frozen=True)
class SetTravelerCount:
    count: int


@dataclass(frozen=True)
class SetPrimaryTraveler:
    traveler: Traveler


@dataclass(frozen=True)
class SelectDate:
    date_id: Optional[str]


@dataclass(frozen=True)
class PreselectDate:
    day: date


@dataclass(frozen=True)
class SetExtra:
    offer: ExtraOffer
    traveler_count: int


@dataclass(frozen=True)
class SetAccommodationUpgrade:
    offer: Optional[ExtraOffer]
    traveler_count: int = 0


@dataclass(frozen=True)
class SetTravelOptions:
    arrival: str = "same-day"
    departure: str = "same-day"


@dataclass(frozen=True)
class SetContactInfo:
    contact_info: ContactInfo


@dataclass(frozen=True)
class Advance:
    as_of: datetime


@dataclass(frozen=True)
class Retreat:
    pass


@dataclass(frozen=True)
class EditStep:
    step: int
    as_of: datetime


@dataclass(frozen=True)
class SubmissionSucceeded:
    result: SubmissionResult


@dataclass(frozen=True)
class SubmissionRejected:
    error: AppError


Event = Union[
    TourRequested,
    TourLoaded,
    TourLoadFailed,
    SetTravelerCount,
    SetPrimaryTraveler,
    SelectDate,
    PreselectDate,
    SetExtra,
    SetAccommodationUpgrade,
    SetTravelOptions,
    SetContactInfo,
    Advance,
    Retreat,
    EditStep,
    SubmissionSucceeded,
    SubmissionRejected,
]

TRAVEL_OPTIONS = frozenset({"same-day", "earlier", "later"})


def initial_state(tour_id: str) -> WizardState:
    return WizardState(draft=ReservationDraft(tour_id=tour_id))


def clamp_extras(draft: ReservationDraft, traveler_count: int) -> ReservationDraft:
    extras = tuple(
        replace(extra, traveler_count=min(extra.traveler_count, traveler_count))
        for extra in draft.extras
        if min(extra.traveler_count, traveler_count) > 0
    )
    upgrade = draft.accommodation_upgrade
    if upgrade is not None:
        count = min(upgrade.traveler_count, traveler_count)
        upgrade = replace(upgrade, traveler_count=count) if count > 0 else None
    return replace(draft, traveler_count=traveler_count, extras=extras, accommodation_upgrade=upgrade)


def selection_from(offer: ExtraOffer, traveler_count: int) -> ExtraSelection:
    return ExtraSelection(
        ref_id=offer.id,
        unit_price=offer.unit_price,
        currency=offer.currency,
        traveler_count=traveler_count,
        kind=offer.kind,
    )


def with_extra(draft: ReservationDraft, offer: ExtraOffer, traveler_count: int) -> ReservationDraft:
    count = max(0, min(traveler_count, draft.traveler_count))
    extras = [extra for extra in draft.extras if extra.ref_id != offer.id]
    if count > 0:
        existing_ids = [extra.ref_id for extra in draft.extras]
        selection = selection_from(offer, count)
        if offer.id in existing_ids:
            extras.insert(existing_ids.index(offer.id), selection)
        else:
            extras.append(selection)
    return replace(draft, extras=tuple(extras))


def first_invalid_step(state: WizardState, up_to: int, as_of: datetime) -> Optional[int]:
    for step in range(WizardSteps.FIRST, up_to):
        if step_errors(state.draft, step, state.tour, as_of):
            return step
    return None


def reduce(state: WizardState, event: Event) -> WizardState:
    if isinstance(event, TourRequested):
        return replace(state, loading=True, load_error=None)
    if isinstance(event, TourLoaded):
        return replace(state, tour=event.tour, loading=False, load_error=None)
    if isinstance(event, TourLoadFailed):
        return replace(state, loading=False, load_error=event.message)

    if state.submitted:
        return state

    if isinstance(event, SubmissionSucceeded):
        return replace(state, submitting=False, submission_error=None, result=event.result)
    if isinstance(event, SubmissionRejected):
        if isinstance(event.error, StaleAvailabilityError):
            return replace(
                state,
                submitting=False,
                submission_error=event.error,
                step=WizardSteps.DATE,
            )
        return replace(state, submitting=False, submission_error=event.error)

    if state.submitting:
        # The draft is frozen while a submission is in flight.
        return state

    if isinstance(event, SetTravelerCount):
        draft = clamp_extras(state.draft, max(0, event.count))
        return replace(state, draft=draft, errors=())
    if isinstance(event, SetPrimaryTraveler):
        return replace(state, draft=replace(state.draft, primary_traveler=event.traveler), errors=())
    if isinstance(event, SelectDate):
        return replace(state, draft=replace(state.draft, selected_date_id=event.date_id), errors=())
    if isinstance(event, PreselectDate):
        # Only fills an empty selection, and only with a departure starting that day.
        if state.tour is None or state.draft.selected_date_id is not None:
            return state
        for departure in state.tour.departures:
            if departure.start_date.date() == event.day:
                return replace(state, draft=replace(state.draft, selected_date_id=departure.id))
        return state
    if isinstance(event, SetExtra):
        return replace(state, draft=with_extra(state.draft, event.offer, event.traveler_count))
    if isinstance(event, SetAccommodationUpgrade):
        upgrade = None
        if event.offer is not None:
            count = max(0, min(event.traveler_count, state.draft.traveler_count))
            upgrade = selection_from(event.offer, count) if count > 0 else None
        return replace(state, draft=replace(state.draft, accommodation_upgrade=upgrade))
    if isinstance(event, SetTravelOptions):
        arrival = event.arrival if event.arrival in TRAVEL_OPTIONS else state.draft.arrival_option
        departure = event.departure if event.departure in TRAVEL_OPTIONS else state.draft.departure_option
        draft = replace(state.draft, arrival_option=arrival, departure_option=departure)
        return replace(state, draft=draft)
    if isinstance(event, SetContactInfo):
        return replace(state, draft=replace(state.draft, contact_info=event.contact_info), errors=())

    if isinstance(event, Advance):
        errors = tuple(step_errors(state.draft, state.step, state.tour, event.as_of))
        if errors:
            return replace(state, errors=errors)
        if state.step == WizardSteps.LAST:
            # Earlier steps may have been edited since they were passed.
            invalid = first_invalid_step(state, WizardSteps.LAST, event.as_of)
            if invalid is not None:
                return replace(
                    state,
                    step=invalid,
                    errors=tuple(step_errors(state.draft, invalid, state.tour, event.as_of)),
                )
            return replace(state, errors=(), submitting=True, submission_error=None)
        step = state.step + 1
        return replace(state, step=step, furthest_step=max(step, state.furthest_step), errors=())
    if isinstance(event, Retreat):
        return replace(state, step=max(WizardSteps.FIRST, state.step - 1), errors=())
    if isinstance(event, EditStep):
        if not WizardSteps.FIRST <= event.step <= state.furthest_step:
            return state
        invalid = first_invalid_step(state, event.step, event.as_of)
        target = invalid if invalid is not None else event.step
        return replace(
            state,
            step=target,
            errors=tuple(step_errors(state.draft, target, state.tour, event.as_of)),
        )

    raise TypeError(f"unknown wizard event: {event!r}")


def quote(state: WizardState) -> Optional[Quote]:
    """Running totals for the draft, or ``None`` until the tour is loaded."""
    if state.tour is None:
        return None
    departure = resolve(state.tour, state.draft.selected_date_id) if state.draft.selected_date_id else None
    extras = state.draft.priced_extras()
    return Quote(
        per_person=pricing.per_person_price(state.tour, departure),
        extras=pricing.extras_total(extras),
        total=pricing.grand_total(state.tour, departure, state.draft.traveler_count, extras),
    )


class WizardController:
    def __init__(
        self,
        gateway: BookingGateway,
        tour_id: str,
        clock: Optional[Callable[[], datetime]] = None,
        preselected_date: Optional[date] = None,
    ) -> None:
        self._gateway = gateway
        self._preselected_date = preselected_date
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._state = initial_state(tour_id)
        self._idempotency_key: Optional[str] = None
        self._keyed_draft: Optional[ReservationDraft] = None

    @property
    def state(self) -> WizardState:
        return self._state

    def quote(self) -> Optional[Quote]:
        return quote(self._state)

    def bookable_dates(self) -> list[DepartureDate]:
        if self._state.tour is None:
            return []
        return list_bookable(self._state.tour, self._clock())

    def dispatch(self, event: Event) -> WizardState:
        self._state = reduce(self._state, event)
        return self._state

    def load_tour(self) -> bool:
        """Fetch the tour and its departures; returns ``False`` if the fetch failed or was already running."""
        if self._state.loading:
            return False
        self.dispatch(TourRequested())
        try:
            tour = self._gateway.fetch_tour(self._state.draft.tour_id)
        except AppError as exc:
            logger.warning("Tour fetch failed", extra={"tour_id": self._state.draft.tour_id, "code": exc.code})
            self.dispatch(TourLoadFailed(exc.message))
            return False
        except Exception:
            logger.exception("Tour fetch crashed", extra={"tour_id": self._state.draft.tour_id})
            self.dispatch(TourLoadFailed("tour could not be loaded, please retry"))
            raise
        self.dispatch(TourLoaded(tour))
        if self._preselected_date is not None:
            self.dispatch(PreselectDate(self._preselected_date))
        return True

    retry_load = load_tour

    def set_traveler_count(self, count: int) -> WizardState:
        return self.dispatch(SetTravelerCount(count))

    def set_primary_traveler(self, first_name: str, last_name: str, title: str = "") -> WizardState:
        return self.dispatch(SetPrimaryTraveler(Traveler(first_name=first_name, last_name=last_name, title=title)))

    def select_date(self, date_id: Optional[str]) -> WizardState:
        return self.dispatch(SelectDate(date_id))

    def set_extra(self, offer_id: str, traveler_count: int) -> WizardState:
        offer = self._require_offer(offer_id)
        if offer.kind == ExtraKind.ACCOMMODATION:
            return self.dispatch(SetAccommodationUpgrade(offer, traveler_count))
        return self.dispatch(SetExtra(offer, traveler_count))

    def set_travel_options(self, arrival: str = "same-day", departure: str = "same-day") -> WizardState:
        return self.dispatch(SetTravelOptions(arrival, departure))

    def set_contact_info(self, email: str, phone: str, **address: str) -> WizardState:
        return self.dispatch(SetContactInfo(ContactInfo(email=email, phone=phone, **address)))

    def retreat(self) -> WizardState:
        return self.dispatch(Retreat())

    def edit_step(self, step: int) -> WizardState:
        return self.dispatch(EditStep(step, self._clock()))

    def advance(self) -> WizardState:
        if self._state.submitting:
            self._suppress(SubmissionConflictError())
            return self._state
        before = self._state
        after = self.dispatch(Advance(self._clock()))
        if after.submitting and not before.submitting:
            self._submit()
        return self._state

    def _submit(self) -> None:
        draft = self._state.draft
        if self._keyed_draft != draft:
            self._idempotency_key = uuid4().hex
            self._keyed_draft = draft
        try:
            result = self._gateway.submit(draft, idempotency_key=self._idempotency_key)
        except StaleAvailabilityError as exc:
            logger.info("Selected departure went stale", extra={"departure_id": exc.departure_id})
            self.dispatch(SubmissionRejected(exc))
            self.load_tour()
            return
        except AppError as exc:
            logger.warning("Booking submission rejected", extra={"code": exc.code})
            self.dispatch(SubmissionRejected(exc))
            return
        except Exception:
            logger.exception("Booking submission crashed")
            self.dispatch(
                SubmissionRejected(
                    AppError(code="INTERNAL_ERROR", message="booking could not be submitted", status_code=500)
                )
            )
            raise
        self.dispatch(SubmissionSucceeded(result))
        logger.info("Booking submitted", extra={"booking_reference": result.booking_reference})

    def _suppress(self, error: SubmissionConflictError) -> None:
        logger.debug("Duplicate submission suppressed", extra={"code": error.code})

    def _require_offer(self, offer_id: str) -> ExtraOffer:
        tour = self._state.tour
        offer = tour.find_extra(offer_id) if tour else None
        if offer is None:
            raise ValidationError(f"unknown extra {offer_id}", field="extras", step=self._state.step)
        return offer
