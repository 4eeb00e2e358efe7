from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest

from factories import make_departure, make_tour
from reservations.errors import NetworkFailureError, StaleAvailabilityError
from reservations.gateway import InProcessGateway, SubmissionResult
from reservations.models import BookingStatus, ContactInfo, ReservationDraft, Tour, Traveler
from reservations.pricing import price_breakdown
from reservations.recorder import BookingRecorder
from reservations.storage import InMemoryBookingStorage
from reservations.wizard import (
    Advance,
    EditStep,
    PreselectDate,
    Retreat,
    SelectDate,
    SetContactInfo,
    SetExtra,
    SetPrimaryTraveler,
    SetTravelerCount,
    TourLoaded,
    WizardController,
    initial_state,
    quote,
    reduce,
)

NOW = datetime.now(timezone.utc)


class FakeGateway:
    def __init__(self, tour: Tour) -> None:
        self.tour = tour
        self.fetch_error: Optional[Exception] = None
        self.submit_error: Optional[Exception] = None
        self.fetches = 0
        self.submissions: list[tuple[ReservationDraft, Optional[str]]] = []
        self.on_submit = None

    def fetch_tour(self, tour_id: str) -> Tour:
        self.fetches += 1
        if self.fetch_error:
            raise self.fetch_error
        return self.tour

    def submit(self, draft: ReservationDraft, *, idempotency_key: Optional[str] = None) -> SubmissionResult:
        self.submissions.append((draft, idempotency_key))
        if self.on_submit:
            self.on_submit()
        if self.submit_error:
            raise self.submit_error
        departure = next(d for d in self.tour.departures if d.id == draft.selected_date_id)
        return SubmissionResult(
            booking_id="bkg_1",
            booking_reference="NXT-00000001-001",
            status=BookingStatus.PENDING.value,
            price=price_breakdown(self.tour, departure, draft.traveler_count, draft.priced_extras()),
        )


@pytest.fixture
def wizard_tour() -> Tour:
    return make_tour(departures=[make_departure("dep-1", 60, spots=5)])


def _loaded(tour: Tour):
    return reduce(initial_state(tour.id), TourLoaded(tour))


def _fill_contact_ready(controller: WizardController) -> None:
    controller.set_traveler_count(2)
    controller.set_primary_traveler("Ana", "Quispe")
    controller.advance()
    controller.select_date("dep-1")
    controller.advance()
    controller.advance()
    controller.advance()
    controller.set_contact_info("ana@example.com", "+51 999 000 111")


def test_advance_blocked_without_first_name(wizard_tour: Tour) -> None:
    state = reduce(_loaded(wizard_tour), SetPrimaryTraveler(Traveler(first_name="", last_name="Quispe")))

    advanced = reduce(state, Advance(NOW))

    assert advanced.step == 1
    assert advanced.draft == state.draft
    assert [error.field for error in advanced.errors] == ["primary_traveler.first_name"]


def test_date_step_requires_bookable_date(wizard_tour: Tour) -> None:
    state = reduce(_loaded(wizard_tour), SetPrimaryTraveler(Traveler(first_name="Ana", last_name="Quispe")))
    state = reduce(state, Advance(NOW))
    assert state.step == 2

    assert reduce(state, Advance(NOW)).step == 2
    assert reduce(reduce(state, SelectDate("missing")), Advance(NOW)).step == 2
    assert reduce(reduce(state, SelectDate("dep-1")), Advance(NOW)).step == 3


def test_optional_steps_always_advance(wizard_tour: Tour) -> None:
    state = reduce(_loaded(wizard_tour), SetPrimaryTraveler(Traveler(first_name="Ana", last_name="Quispe")))
    for event in (Advance(NOW), SelectDate("dep-1"), Advance(NOW), Advance(NOW), Advance(NOW)):
        state = reduce(state, event)

    assert state.step == 5
    assert not reduce(state, Advance(NOW)).submitting
    ready = reduce(state, SetContactInfo(ContactInfo(email="ana@example.com", phone="123")))
    assert reduce(ready, Advance(NOW)).submitting


def test_retreat_is_unconditional(wizard_tour: Tour) -> None:
    state = _loaded(wizard_tour)

    assert reduce(state, Retreat()).step == 1


def test_edit_step_only_reaches_completed_steps(wizard_tour: Tour) -> None:
    state = reduce(_loaded(wizard_tour), SetPrimaryTraveler(Traveler(first_name="Ana", last_name="Quispe")))
    state = reduce(reduce(reduce(state, Advance(NOW)), SelectDate("dep-1")), Advance(NOW))
    assert state.step == 3

    assert reduce(state, EditStep(5, NOW)).step == 3
    assert reduce(state, EditStep(1, NOW)).step == 1
    back = reduce(reduce(state, EditStep(1, NOW)), EditStep(3, NOW))
    assert back.step == 3


def test_edit_step_stops_at_first_invalid_step(wizard_tour: Tour) -> None:
    state = reduce(_loaded(wizard_tour), SetPrimaryTraveler(Traveler(first_name="Ana", last_name="Quispe")))
    state = reduce(reduce(reduce(state, Advance(NOW)), SelectDate("dep-1")), Advance(NOW))
    state = reduce(state, EditStep(1, NOW))
    state = reduce(state, SelectDate(None))

    reentered = reduce(state, EditStep(3, NOW))

    assert reentered.step == 2
    assert reentered.errors


def test_shrinking_travelers_clamps_extras(wizard_tour: Tour) -> None:
    rafting = wizard_tour.find_extra("act-rafting")
    state = reduce(_loaded(wizard_tour), SelectDate("dep-1"))
    state = reduce(state, SetTravelerCount(4))
    state = reduce(state, SetExtra(rafting, 4))
    assert quote(state).total == Decimal("4400")

    state = reduce(state, SetTravelerCount(2))

    assert [extra.traveler_count for extra in state.draft.extras] == [2]
    assert quote(state).extras == Decimal("200")
    assert quote(state).total == Decimal("2200")


def test_zero_count_extras_are_removed(wizard_tour: Tour) -> None:
    rafting = wizard_tour.find_extra("act-rafting")
    state = reduce(reduce(_loaded(wizard_tour), SetTravelerCount(2)), SetExtra(rafting, 2))

    assert reduce(state, SetExtra(rafting, 0)).draft.extras == ()
    assert reduce(state, SetTravelerCount(0)).draft.extras == ()


def test_extra_count_cannot_exceed_travelers(wizard_tour: Tour) -> None:
    rafting = wizard_tour.find_extra("act-rafting")
    state = reduce(reduce(_loaded(wizard_tour), SetTravelerCount(2)), SetExtra(rafting, 5))

    assert state.draft.extras[0].traveler_count == 2


def test_quote_needs_loaded_tour(wizard_tour: Tour) -> None:
    assert quote(initial_state(wizard_tour.id)) is None
    assert quote(_loaded(wizard_tour)).per_person == Decimal("1000")


def test_controller_submits_once(wizard_tour: Tour) -> None:
    gateway = FakeGateway(wizard_tour)
    controller = WizardController(gateway, wizard_tour.id)
    assert controller.load_tour()
    _fill_contact_ready(controller)
    gateway.on_submit = controller.advance

    state = controller.advance()

    assert len(gateway.submissions) == 1
    assert state.submitted
    assert state.result.price.total_price == Decimal("2000")
    controller.advance()
    assert len(gateway.submissions) == 1


def test_failed_fetch_offers_retry(wizard_tour: Tour) -> None:
    gateway = FakeGateway(wizard_tour)
    gateway.fetch_error = NetworkFailureError("timed out")
    controller = WizardController(gateway, wizard_tour.id)
    controller.set_traveler_count(3)

    assert not controller.load_tour()
    assert controller.state.load_error == "timed out"
    assert controller.state.tour is None
    assert controller.state.draft.traveler_count == 3

    gateway.fetch_error = None
    assert controller.retry_load()
    assert controller.state.load_error is None
    assert controller.state.draft.traveler_count == 3


def test_network_failure_keeps_draft_and_reuses_key(wizard_tour: Tour) -> None:
    gateway = FakeGateway(wizard_tour)
    controller = WizardController(gateway, wizard_tour.id)
    controller.load_tour()
    _fill_contact_ready(controller)
    gateway.submit_error = NetworkFailureError("connection reset")

    state = controller.advance()

    assert state.step == 5
    assert not state.submitting
    assert isinstance(state.submission_error, NetworkFailureError)
    assert state.draft.contact_info.email == "ana@example.com"

    gateway.submit_error = None
    assert controller.advance().submitted
    first_key, second_key = (key for _, key in gateway.submissions)
    assert first_key == second_key


def test_stale_availability_returns_to_date_step(wizard_tour: Tour) -> None:
    gateway = FakeGateway(wizard_tour)
    controller = WizardController(gateway, wizard_tour.id)
    controller.load_tour()
    _fill_contact_ready(controller)
    gateway.submit_error = StaleAvailabilityError("sold out", departure_id="dep-1")

    state = controller.advance()

    assert state.step == 2
    assert isinstance(state.submission_error, StaleAvailabilityError)
    assert state.draft.selected_date_id == "dep-1"
    assert state.draft.contact_info.phone == "+51 999 000 111"
    assert gateway.fetches == 2


def test_controller_books_through_recorder() -> None:
    storage = InMemoryBookingStorage()
    tour = make_tour(base_price="1000", departures=[make_departure("dep-1", 60, spots=2)])
    storage.save_tour(tour)
    recorder = BookingRecorder(storage=storage)
    controller = WizardController(InProcessGateway(recorder, user_id="user-1"), tour.id)
    controller.load_tour()
    controller.set_traveler_count(2)
    controller.set_primary_traveler("Ana", "Quispe")
    controller.advance()
    controller.select_date("dep-1")
    controller.advance()
    controller.set_extra("act-rafting", 2)
    controller.advance()
    controller.set_extra("room-own", 1)
    controller.set_travel_options(arrival="earlier")
    controller.advance()
    controller.set_contact_info("ana@example.com", "+51 999 000 111", city="Cusco")
    expected = controller.quote().total

    state = controller.advance()

    assert state.submitted
    assert expected == Decimal("2479")
    assert state.result.price.total_price == expected
    assert storage.get_tour(tour.id).departures[0].available_spots == 0


def test_bookable_dates_follow_loaded_tour() -> None:
    tour = make_tour(
        departures=[
            make_departure("dep-late", 40),
            make_departure("dep-full", 20, spots=0),
            make_departure("dep-early", 10),
        ]
    )
    controller = WizardController(FakeGateway(tour), tour.id)
    assert controller.bookable_dates() == []

    controller.load_tour()

    assert [d.id for d in controller.bookable_dates()] == ["dep-early", "dep-late"]


def test_submit_rechecks_earlier_steps(wizard_tour: Tour) -> None:
    gateway = FakeGateway(wizard_tour)
    controller = WizardController(gateway, wizard_tour.id)
    controller.load_tour()
    _fill_contact_ready(controller)
    controller.set_primary_traveler("", "")

    state = controller.advance()

    assert gateway.submissions == []
    assert not state.submitting
    assert state.step == 1
    assert [error.field for error in state.errors] == [
        "primary_traveler.first_name",
        "primary_traveler.last_name",
    ]


def test_submit_returns_to_date_step_when_date_cleared(wizard_tour: Tour) -> None:
    state = reduce(_loaded(wizard_tour), SetPrimaryTraveler(Traveler(first_name="Ana", last_name="Quispe")))
    for event in (Advance(NOW), SelectDate("dep-1"), Advance(NOW), Advance(NOW), Advance(NOW)):
        state = reduce(state, event)
    state = reduce(state, SetContactInfo(ContactInfo(email="ana@example.com", phone="+51 999 000 111")))
    state = reduce(state, SelectDate(None))

    state = reduce(state, Advance(NOW))

    assert state.step == 2
    assert not state.submitting
    assert [error.field for error in state.errors] == ["selected_date_id"]


def test_unexpected_fetch_error_keeps_retry_open(wizard_tour: Tour) -> None:
    gateway = FakeGateway(wizard_tour)
    gateway.fetch_error = RuntimeError("decoder blew up")
    controller = WizardController(gateway, wizard_tour.id)

    with pytest.raises(RuntimeError):
        controller.load_tour()

    assert not controller.state.loading
    assert controller.state.load_error
    gateway.fetch_error = None
    assert controller.retry_load()
    assert controller.state.tour is wizard_tour


def test_unexpected_submit_error_allows_resubmission(wizard_tour: Tour) -> None:
    gateway = FakeGateway(wizard_tour)
    controller = WizardController(gateway, wizard_tour.id)
    controller.load_tour()
    _fill_contact_ready(controller)
    gateway.submit_error = ArithmeticError("totals disagree")

    with pytest.raises(ArithmeticError):
        controller.advance()

    assert not controller.state.submitting
    assert controller.state.submission_error is not None
    gateway.submit_error = None
    assert controller.advance().submitted
    assert len(gateway.submissions) == 2


def test_preselected_date_is_applied_after_load() -> None:
    start = datetime.now(timezone.utc) + timedelta(days=45)
    tour = make_tour(
        departures=[make_departure("dep-1", 30), make_departure("dep-2", 0, start=start)]
    )
    controller = WizardController(FakeGateway(tour), tour.id, preselected_date=start.date())

    controller.load_tour()

    assert controller.state.draft.selected_date_id == "dep-2"


def test_preselect_never_overrides_a_chosen_date(wizard_tour: Tour) -> None:
    state = reduce(_loaded(wizard_tour), SelectDate("dep-1"))
    other_day = wizard_tour.departures[0].start_date.date() + timedelta(days=1)

    assert reduce(state, PreselectDate(other_day)).draft.selected_date_id == "dep-1"
    assert reduce(_loaded(wizard_tour), PreselectDate(other_day)).draft.selected_date_id is None
