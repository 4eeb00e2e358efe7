from __future__ import annotations

from datetime import datetime
from typing import Optional

from .availability import is_available
from .config import WizardSteps
from .errors import ValidationError
from .models import ReservationDraft, Tour


def traveler_errors(draft: ReservationDraft) -> list[ValidationError]:
    errors = []
    if draft.traveler_count < 1:
        errors.append(ValidationError("at least one traveler is required", field="traveler_count", step=1))
    if not draft.primary_traveler.first_name.strip():
        errors.append(ValidationError("first name is required", field="primary_traveler.first_name", step=1))
    if not draft.primary_traveler.last_name.strip():
        errors.append(ValidationError("last name is required", field="primary_traveler.last_name", step=1))
    return errors


def date_errors(draft: ReservationDraft, tour: Optional[Tour], as_of: datetime) -> list[ValidationError]:
    if draft.selected_date_id is None:
        return [ValidationError("a departure date must be selected", field="selected_date_id", step=2)]
    if tour is None or not is_available(tour, draft.selected_date_id, as_of, draft.traveler_count):
        return [ValidationError("selected departure date is not available", field="selected_date_id", step=2)]
    return []


def extras_errors(draft: ReservationDraft) -> list[ValidationError]:
    errors = []
    for extra in draft.priced_extras():
        if not 0 < extra.traveler_count <= draft.traveler_count:
            errors.append(
                ValidationError(
                    f"extra {extra.ref_id} must be booked for 1 to {draft.traveler_count} travelers",
                    field="extras",
                    step=3,
                )
            )
    return errors


def contact_errors(draft: ReservationDraft) -> list[ValidationError]:
    errors = []
    if not draft.contact_info.email.strip():
        errors.append(ValidationError("contact email is required", field="contact_info.email", step=5))
    if not draft.contact_info.phone.strip():
        errors.append(ValidationError("contact phone is required", field="contact_info.phone", step=5))
    return errors


def step_errors(
    draft: ReservationDraft, step: int, tour: Optional[Tour], as_of: datetime
) -> list[ValidationError]:
    if step == WizardSteps.TRAVELERS:
        return traveler_errors(draft)
    if step == WizardSteps.DATE:
        return date_errors(draft, tour, as_of)
    if step == WizardSteps.CONTACT:
        return contact_errors(draft)
    return []
