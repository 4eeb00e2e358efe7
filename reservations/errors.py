from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class AppError(Exception):
    code: str
    message: str
    status_code: int
    field: Optional[str] = None

    def to_dict(self) -> dict[str, str]:
        payload = {"code": self.code, "message": self.message}
        if self.field:
            payload["field"] = self.field
        return payload


class BadRequestError(AppError):
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(code="BAD_REQUEST", message=message, status_code=400, field=field)


class ValidationError(AppError):
    """A draft step is incomplete; blocks advancing and never reaches the network."""

    def __init__(self, message: str, field: Optional[str] = None, step: Optional[int] = None):
        super().__init__(code="VALIDATION_ERROR", message=message, status_code=400, field=field)
        self.step = step


class NotFoundError(AppError):
    def __init__(self, message: str):
        super().__init__(code="NOT_FOUND", message=message, status_code=404)


class ConflictError(AppError):
    def __init__(self, message: str):
        super().__init__(code="CONFLICT", message=message, status_code=409)


class StaleAvailabilityError(AppError):

    def __init__(self, message: str, departure_id: Optional[str] = None):
        super().__init__(
            code="STALE_AVAILABILITY", message=message, status_code=409, field="selected_date_id"
        )
        self.departure_id = departure_id


class SubmissionConflictError(AppError):
    def __init__(self, message: str = "a submission is already in flight"):
        super().__init__(code="SUBMISSION_CONFLICT", message=message, status_code=409)


class InvalidTransitionError(AppError):
    def __init__(self, current: str, target: str):
        super().__init__(
            code="INVALID_TRANSITION",
            message=f"cannot move booking from {current} to {target}",
            status_code=409,
        )
        self.current = current
        self.target = target


class NetworkFailureError(AppError):
    def __init__(self, message: str):
        super().__init__(code="NETWORK_FAILURE", message=message, status_code=503)


class PersistenceFailureError(AppError):
    def __init__(self, message: str = "booking could not be saved, please retry"):
        super().__init__(code="PERSISTENCE_FAILURE", message=message, status_code=500)


ERRORS_BY_CODE: dict[str, type[AppError]] = {
    "BAD_REQUEST": BadRequestError,
    "VALIDATION_ERROR": ValidationError,
    "NOT_FOUND": NotFoundError,
    "CONFLICT": ConflictError,
    "STALE_AVAILABILITY": StaleAvailabilityError,
    "SUBMISSION_CONFLICT": SubmissionConflictError,
    "NETWORK_FAILURE": NetworkFailureError,
    "PERSISTENCE_FAILURE": PersistenceFailureError,
}


def error_from_payload(status_code: int, payload: dict) -> AppError:
    """Rebuild a domain error from the JSON body an error handler produced."""
    code = payload.get("code", "")
    message = payload.get("message", "request failed")
    field = payload.get("field")
    if code == "INVALID_TRANSITION":
        return AppError(code=code, message=message, status_code=status_code)
    error_cls = ERRORS_BY_CODE.get(code)
    if error_cls is None:
        return AppError(code=code or "UNKNOWN", message=message, status_code=status_code, field=field)
    if error_cls in (BadRequestError, ValidationError):
        return error_cls(message, field=field)
    return error_cls(message)
