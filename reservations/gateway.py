from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, TypeVar

import httpx
import pydantic

from .config import Settings
from .errors import AppError, NetworkFailureError, error_from_payload
from .models import PriceBreakdown, ReservationDraft, Tour
from .recorder import BookingRecorder
from .schemas import BookingCreateRequest, BookingCreatedResponse, TourResponse

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


@dataclass(frozen=True)
class SubmissionResult:
    booking_id: str
    booking_reference: str
    status: str
    price: PriceBreakdown


class BookingGateway(Protocol):
    def fetch_tour(self, tour_id: str) -> Tour:
        ...

    def submit(self, draft: ReservationDraft, *, idempotency_key: Optional[str] = None) -> SubmissionResult:
        ...


class InProcessGateway:

    def __init__(self, recorder: BookingRecorder, user_id: str) -> None:
        self._recorder = recorder
        self._user_id = user_id

    def fetch_tour(self, tour_id: str) -> Tour:
        return self._recorder.get_tour(tour_id)

    def submit(self, draft: ReservationDraft, *, idempotency_key: Optional[str] = None) -> SubmissionResult:
        booking, _ = self._recorder.submit(draft, user_id=self._user_id, idempotency_key=idempotency_key)
        return SubmissionResult(
            booking_id=booking.id,
            booking_reference=booking.booking_reference,
            status=booking.status.value,
            price=booking.price,
        )


class HttpGateway:
    """Talks to the booking API over HTTP.

    Transport failures and timeouts surface as :class:`NetworkFailureError`;
    error bodies produced by the API are rebuilt into the matching domain error.
    """

    def __init__(
        self,
        user_id: str,
        *,
        client: Optional[httpx.Client] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or Settings.from_env()
        self._user_id = user_id
        self._client = client or httpx.Client(base_url=settings.api_url, timeout=settings.gateway_timeout)

    def close(self) -> None:
        self._client.close()

    def fetch_tour(self, tour_id: str) -> Tour:
        payload = self._request("GET", f"/v1/tours/{tour_id}")
        return self._parse(TourResponse, payload, f"/v1/tours/{tour_id}").to_domain()

    def submit(self, draft: ReservationDraft, *, idempotency_key: Optional[str] = None) -> SubmissionResult:
        body = BookingCreateRequest.from_draft(draft).model_dump(mode="json")
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}
        payload = self._request("POST", "/v1/bookings", json=body, headers=headers)
        created = self._parse(BookingCreatedResponse, payload, "/v1/bookings")
        return SubmissionResult(
            booking_id=created.id,
            booking_reference=created.booking_reference,
            status=created.status,
            price=created.price.to_domain(),
        )

    def _request(self, method: str, url: str, **kwargs) -> dict:
        headers = {"X-User-Id": self._user_id, **kwargs.pop("headers", {})}
        try:
            response = self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise NetworkFailureError(f"request to {url} timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkFailureError(f"request to {url} failed: {exc}") from exc

        if response.is_success:
            try:
                return response.json()
            except ValueError as exc:
                raise NetworkFailureError(f"malformed response from {url}") from exc
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict) or "code" not in payload:
            raise NetworkFailureError(f"unexpected {response.status_code} response from {url}")
        error: AppError = error_from_payload(response.status_code, payload)
        logger.info("Booking API returned an error", extra={"code": error.code, "status": response.status_code})
        raise error

    @staticmethod
    def _parse(model: type[ModelT], payload: object, url: str) -> ModelT:
        try:
            return model.model_validate(payload)
        except pydantic.ValidationError as exc:
            raise NetworkFailureError(f"unexpected response body from {url}") from exc
