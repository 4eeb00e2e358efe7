from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final


class PricingLimits:
    MAX_DISCOUNT_PERCENT: Final[int] = 90
    MIN_DISCOUNT_PERCENT: Final[int] = 0


class WizardSteps:
    TRAVELERS: Final[int] = 1
    DATE: Final[int] = 2
    EXTRAS: Final[int] = 3
    TRAVEL_EXTRAS: Final[int] = 4
    CONTACT: Final[int] = 5

    FIRST: Final[int] = TRAVELERS
    LAST: Final[int] = CONTACT


class RefundPolicy:
    """Cancellation tiers as (minimum days before departure, refund percent), widest first."""

    TIERS: Final[tuple[tuple[int, int], ...]] = (
        (30, 90),
        (14, 75),
        (7, 50),
        (3, 25),
    )
    FALLBACK_PERCENT: Final[int] = 0


@dataclass(frozen=True)
class Settings:
    log_level: str = "INFO"
    idempotency_ttl_hours: int = 24
    reference_prefix: str = "NXT"
    reference_retries: int = 5
    gateway_timeout: float = 10.0
    api_url: str = "http://localhost:8000"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            log_level=os.getenv("BOOKING_LOG_LEVEL", "INFO").upper(),
            idempotency_ttl_hours=int(os.getenv("BOOKING_IDEMPOTENCY_TTL_HOURS", "24")),
            reference_prefix=os.getenv("BOOKING_REFERENCE_PREFIX", "NXT"),
            reference_retries=int(os.getenv("BOOKING_REFERENCE_RETRIES", "5")),
            gateway_timeout=float(os.getenv("BOOKING_GATEWAY_TIMEOUT", "10")),
            api_url=os.getenv("BOOKING_API_URL", "http://localhost:8000"),
        )
