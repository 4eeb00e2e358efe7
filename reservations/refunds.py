from __future__ import annotations

import math
from datetime import datetime
from decimal import Decimal

from .config import RefundPolicy
from .models import Booking
from .pricing import to_money

SECONDS_PER_DAY = 24 * 60 * 60


def days_before_departure(start_date: datetime, now: datetime) -> int:
    return math.ceil((start_date - now).total_seconds() / SECONDS_PER_DAY)


def refund_percent(start_date: datetime, now: datetime) -> int:
    days = days_before_departure(start_date, now)
    for min_days, percent in RefundPolicy.TIERS:
        if days >= min_days:
            return percent
    return RefundPolicy.FALLBACK_PERCENT


def refund_amount(booking: Booking, now: datetime) -> Decimal:
    percent = refund_percent(booking.start_date, now)
    return to_money(booking.price.total_price * percent / 100)
