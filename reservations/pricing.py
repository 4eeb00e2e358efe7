from __future__ import annotations

from dataclasses import replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from .errors import BadRequestError
from .models import DepartureDate, ExtraSelection, PriceBreakdown, Tour

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def discounted_list_price(tour: Tour) -> Decimal:
    pricing = tour.pricing
    return to_money(pricing.base_price * (1 - pricing.discount_percent / HUNDRED))


def per_person_price(tour: Tour, departure: Optional[DepartureDate]) -> Decimal:
    """Price for one traveler on ``departure``.

    A departure's price override replaces the discounted list price outright;
    the tour discount is never applied on top of an override.
    """
    if departure is not None and departure.price_override is not None:
        return departure.price_override
    return discounted_list_price(tour)


def extras_total(extras: Iterable[ExtraSelection]) -> Decimal:
    return sum((extra.unit_price * extra.traveler_count for extra in extras), ZERO)


def catalog_extras(tour: Tour, selections: Iterable[ExtraSelection]) -> list[ExtraSelection]:
    """Re-price ``selections`` from the tour's catalog; client-supplied prices are ignored."""
    priced = []
    for selection in selections:
        offer = tour.find_extra(selection.ref_id)
        if offer is None:
            raise BadRequestError(f"unknown extra {selection.ref_id}", field="extras")
        if offer.currency != tour.pricing.currency:
            raise BadRequestError(
                f"extra {offer.id} is priced in {offer.currency}, not {tour.pricing.currency}", field="extras"
            )
        priced.append(replace(selection, unit_price=offer.unit_price, currency=offer.currency, kind=offer.kind))
    return priced


def grand_total(
    tour: Tour,
    departure: Optional[DepartureDate],
    traveler_count: int,
    extras: Iterable[ExtraSelection],
) -> Decimal:
    return per_person_price(tour, departure) * traveler_count + extras_total(extras)


def recompute_total(breakdown: PriceBreakdown, traveler_count: int) -> Decimal:
    return (
        breakdown.base_price * traveler_count
        - breakdown.discount_amount
        + breakdown.extras_amount
        + breakdown.taxes
    )


def price_breakdown(
    tour: Tour,
    departure: Optional[DepartureDate],
    traveler_count: int,
    extras: Iterable[ExtraSelection],
) -> PriceBreakdown:
    """Split :func:`grand_total` into the components stored on a booking."""
    extras = list(extras)
    unit_price = per_person_price(tour, departure)
    if departure is not None and departure.price_override is not None:
        base_price = departure.price_override
        discount_amount = ZERO
    else:
        base_price = tour.pricing.base_price
        discount_amount = (base_price - unit_price) * traveler_count

    breakdown = PriceBreakdown(
        base_price=base_price,
        discount_amount=discount_amount,
        extras_amount=extras_total(extras),
        taxes=ZERO,
        total_price=grand_total(tour, departure, traveler_count, extras),
        currency=tour.pricing.currency,
    )
    if recompute_total(breakdown, traveler_count) != breakdown.total_price:
        raise ArithmeticError("price breakdown does not add up to the grand total")
    return breakdown


def reprice(
    breakdown: PriceBreakdown,
    traveler_count: int,
    *,
    base_price: Optional[Decimal] = None,
    discount_amount: Optional[Decimal] = None,
    taxes: Optional[Decimal] = None,
) -> PriceBreakdown:
    updated = replace(
        breakdown,
        base_price=breakdown.base_price if base_price is None else Decimal(base_price),
        discount_amount=breakdown.discount_amount if discount_amount is None else Decimal(discount_amount),
        taxes=breakdown.taxes if taxes is None else Decimal(taxes),
    )
    updated.total_price = recompute_total(updated, traveler_count)
    if updated.total_price < 0:
        raise ValueError("repriced total cannot be negative")
    return updated
