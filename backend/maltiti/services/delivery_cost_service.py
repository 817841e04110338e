# Overview: Domestic per-box delivery pricing for open carts.

"""
Delivery cost

Charge = boxes x per-box rate, where boxes = ceil(sum(quantity / quantity_in_box))
with a minimum of one box. The rate comes from the DELIVERY_CHARGES table:
city match first, then region, then the country default.

Addresses outside DELIVERY_COUNTRY have no table price. They get None, which
callers treat as "costed later by an admin": never added to a total.
"""

from __future__ import annotations

import math
from decimal import Decimal
from fractions import Fraction
from typing import Iterable

from flask import current_app

from ..models import Cart


def box_count(lines: Iterable[tuple[int, int]]) -> int:
    """lines are (quantity, quantity_in_box) pairs."""
    boxes = sum((Fraction(qty, max(1, per_box)) for qty, per_box in lines), Fraction(0))
    return max(1, math.ceil(boxes))


def per_box_charge(city: str | None, region: str | None, charges: dict) -> Decimal:
    city_key = (city or "").strip().lower()
    region_key = (region or "").strip().lower()
    if city_key in charges.get("city", {}):
        return Decimal(charges["city"][city_key])
    if region_key in charges.get("region", {}):
        return Decimal(charges["region"][region_key])
    return Decimal(charges["default"])


def calculate_delivery_cost(
    lines: Iterable[tuple[int, int]],
    country: str | None,
    city: str | None,
    region: str | None,
    charges: dict | None = None,
    domestic_country: str | None = None,
) -> Decimal | None:
    if charges is None:
        charges = current_app.config["DELIVERY_CHARGES"]
    if domestic_country is None:
        domestic_country = current_app.config.get("DELIVERY_COUNTRY", "ghana")

    if (country or "").strip().lower() != domestic_country.lower():
        return None

    cost = box_count(lines) * per_box_charge(city, region, charges)
    return cost.quantize(Decimal("0.01"))


def cost_for_carts(carts: Iterable[Cart], country, city, region) -> Decimal | None:
    lines = [(cart.quantity, cart.product.quantity_in_box) for cart in carts]
    return calculate_delivery_cost(lines, country, city, region)
