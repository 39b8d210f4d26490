"""Supplier price corrections for line items scraped from invoice emails.

The correction is a pure function of ``(raw item, PriceCorrection)``. Steps
run in a fixed order:

1. unit price = scraped line total / displayed quantity;
2. the standing discount comes off both unit and total;
3. quantity is scaled by ``quantity_multiplier``;
4. the discounted unit price is divided by ``price_divisor``;
5. total = unit price * corrected quantity;
6. both prices are rounded to cents, with non-finite values becoming ``0``.
"""

from __future__ import annotations

import math

from ..models import ParsedLineItem, PriceCorrection
from ..normalizers import round_money


def apply_price_correction(
    *,
    raw_name: str,
    displayed_quantity: int,
    line_total: float,
    correction: PriceCorrection,
) -> ParsedLineItem:
    """Return the corrected :class:`ParsedLineItem` for one scraped product row."""

    quantity = max(1, int(displayed_quantity))
    keep = 1.0 - correction.discount_rate

    unit_price = line_total / quantity
    unit_price *= keep
    total_price = line_total * keep

    actual_quantity = quantity * correction.quantity_multiplier
    unit_price /= correction.price_divisor
    total_price = unit_price * actual_quantity

    if not math.isfinite(unit_price):
        unit_price = 0.0
    if not math.isfinite(total_price):
        total_price = 0.0
    return ParsedLineItem(
        raw_name=raw_name,
        quantity=actual_quantity,
        unit_price=round_money(unit_price),
        total_price=round_money(total_price),
    )


__all__ = ["apply_price_correction"]
