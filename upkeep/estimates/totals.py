# upkeep/estimates/totals.py
"""Price, cost, profit and margin derivation for project estimates.

These helpers only read attributes (``amount``, ``tax``, ``tax_type``,
``estimated_cost`` on line items and ``estimated_price``/``estimated_cost``
on the estimate) so they work on unsaved model instances as well as on
persisted ones.
"""

from __future__ import annotations

import math
from typing import Iterable


def to_amount(value) -> float:
    """Coerce ``value`` to a float, treating None, NaN and garbage as 0."""
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(num) or math.isinf(num):
        return 0.0
    return num


def money(value) -> float:
    return round(to_amount(value), 2)


def line_tax(item) -> float:
    amount = to_amount(getattr(item, 'amount', None))
    tax = to_amount(getattr(item, 'tax', None))
    if (getattr(item, 'tax_type', None) or 'percentage') == 'percentage':
        return amount * tax / 100
    return tax


def line_items_total(items: Iterable) -> float:
    return money(sum(to_amount(i.amount) + line_tax(i) for i in items))


def line_items_cost(items: Iterable) -> float:
    return money(sum(to_amount(i.estimated_cost) for i in items))


def profit(price, cost) -> float:
    return money(to_amount(price) - to_amount(cost))


def profit_margin(price, cost) -> float:
    price = to_amount(price)
    if price == 0:
        return 0.0
    return round(profit(price, cost) / price * 100, 1)


def calculate_totals(estimate) -> dict:
    """Refresh the flat price/cost fields from line items and return totals.

    With no line items the stored ``estimated_price``/``estimated_cost`` are
    authoritative and are left as they are.
    """
    items = list(estimate.line_items or [])
    if items:
        estimate.estimated_price = line_items_total(items)
        estimate.estimated_cost = line_items_cost(items)
    price = money(estimate.estimated_price)
    cost = money(estimate.estimated_cost)
    return {
        'estimatedPrice': price,
        'estimatedCost': cost,
        'estimatedProfit': profit(price, cost),
        'estimatedProfitMargin': profit_margin(price, cost),
    }
