"""
Proposal money math: totals with tax and deposit amounts.

Works on ORM rows or any objects with the same attributes.  These figures
describe the proposal as authored: optional items left out, QUANTITY items
at their minimum.  Client selections are priced by
``backend.services.interactive_pricing``.
"""

from __future__ import annotations

from typing import Any

from backend.core.constants import DEFAULT_DEPOSIT_FRACTION
from backend.core.utils import round_cents
from backend.domain.enums import BlockType, PricingItemType


def min_quantity(item: Any) -> int:
    return max(1, getattr(item, "min_quantity", None) or 1)


def max_quantity(item: Any) -> int:
    return max(min_quantity(item), getattr(item, "max_quantity", None) or 100)


def subtotal(proposal: Any) -> float:
    """Sum of required line items across pricing-table blocks."""
    total = 0.0
    for block in proposal.blocks or []:
        if block.type != BlockType.PRICING_TABLE.value:
            continue
        for item in block.pricing_items or []:
            if item.type == PricingItemType.OPTIONAL.value:
                continue
            quantity = min_quantity(item) if item.type == PricingItemType.QUANTITY.value else 1
            total += (item.price or 0.0) * quantity
    return total


def tax_on(proposal: Any, amount: float) -> float:
    tax_rate = proposal.tax_rate or 0.0
    return amount * tax_rate / 100.0 if tax_rate > 0 else 0.0


def calculate_total(proposal: Any) -> float:
    total = subtotal(proposal)
    return round_cents(total + tax_on(proposal, total))


def deposit_for_total(proposal: Any, total: float) -> float:
    """Explicit amount, else percentage of ``total``, else half of it."""
    if not proposal.deposit_required:
        return 0.0
    if proposal.deposit_amount:
        return round_cents(proposal.deposit_amount)
    if proposal.deposit_percentage:
        return round_cents(total * proposal.deposit_percentage / 100.0)
    return round_cents(total * DEFAULT_DEPOSIT_FRACTION)


def calculate_deposit(proposal: Any) -> float:
    return deposit_for_total(proposal, calculate_total(proposal))
