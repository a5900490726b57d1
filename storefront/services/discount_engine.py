# storefront/services/discount_engine.py
"""
Coupon discount calculation.

A coupon is a list of discount rules. Each rule is either a flat amount or a
percentage, optionally restricted to a set of product ids. A rule named
"Shipping" discounts the shipping fee instead of the products.

compute_discounts() is the only place the arithmetic lives; cart summaries,
order summaries, invoices and the admin order listing all call it with line
items and rules assembled from the database.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from ..utils.money import D, Money, SHIPPING_FEE

SHIPPING_RULE = "Shipping"
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LineItem:
    product_id: int
    quantity: int
    unit_price: Money

    @property
    def line_total(self) -> Money:
        return D(self.unit_price) * D(self.quantity)


@dataclass(frozen=True)
class DiscountRule:
    name: str
    discount_value: Money
    is_flat_rate: bool = False
    applies_to: frozenset = field(default_factory=frozenset)

    @property
    def is_shipping(self) -> bool:
        return self.name == SHIPPING_RULE


@dataclass(frozen=True)
class DiscountResult:
    total_product_discount: Money = Decimal("0")
    shipping_discount: Money = Decimal("0")

    def as_api(self):
        return {
            "product_discount": float(self.total_product_discount),
            "shipping_discount": float(self.shipping_discount),
        }


def _subtotal(items: Iterable[LineItem]) -> Money:
    return sum((it.line_total for it in items), Decimal("0"))


def _rule_amount(rule: DiscountRule, items: list[LineItem], subtotal: Money) -> tuple[Money, Money]:
    """Returns (product amount, shipping discount) for one rule."""
    value = D(rule.discount_value)

    if not rule.applies_to:
        if rule.is_flat_rate:
            amount = value
        else:
            amount = subtotal * (value / HUNDRED)
        shipping = SHIPPING_FEE * (value / HUNDRED)
        return amount, shipping

    scoped = [it for it in items if it.product_id in rule.applies_to]
    if rule.is_flat_rate:
        # flat value is the discounted unit price for each scoped unit
        amount = sum(((D(it.unit_price) - value) * D(it.quantity) for it in scoped), Decimal("0"))
        shipping = SHIPPING_FEE - value
    else:
        amount = _subtotal(scoped) * (value / HUNDRED)
        shipping = SHIPPING_FEE - SHIPPING_FEE * (value / HUNDRED)
    return amount, shipping


def compute_discounts(line_items: Iterable[LineItem], rules: Iterable[DiscountRule]) -> DiscountResult:
    """
    Sum the product discount of every rule and pick the shipping discount.

    No line items means no discount at all. Never raises on numeric input:
    negative quantities, prices or values come back as zero or negative
    amounts. When several "Shipping" rules are given, the last one wins.
    """
    items = list(line_items or [])
    if not items:
        return DiscountResult()
    subtotal = _subtotal(items)

    total = Decimal("0")
    shipping_discount = Decimal("0")
    for rule in rules or []:
        amount, shipping = _rule_amount(rule, items, subtotal)
        if rule.is_shipping:
            shipping_discount = shipping
            continue
        total += amount

    return DiscountResult(total_product_discount=total, shipping_discount=shipping_discount)
