"""
Coupon pricing: which cart lines a coupon covers and what it takes off them.

Everything here is a pure function of its arguments. Nothing reads or writes
the database, so the same code backs cart application, the available-coupons
listing and the public ``/coupons/validate`` preview.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from ..model.coupon import (
    APPLIES_ALL, APPLIES_CATEGORY, APPLIES_EXCLUDE, APPLIES_SPECIFIC,
    BUY_X_GET_Y, FIXED, FREE_SHIPPING, PERCENTAGE,
)
from ..utils.money import D, ZERO, Money, round_money


@dataclass(frozen=True)
class LineItem:
    """Read-only product snapshot plus the quantity sitting in the cart."""
    product_id: int
    name: str
    price: Money
    category: str | None
    quantity: int

    @property
    def total(self) -> Money:
        return round_money(self.price * self.quantity)

    def as_api(self):
        return {
            "id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "price": float(round_money(self.price)),
        }


@dataclass(frozen=True)
class CouponQuote:
    applicable_items: list[LineItem]
    applicable_subtotal: Money
    discount: Money
    details: dict = field(default_factory=dict)


def line_subtotal(items) -> Money:
    return round_money(sum((i.total for i in items), ZERO))


# ---- applicability resolver ---------------------------------------------------

def resolve_applicable(coupon, items) -> list[LineItem]:
    mode = coupon.applies_to
    if mode in (APPLIES_ALL, APPLIES_EXCLUDE):
        excluded = set(coupon.excluded_product_ids or [])
        return [i for i in items if i.product_id not in excluded]
    if mode == APPLIES_SPECIFIC:
        wanted = set(coupon.product_ids or [])
        return [i for i in items if i.product_id in wanted]
    if mode == APPLIES_CATEGORY:
        wanted = set(coupon.categories or [])
        return [i for i in items if i.category in wanted]
    return []


# ---- discount calculator ------------------------------------------------------

def _buy_x_get_y(coupon, applicable_items) -> tuple[Money, dict]:
    buy = int(coupon.buy_quantity or 1)
    get = int(coupon.get_quantity or 1)
    max_sets = int(coupon.max_sets or 1)
    details = {
        "type": BUY_X_GET_Y,
        "buyQuantity": buy,
        "getQuantity": get,
        "freeItems": 0,
        "sets": 0,
    }
    # only the first qualifying line earns free items
    line = next((i for i in applicable_items if i.quantity >= buy), None)
    if line is None:
        return ZERO, details
    sets = min(line.quantity // buy, max_sets)
    free_items = sets * get
    details.update(freeItems=free_items, sets=sets)
    return round_money(line.price * free_items), details


def calculate_discount(coupon, applicable_subtotal, applicable_items=(), now=None) -> Money:
    """Monetary discount for ``coupon`` over already-resolved lines; never negative."""
    if not coupon.is_valid_at(now):
        return ZERO

    subtotal = D(applicable_subtotal)
    kind = coupon.ctype
    if kind == PERCENTAGE:
        discount = subtotal * D(coupon.value) / D(100)
        if coupon.max_discount:
            discount = min(discount, D(coupon.max_discount))
    elif kind == FIXED:
        discount = min(D(coupon.value), subtotal)
    elif kind == FREE_SHIPPING:
        # the shipping waiver lives with shipping cost, not here
        discount = ZERO
    elif kind == BUY_X_GET_Y:
        discount, _ = _buy_x_get_y(coupon, applicable_items)
    else:
        discount = ZERO

    return round_money(max(discount, ZERO))


def quote_coupon(coupon, items, now=None, fallback_subtotal=None) -> CouponQuote:
    """
    ``fallback_subtotal`` stands in for the applicable subtotal when no line
    applies; the cart paths pass the whole cart subtotal, previews pass nothing.
    """
    applicable = resolve_applicable(coupon, items)
    if not applicable and fallback_subtotal is not None:
        subtotal = round_money(fallback_subtotal)
    else:
        subtotal = line_subtotal(applicable)
    discount = calculate_discount(coupon, subtotal, applicable, now=now)

    if coupon.ctype == BUY_X_GET_Y:
        _, details = _buy_x_get_y(coupon, applicable)
    else:
        details = {
            "type": coupon.ctype,
            "value": coupon.value,
            "applicableSubtotal": float(subtotal),
            "maxDiscount": coupon.max_discount,
        }
    return CouponQuote(applicable, subtotal, discount, details)
