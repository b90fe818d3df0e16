# plantshop/services/totals.py
from collections import namedtuple

from ..utils.money import D, ZERO, round_money

CartTotals = namedtuple("CartTotals", "subtotal total_discount final_amount")


def compute_totals(items, applied_coupons) -> CartTotals:
    """subtotal = sum(price x qty); discount = sum(frozen coupon amounts); final >= 0."""
    subtotal = round_money(sum((D(i.price) * int(i.quantity or 0) for i in items), ZERO))
    discount = round_money(sum((D(c.discount_amount) for c in applied_coupons), ZERO))
    final = round_money(max(ZERO, subtotal - discount))
    return CartTotals(subtotal, discount, final)


def recalc_cart(cart):
    """Recompute the cached totals on ``cart`` after any item or coupon change."""
    totals = compute_totals(cart.items, cart.applied_coupons)
    cart.subtotal = float(totals.subtotal)
    cart.total_discount = float(totals.total_discount)
    cart.final_amount = float(totals.final_amount)
    return cart
