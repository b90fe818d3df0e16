# plantshop/services/eligibility.py
from __future__ import annotations

from dataclasses import dataclass, field

from ..model.coupon import APPLIES_ALL
from ..utils.dates import utcnow, human_date
from ..utils.money import D, ZERO, Money
from .pricing import CouponQuote, LineItem, line_subtotal, quote_coupon


@dataclass(frozen=True)
class CartView:
    """What the gate needs to know about a cart; built fresh for every check."""
    items: list[LineItem]
    subtotal: Money = ZERO
    applied_coupon_ids: frozenset = frozenset()
    has_exclusive_coupon: bool = False

    @classmethod
    def from_items(cls, items, **kwargs):
        return cls(items=list(items), subtotal=line_subtotal(items), **kwargs)


@dataclass(frozen=True)
class Eligibility:
    ok: bool
    reason: str | None = None
    quote: CouponQuote | None = field(default=None, compare=False)

    @classmethod
    def deny(cls, reason):
        return cls(False, reason)


def _default_order_counter(user_id):
    from .order_service import count_non_cancelled_orders
    return count_non_cancelled_orders(user_id)


def check_eligibility(coupon, user_id, cart: CartView, *, count_orders=None, now=None,
                      check_contents=True, require_savings=True,
                      fall_back_to_cart_subtotal=False) -> Eligibility:
    """
    Decide whether ``coupon`` may be applied to ``cart`` by ``user_id``.

    Read-only: safe for previews and for the check before committing. Checks
    run in a fixed order and the first failure is returned. ``user_id=None``
    skips the per-user and first-time checks (anonymous preview). With
    ``fall_back_to_cart_subtotal`` a coupon matching no line is priced on the
    whole cart subtotal.
    """
    now = now or utcnow()

    if coupon is None:
        return Eligibility.deny("Invalid coupon code")
    if not coupon.active:
        return Eligibility.deny("This coupon is no longer active")

    if now < coupon.valid_from:
        return Eligibility.deny(f"Coupon is not yet active. Valid from {human_date(coupon.valid_from)}")
    if now > coupon.valid_to:
        return Eligibility.deny(f"Coupon has expired on {human_date(coupon.valid_to)}")

    if coupon.usage_exhausted:
        return Eligibility.deny("Coupon usage limit has been reached")

    if user_id is not None and not coupon.can_user_use(user_id, now=now):
        return Eligibility.deny("You have reached the usage limit for this coupon")

    if coupon.id in cart.applied_coupon_ids:
        return Eligibility.deny("Coupon is already applied to your cart")

    if cart.applied_coupon_ids:
        if not coupon.stackable:
            return Eligibility.deny("This coupon cannot be combined with other coupons")
        if cart.has_exclusive_coupon:
            return Eligibility.deny("Your cart already has a coupon that cannot be combined with others")

    if coupon.min_order_value and cart.subtotal < D(coupon.min_order_value):
        return Eligibility.deny(
            f"Minimum order value of ${D(coupon.min_order_value):.2f} required for this coupon"
        )

    if coupon.first_time_only and user_id is not None:
        counter = count_orders or _default_order_counter
        if counter(user_id) > 0:
            return Eligibility.deny("This coupon is only valid for first-time customers")

    fallback = cart.subtotal if fall_back_to_cart_subtotal else None
    quote = quote_coupon(coupon, cart.items, now=now, fallback_subtotal=fallback)
    if check_contents:
        if not quote.applicable_items and coupon.applies_to != APPLIES_ALL:
            return Eligibility.deny("This coupon is not applicable to any items in your cart")
        if require_savings and quote.discount <= 0:
            return Eligibility.deny("Coupon does not provide any discount for your cart")

    return Eligibility(True, None, quote)
