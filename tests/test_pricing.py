from datetime import timedelta
from decimal import Decimal

import pytest

from plantshop.model import Coupon
from plantshop.services.pricing import (
    LineItem, calculate_discount, line_subtotal, quote_coupon, resolve_applicable,
)
from plantshop.utils.dates import utcnow

NOW = utcnow()


def coupon(**kw):
    fields = dict(
        id=1, code="TEST", name="Test", ctype="percentage", value=10, max_discount=None,
        min_order_value=0, usage_limit_total=None, usage_limit_per_user=1, usage_count_total=0,
        valid_from=NOW - timedelta(days=1), valid_to=NOW + timedelta(days=1),
        applies_to="all", product_ids=[], categories=[], excluded_product_ids=[],
        active=True, stackable=False, first_time_only=False,
    )
    fields.update(kw)
    return Coupon(**fields)


def line(pid, price, qty=1, category="plants"):
    return LineItem(product_id=pid, name=f"P{pid}", price=Decimal(str(price)), category=category, quantity=qty)


CART = [
    line(1, 45, 2, "plants"),
    line(2, 15, 1, "tools"),
    line(3, 100, 1, "organic-supplies"),
]


# ---- resolver ----------------------------------------------------------------

def test_all_keeps_everything_but_excluded():
    c = coupon(applies_to="all", excluded_product_ids=[2])
    assert [i.product_id for i in resolve_applicable(c, CART)] == [1, 3]


def test_exclude_resolves_like_all():
    c = coupon(applies_to="exclude", excluded_product_ids=[3])
    assert [i.product_id for i in resolve_applicable(c, CART)] == [1, 2]


def test_specific_and_category():
    assert [i.product_id for i in resolve_applicable(coupon(applies_to="specific", product_ids=[2, 99]), CART)] == [2]
    assert [i.product_id for i in resolve_applicable(coupon(applies_to="category", categories=["plants"]), CART)] == [1]


def test_unknown_mode_matches_nothing():
    assert resolve_applicable(coupon(applies_to="bogus"), CART) == []


# ---- calculator --------------------------------------------------------------

def test_percentage_capped_by_max_discount():
    # SAVE10 on a 600 cart
    c = coupon(code="SAVE10", value=10, max_discount=50)
    q = quote_coupon(c, [line(1, 600)], now=NOW)
    assert q.applicable_subtotal == Decimal("600.00")
    assert q.discount == Decimal("50.00")


def test_fixed_never_exceeds_subtotal():
    # FLAT20 on a 15 cart
    c = coupon(code="FLAT20", ctype="fixed", value=20)
    q = quote_coupon(c, [line(1, 15)], now=NOW)
    assert q.discount == Decimal("15.00")


@pytest.mark.parametrize("subtotal", ["0", "1", "99.99", "500", "499.995", "100000"])
def test_percentage_cap_holds_for_any_subtotal(subtotal):
    c = coupon(value=30, max_discount=25)
    assert calculate_discount(c, Decimal(subtotal), now=NOW) <= Decimal("25")


@pytest.mark.parametrize("subtotal", ["0", "0.01", "19.99", "20", "75.50"])
def test_fixed_ceiling_for_any_subtotal(subtotal):
    c = coupon(ctype="fixed", value=20)
    assert calculate_discount(c, Decimal(subtotal), now=NOW) <= Decimal(subtotal)


def test_percentage_rounds_half_up():
    c = coupon(value=15)
    # 10.10 * 15% = 1.515
    assert calculate_discount(c, Decimal("10.10"), now=NOW) == Decimal("1.52")


def test_free_shipping_is_zero_here():
    q = quote_coupon(coupon(ctype="free_shipping", value=0), CART, now=NOW)
    assert q.discount == Decimal("0")
    assert q.details["type"] == "free_shipping"


def test_unknown_type_is_zero():
    assert calculate_discount(coupon(ctype="mystery"), Decimal("50"), now=NOW) == Decimal("0")


def test_invalid_coupon_discounts_nothing():
    expired = coupon(valid_to=NOW - timedelta(minutes=1))
    inactive = coupon(active=False)
    exhausted = coupon(usage_limit_total=2, usage_count_total=2)
    for c in (expired, inactive, exhausted):
        assert calculate_discount(c, Decimal("100"), now=NOW) == Decimal("0")


def test_buy_x_get_y_sets_capped_by_max_sets():
    # BUY2GET1, maxSets=3, 7 units at 10
    c = coupon(code="BUY2GET1", ctype="buy_x_get_y", value=0, buy_quantity=2, get_quantity=1, max_sets=3)
    q = quote_coupon(c, [line(1, 10, 7)], now=NOW)
    assert q.discount == Decimal("30.00")
    assert q.details == {
        "type": "buy_x_get_y", "buyQuantity": 2, "getQuantity": 1, "freeItems": 3, "sets": 3,
    }


def test_buy_x_get_y_uses_first_qualifying_line_only():
    c = coupon(ctype="buy_x_get_y", value=0, buy_quantity=2, get_quantity=1, max_sets=5)
    items = [line(1, 50, 1), line(2, 5, 2), line(3, 80, 4)]
    # line 1 does not qualify; line 2 does and wins even though line 3 is pricier
    assert quote_coupon(c, items, now=NOW).discount == Decimal("5.00")


def test_buy_x_get_y_without_qualifying_line():
    c = coupon(ctype="buy_x_get_y", value=0, buy_quantity=3, get_quantity=1, max_sets=1)
    q = quote_coupon(c, [line(1, 10, 2)], now=NOW)
    assert q.discount == Decimal("0")
    assert q.details["sets"] == 0


def test_applicable_subtotal_only_counts_applicable_lines():
    c = coupon(applies_to="category", categories=["tools"], value=50, max_discount=100)
    q = quote_coupon(c, CART, now=NOW)
    assert q.applicable_subtotal == Decimal("15.00")
    assert q.discount == Decimal("7.50")
    assert q.details["applicableSubtotal"] == 15.0


def test_line_subtotal():
    assert line_subtotal(CART) == Decimal("205.00")
    assert line_subtotal([]) == Decimal("0")


def test_fallback_subtotal_used_only_when_nothing_applies():
    c = coupon(ctype="fixed", value=5, excluded_product_ids=[1, 2, 3])
    assert quote_coupon(c, CART, now=NOW).discount == Decimal("0")

    q = quote_coupon(c, CART, now=NOW, fallback_subtotal=Decimal("205"))
    assert q.applicable_items == []
    assert q.applicable_subtotal == Decimal("205.00")
    assert q.discount == Decimal("5.00")

    # lines that do apply win over the fallback
    c = coupon(ctype="percentage", value=10, excluded_product_ids=[3])
    q = quote_coupon(c, CART, now=NOW, fallback_subtotal=Decimal("205"))
    assert q.applicable_subtotal == Decimal("105.00")
