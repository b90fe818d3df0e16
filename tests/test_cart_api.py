import pytest
from sqlalchemy import insert, update

from plantshop.errors import ConflictOnMutation
from plantshop.extensions import db
from plantshop.model import AppliedCoupon, Cart, Coupon, Order
from plantshop.services import cart_service
from plantshop.utils.dates import utcnow


def add(client, headers, product, qty=1):
    return client.post("/cart/items", json={"productId": product.id, "quantity": qty}, headers=headers)


def apply(client, headers, code):
    return client.post("/cart/apply-coupon", json={"couponCode": code}, headers=headers)


def test_cart_requires_token(client):
    assert client.get("/cart").status_code == 401


def test_add_update_remove_items(client, user_headers, products):
    r = add(client, user_headers, products["monstera"], 2)
    assert r.status_code == 200
    cart = r.get_json()["data"]["cart"]
    assert cart["subtotal"] == 90.0
    assert cart["items"][0]["lineTotal"] == 90.0

    add(client, user_headers, products["monstera"], 1)
    r = client.put(f"/cart/items/{products['monstera'].id}", json={"quantity": 4}, headers=user_headers)
    assert r.get_json()["data"]["cart"]["items"][0]["quantity"] == 4

    r = client.put(f"/cart/items/{products['monstera'].id}", json={"quantity": 999}, headers=user_headers)
    assert r.status_code == 400
    assert r.get_json()["message"] == "Only 20 items available in stock"

    r = client.delete(f"/cart/items/{products['monstera'].id}", headers=user_headers)
    assert r.get_json()["data"]["cart"]["items"] == []

    r = client.delete(f"/cart/items/{products['monstera'].id}", headers=user_headers)
    assert r.status_code == 404
    assert r.get_json()["message"] == "Item not found in cart"


def test_apply_percentage_coupon(client, user_headers, products, make_coupon):
    make_coupon("SAVE10", value=10, max_discount=50)
    add(client, user_headers, products["compost"], 5)
    add(client, user_headers, products["monstera"], 2)  # subtotal 590

    r = apply(client, user_headers, " save10 ")
    body = r.get_json()
    assert r.status_code == 200, body
    assert body["status"] is True
    assert body["data"]["discountAmount"] == 50.0
    cart = body["data"]["cart"]
    assert cart["totalDiscount"] == 50.0
    assert cart["finalAmount"] == 540.0
    assert cart["appliedCoupons"][0]["coupon"]["code"] == "SAVE10"


def test_fixed_coupon_clamps_final_amount(client, user_headers, products, make_coupon):
    make_coupon("FLAT20", ctype="fixed", value=20, max_discount=None)
    add(client, user_headers, products["shears"], 1)

    cart = apply(client, user_headers, "FLAT20").get_json()["data"]["cart"]
    assert cart["totalDiscount"] == 15.0
    assert cart["finalAmount"] == 0.0


def test_apply_twice_is_rejected_once(client, user_headers, products, make_coupon):
    make_coupon("TWICE", usage_limit_per_user=5)
    add(client, user_headers, products["monstera"], 1)

    assert apply(client, user_headers, "TWICE").status_code == 200
    r = apply(client, user_headers, "TWICE")
    assert r.status_code == 400
    assert r.get_json()["message"] == "Coupon is already applied to your cart"
    assert Coupon.query.filter_by(code="TWICE").one().usage_count_total == 1


def test_apply_errors(client, user_headers, products, make_coupon):
    make_coupon("MIN100", min_order_value=100)

    r = apply(client, user_headers, "MIN100")
    assert r.status_code == 400
    assert r.get_json()["message"] == "Your cart is empty"

    r = apply(client, user_headers, "")
    assert r.get_json()["message"] == "Coupon code is required"

    add(client, user_headers, products["fern"], 8)  # 80
    r = apply(client, user_headers, "NOPE")
    assert r.status_code == 404
    assert r.get_json()["message"] == "Invalid coupon code"

    r = apply(client, user_headers, "MIN100")
    assert r.status_code == 400
    assert r.get_json() == {
        "status": False,
        "message": "Minimum order value of $100.00 required for this coupon",
        "data": {},
    }
    assert Coupon.query.filter_by(code="MIN100").one().usage_count_total == 0


def test_remove_coupon_keeps_usage(client, user, user_headers, products, make_coupon):
    c = make_coupon("ONCE", usage_limit_per_user=1)
    add(client, user_headers, products["monstera"], 2)
    apply(client, user_headers, "ONCE")

    r = client.delete(f"/cart/remove-coupon/{c.id}", headers=user_headers)
    assert r.status_code == 200
    cart = r.get_json()["data"]["cart"]
    assert cart["appliedCoupons"] == []
    assert cart["finalAmount"] == 90.0

    c = db.session.get(Coupon, c.id)
    assert c.usage_count_total == 1
    assert c.user_use_count(user.id) == 1

    r = apply(client, user_headers, "ONCE")
    assert r.get_json()["message"] == "You have reached the usage limit for this coupon"

    r = client.delete(f"/cart/remove-coupon/{c.id}", headers=user_headers)
    assert r.status_code == 400
    assert r.get_json()["message"] == "Coupon is not applied to your cart"


def test_discount_stays_frozen_when_items_change(client, user_headers, products, make_coupon):
    make_coupon("PLANTS50", applies_to="category", categories=["plants"], value=50, max_discount=100)
    add(client, user_headers, products["monstera"], 1)
    add(client, user_headers, products["shears"], 1)
    assert apply(client, user_headers, "PLANTS50").get_json()["data"]["discountAmount"] == 22.5

    r = client.delete(f"/cart/items/{products['monstera'].id}", headers=user_headers)
    cart = r.get_json()["data"]["cart"]
    assert cart["subtotal"] == 15.0
    assert cart["totalDiscount"] == 22.5
    assert cart["finalAmount"] == 0.0


def test_clear_cart_drops_coupons(client, user_headers, products, make_coupon):
    make_coupon()
    add(client, user_headers, products["compost"], 1)
    apply(client, user_headers, "SAVE10")

    cart = client.delete("/cart/items", headers=user_headers).get_json()["data"]["cart"]
    assert cart["items"] == [] and cart["appliedCoupons"] == []
    assert cart["finalAmount"] == 0.0


def test_one_use_coupon_follows_user_to_next_cart(client, user_headers, products, make_coupon):
    make_coupon("ONEUSE", usage_limit_per_user=1)
    add(client, user_headers, products["monstera"], 1)
    assert apply(client, user_headers, "ONEUSE").status_code == 200
    assert client.post("/orders/checkout", json={}, headers=user_headers).status_code == 201

    add(client, user_headers, products["monstera"], 1)
    r = apply(client, user_headers, "ONEUSE")
    assert r.status_code == 400
    assert r.get_json()["message"] == "You have reached the usage limit for this coupon"


def test_first_time_coupon_rejected_for_returning_customer(client, user, user_headers, products, make_coupon):
    make_coupon("FIRSTORDER", first_time_only=True)
    db.session.add(Order(code="ORD-OLD", user_id=user.id, status="delivered", subtotal=10, discount_total=0, total=10))
    db.session.commit()

    add(client, user_headers, products["monstera"], 1)
    r = apply(client, user_headers, "FIRSTORDER")
    assert r.status_code == 400
    assert r.get_json()["message"] == "This coupon is only valid for first-time customers"


def test_cancelled_orders_do_not_count_as_history(client, user, user_headers, products, make_coupon):
    make_coupon("FIRSTORDER", first_time_only=True)
    db.session.add(Order(code="ORD-CXL", user_id=user.id, status="cancelled", subtotal=10, discount_total=0, total=10))
    db.session.commit()

    add(client, user_headers, products["monstera"], 1)
    assert apply(client, user_headers, "FIRSTORDER").status_code == 200


def test_non_stackable_coupons_do_not_combine(client, user_headers, products, make_coupon):
    make_coupon("FIRST", stackable=False)
    make_coupon("SECOND", stackable=True, ctype="fixed", value=5, max_discount=None)
    add(client, user_headers, products["compost"], 1)

    apply(client, user_headers, "FIRST")
    r = apply(client, user_headers, "SECOND")
    assert r.status_code == 400
    assert r.get_json()["message"] == "Your cart already has a coupon that cannot be combined with others"


def test_available_coupons(client, user_headers, products, make_coupon):
    make_coupon("SAVE10", value=10, max_discount=50)                             # 10% of 115
    make_coupon("FLAT20", ctype="fixed", value=20, max_discount=None)            # 20
    make_coupon("TOOLS", applies_to="category", categories=["tools"], value=10)  # 1.50
    make_coupon("SHIPFREE", ctype="free_shipping", value=0, max_discount=None)   # 0, still listed
    make_coupon("GIFTS", applies_to="category", categories=["gifts"])            # nothing applies
    make_coupon("GONE", usage_limit_total=1, usage_count_total=1)               # exhausted
    make_coupon("BIG", min_order_value=500)                                     # minimum not met
    add(client, user_headers, products["compost"], 1)
    add(client, user_headers, products["shears"], 1)

    r = client.get("/cart/available-coupons", headers=user_headers)
    data = r.get_json()["data"]
    assert r.status_code == 200
    assert data["cartSubtotal"] == 115.0
    assert data["isFirstTimeCustomer"] is True
    assert [c["code"] for c in data["availableCoupons"]] == ["FLAT20", "SAVE10", "TOOLS", "SHIPFREE"]
    assert [c["potentialDiscount"] for c in data["availableCoupons"]] == [20.0, 11.5, 1.5, 0.0]
    tools = data["availableCoupons"][2]
    assert tools["applicableItemCount"] == 1
    assert tools["applicableProducts"]["categories"] == ["tools"]


def test_available_coupons_on_empty_cart(client, user_headers):
    r = client.get("/cart/available-coupons", headers=user_headers)
    assert r.status_code == 400
    assert r.get_json()["message"] == "Cart is empty"


def test_cart_is_per_user(client, make_user, auth_for, products):
    a, b = make_user(), make_user()
    add(client, auth_for(a), products["fern"], 1)
    assert client.get("/cart", headers=auth_for(b)).get_json()["data"]["cart"]["items"] == []
    assert Cart.query.count() == 2


def test_all_coupon_excluding_every_line_prices_on_cart_subtotal(client, user_headers, products, make_coupon):
    make_coupon("NOFERN", ctype="fixed", value=5, max_discount=None, excluded_product_ids=[products["fern"].id])
    add(client, user_headers, products["fern"], 2)

    listed = client.get("/cart/available-coupons", headers=user_headers).get_json()["data"]["availableCoupons"]
    assert [(c["code"], c["potentialDiscount"]) for c in listed] == [("NOFERN", 5.0)]

    r = apply(client, user_headers, "NOFERN")
    assert r.status_code == 200, r.get_json()
    assert r.get_json()["data"]["discountAmount"] == 5.0
    assert r.get_json()["data"]["cart"]["finalAmount"] == 15.0


def test_validate_preview_does_not_fall_back_to_cart_subtotal(client, products, make_coupon):
    make_coupon("NOFERN", ctype="fixed", value=5, max_discount=None, excluded_product_ids=[products["fern"].id])
    r = client.post("/coupons/validate", json={
        "code": "NOFERN", "cartItems": [{"productId": products["fern"].id, "quantity": 2}],
    })
    assert r.status_code == 400
    assert r.get_json()["message"] == "Coupon does not provide any discount for your cart"


def test_lost_ledger_race_leaves_cart_untouched(client, user_headers, products, make_coupon):
    c = make_coupon("LAST1", usage_limit_total=1)
    before = add(client, user_headers, products["monstera"], 2).get_json()["data"]["cart"]
    assert c.usage_count_total == 0

    # another shopper takes the last use after this session loaded the coupon
    db.session.execute(
        update(Coupon).where(Coupon.id == c.id).values(usage_count_total=1)
        .execution_options(synchronize_session=False)
    )

    r = apply(client, user_headers, "LAST1")
    assert r.status_code == 409
    assert r.get_json()["message"] == "Coupon usage limit has been reached"

    after = client.get("/cart", headers=user_headers).get_json()["data"]["cart"]
    assert after["appliedCoupons"] == []
    assert (after["subtotal"], after["totalDiscount"], after["finalAmount"]) == \
        (before["subtotal"], before["totalDiscount"], before["finalAmount"]) == (90.0, 0.0, 90.0)
    assert AppliedCoupon.query.count() == 0


def test_concurrent_link_of_same_coupon_is_a_conflict(user, products, make_coupon):
    c = make_coupon("RACE1", usage_limit_per_user=5)
    cart = cart_service.get_or_create_cart(user.id)
    cart_service.add_item(cart, products["fern"].id, 2)
    assert cart.applied_coupons == []

    # a parallel request links the coupon behind this session's loaded cart
    db.session.execute(insert(AppliedCoupon.__table__).values(
        cart_id=cart.id, coupon_id=c.id, discount_amount=2.0, applied_at=utcnow(),
    ))

    with pytest.raises(ConflictOnMutation, match="Coupon is already applied to your cart"):
        cart_service.apply_coupon(cart, user.id, "RACE1")

    assert db.session.get(Coupon, c.id).usage_count_total == 0
    assert AppliedCoupon.query.count() == 0


def test_quantity_update_refreshes_price(client, user_headers, products):
    add(client, user_headers, products["fern"], 1)
    products["fern"].price = 12.0
    db.session.commit()

    r = client.put(f"/cart/items/{products['fern'].id}", json={"quantity": 2}, headers=user_headers)
    item = r.get_json()["data"]["cart"]["items"][0]
    assert (item["price"], item["lineTotal"]) == (12.0, 24.0)
