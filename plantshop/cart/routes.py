# plantshop/cart/routes.py
from flask import request
from flask_jwt_extended import get_jwt_identity

from . import bp
from ..services import cart_service as svc
from ..utils.api import ok
from ..utils.decorators import login_required
from ..utils.money import to_float


def _cart():
    return svc.get_or_create_cart(int(get_jwt_identity()))


# ---- cart ---------------------------------------------------------------------

@bp.get("")
@login_required
def get_cart():
    return ok("Cart retrieved", {"cart": _cart().as_api()})


@bp.post("/items")
@login_required
def add_item():
    data = request.get_json(silent=True) or {}
    cart = svc.add_item(_cart(), data.get("productId"), data.get("quantity", 1))
    return ok("Item added to cart", {"cart": cart.as_api()})


@bp.put("/items/<int:product_id>")
@login_required
def update_item(product_id: int):
    data = request.get_json(silent=True) or {}
    cart = svc.update_item(_cart(), product_id, data.get("quantity"))
    return ok("Cart item updated", {"cart": cart.as_api()})


@bp.delete("/items/<int:product_id>")
@login_required
def remove_item(product_id: int):
    cart = svc.remove_item(_cart(), product_id)
    return ok("Item removed from cart", {"cart": cart.as_api()})


@bp.delete("/items")
@login_required
def clear_cart():
    cart = svc.clear_cart(_cart())
    return ok("Cart cleared", {"cart": cart.as_api()})


# ---- coupons ------------------------------------------------------------------

@bp.get("/available-coupons")
@login_required
def available_coupons():
    uid = int(get_jwt_identity())
    data = svc.list_available_coupons(svc.get_or_create_cart(uid), uid)
    return ok("Available coupons retrieved", data)


@bp.post("/apply-coupon")
@login_required
def apply_coupon():
    uid = int(get_jwt_identity())
    data = request.get_json(silent=True) or {}
    cart, discount = svc.apply_coupon(svc.get_or_create_cart(uid), uid, data.get("couponCode"))
    return ok("Coupon applied successfully", {"cart": cart.as_api(), "discountAmount": to_float(discount)})


@bp.delete("/remove-coupon/<int:coupon_id>")
@login_required
def remove_coupon(coupon_id: int):
    cart = svc.remove_coupon(_cart(), coupon_id)
    return ok("Coupon removed successfully", {"cart": cart.as_api()})
