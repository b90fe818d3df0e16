# plantshop/order/routes.py
from flask import request

from . import bp
from ..services import order_service as svc
from ..services.cart_service import get_or_create_cart
from ..utils.api import ok
from ..utils.decorators import _current_user, login_required, role_required


@bp.post("/checkout")
@login_required
def checkout():
    user = _current_user()
    order = svc.checkout(get_or_create_cart(user.id), user.id, request.get_json(silent=True) or {})
    return ok("Order placed", {"order": order.as_api()}, 201)


@bp.get("")
@login_required
def list_orders():
    orders = svc.list_orders(_current_user().id)
    return ok("orders", {"total": len(orders), "items": [o.as_api() for o in orders]})


@bp.get("/<int:order_id>")
@login_required
def get_order(order_id: int):
    order = svc.get_order(order_id, _current_user())
    return ok("order", {"order": order.as_api()})


@bp.patch("/<int:order_id>/status")
@role_required("admin")
def update_status(order_id: int):
    data = request.get_json(silent=True) or {}
    order = svc.set_status(svc.get_order(order_id), data.get("status"))
    return ok("Order status updated", {"order": order.as_api()})
