# plantshop/services/order_service.py
import uuid

from ..errors import ConflictOnMutation, InvalidInput, NotFound
from ..extensions import db
from ..model import ORDER_STATUSES, Order, OrderCoupon, OrderItem, Product
from ..utils.dates import utcnow
from ..utils.logger import get_logger
from ..utils.money import D, round_money
from .totals import compute_totals, recalc_cart

log = get_logger("orders")


def _gen_order_code():
    stamp = utcnow().strftime("%Y%m%d-%H%M%S%f")[:18]
    return f"ORD-{stamp}-{uuid.uuid4().hex[:6].upper()}"


def count_non_cancelled_orders(user_id) -> int:
    return Order.query.filter(Order.user_id == user_id, Order.status != "cancelled").count()


def get_order(order_id, user=None) -> Order:
    order = db.session.get(Order, order_id)
    if not order or (user is not None and not user.is_admin and order.user_id != user.id):
        raise NotFound("Order not found")
    return order


def list_orders(user_id):
    return Order.query.filter_by(user_id=user_id).order_by(Order.created_at.desc()).all()


def checkout(cart, user_id, payload=None) -> Order:
    """
    Turn the cart into an order. Applied coupons travel with their frozen
    amounts; usage was already recorded when they were applied. The cart row
    stays, emptied of items and coupons.
    """
    payload = payload or {}
    if not cart.items:
        raise InvalidInput("Cart is empty")

    try:
        # lock product rows to avoid overselling
        ids = [i.product_id for i in cart.items]
        products = (
            db.session.query(Product)
            .filter(Product.id.in_(ids))
            .with_for_update()
            .all()
        )
        pmap = {p.id: p for p in products}

        for it in cart.items:
            p = pmap.get(it.product_id)
            if not p or p.is_active is False:
                raise ConflictOnMutation(f"Product {it.product_id} is no longer available")
            if it.quantity > int(p.stock or 0):
                raise ConflictOnMutation(f"Only {p.stock} of {p.name} left in stock")

        totals = compute_totals(cart.items, cart.applied_coupons)
        order = Order(
            code=_gen_order_code(),
            user_id=user_id,
            status="pending",
            shipping_address=payload.get("shippingAddress"),
            subtotal=totals.subtotal,
            discount_total=totals.total_discount,
            total=totals.final_amount,
        )
        for it in cart.items:
            order.items.append(OrderItem(
                product_id=it.product_id,
                name=pmap[it.product_id].name,
                unit_price=round_money(it.price),
                quantity=it.quantity,
                line_total=round_money(D(it.price) * it.quantity),
            ))
            pmap[it.product_id].stock = int(pmap[it.product_id].stock or 0) - it.quantity
        for link in cart.applied_coupons:
            order.coupons.append(OrderCoupon(
                coupon_id=link.coupon_id,
                code=link.coupon.code if link.coupon else None,
                discount_amount=round_money(link.discount_amount),
            ))
        db.session.add(order)

        cart.items.clear()
        cart.applied_coupons.clear()
        recalc_cart(cart)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    log.info("order %s created for user %s, total %s", order.code, user_id, order.total)
    return order


def set_status(order: Order, status) -> Order:
    status = (status or "").strip().lower()
    if status not in ORDER_STATUSES:
        raise InvalidInput(f"status must be one of: {', '.join(ORDER_STATUSES)}")
    order.status = status
    db.session.commit()
    log.info("order %s moved to %s", order.code, status)
    return order
