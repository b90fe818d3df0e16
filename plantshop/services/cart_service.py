from sqlalchemy.exc import IntegrityError

from ..errors import ConflictOnMutation, IneligibleCoupon, InvalidInput, NotFound
from ..extensions import db
from ..model import AppliedCoupon, Cart, CartItem
from ..utils.dates import utcnow
from ..utils.logger import get_logger
from ..utils.money import D
from . import usage_ledger
from .catalog import get_active_product, get_products_by_ids
from .coupon_service import currently_valid_query, find_active_by_code, normalize_code
from .eligibility import CartView, check_eligibility
from .order_service import count_non_cancelled_orders
from .pricing import LineItem
from .totals import compute_totals, recalc_cart

log = get_logger("cart")


def get_or_create_cart(user_id: int) -> Cart:
    cart = Cart.query.filter_by(user_id=user_id).first()
    if cart:
        return cart
    cart = Cart(user_id=user_id)
    db.session.add(cart)
    try:
        db.session.commit()
    except IntegrityError:
        # created by a parallel request for the same user
        db.session.rollback()
        cart = Cart.query.filter_by(user_id=user_id).one()
    return cart


# ---- line item snapshots -----------------------------------------------------

def line_items(cart: Cart) -> list[LineItem]:
    products = {p.id: p for p in get_products_by_ids(i.product_id for i in cart.items)}
    lines = []
    for it in cart.items:
        p = products.get(it.product_id)
        if p is None:
            continue  # orphaned line; product was removed from the catalog
        lines.append(LineItem(
            product_id=p.id,
            name=p.name,
            price=D(it.price),
            category=p.category,
            quantity=int(it.quantity),
        ))
    return lines


def cart_view(cart: Cart) -> CartView:
    applied = cart.applied_coupons
    return CartView(
        items=line_items(cart),
        subtotal=compute_totals(cart.items, applied).subtotal,
        applied_coupon_ids=frozenset(c.coupon_id for c in applied),
        has_exclusive_coupon=any(c.coupon is not None and not c.coupon.stackable for c in applied),
    )


# ---- items -------------------------------------------------------------------

def _quantity(raw) -> int:
    try:
        qty = int(raw)
    except (TypeError, ValueError):
        raise InvalidInput("Quantity must be a whole number")
    if qty < 1:
        raise InvalidInput("Quantity must be at least 1")
    return qty


def _check_stock(product, qty):
    if not product.in_stock:
        raise InvalidInput("Product is out of stock")
    if qty > product.stock:
        raise InvalidInput(f"Only {product.stock} items available in stock")


def _save(cart: Cart) -> Cart:
    recalc_cart(cart)
    db.session.commit()
    return cart


def add_item(cart: Cart, product_id, quantity=1) -> Cart:
    qty = _quantity(quantity)
    product = get_active_product(product_id)

    item = cart.find_item(product.id)
    if item:
        _check_stock(product, item.quantity + qty)
        item.quantity = item.quantity + qty
    else:
        _check_stock(product, qty)
        cart.items.append(CartItem(product_id=product.id, quantity=qty, price=product.price))
    return _save(cart)


def update_item(cart: Cart, product_id, quantity) -> Cart:
    qty = _quantity(quantity)
    product = get_active_product(product_id)
    item = cart.find_item(product.id)
    if not item:
        raise NotFound("Item not found in cart")
    _check_stock(product, qty)
    item.quantity = qty
    item.price = product.price
    return _save(cart)


def remove_item(cart: Cart, product_id) -> Cart:
    item = cart.find_item(product_id)
    if not item:
        raise NotFound("Item not found in cart")
    cart.items.remove(item)
    return _save(cart)


def clear_cart(cart: Cart) -> Cart:
    cart.items.clear()
    cart.applied_coupons.clear()
    return _save(cart)


# ---- coupons -----------------------------------------------------------------

def apply_coupon(cart: Cart, user_id: int, code, now=None):
    """
    Apply a coupon by code. Returns ``(cart, discount)``.

    The frozen discount, the recomputed totals and the usage-ledger increment
    are committed together; any failure rolls all of them back.
    """
    code = normalize_code(code)
    if not code:
        raise InvalidInput("Coupon code is required")
    coupon = find_active_by_code(code)
    if not coupon:
        raise NotFound("Invalid coupon code")
    if not cart.items:
        raise IneligibleCoupon("Your cart is empty")

    verdict = check_eligibility(coupon, user_id, cart_view(cart), now=now, fall_back_to_cart_subtotal=True)
    if not verdict.ok:
        log.info("coupon %s rejected for user %s: %s", code, user_id, verdict.reason)
        raise IneligibleCoupon(verdict.reason)

    discount = verdict.quote.discount
    try:
        cart.applied_coupons.append(AppliedCoupon(
            coupon=coupon,
            discount_amount=float(discount),
            applied_at=now or utcnow(),
        ))
        recalc_cart(cart)
        try:
            db.session.flush()
        except IntegrityError as e:
            # a parallel request linked the same coupon to this cart first
            log.warning("coupon %s already linked to cart %s", code, cart.id)
            raise ConflictOnMutation("Coupon is already applied to your cart") from e
        usage_ledger.use(coupon, user_id, now=now)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    log.info("coupon %s applied to cart %s by user %s, discount %s", code, cart.id, user_id, discount)
    return cart, discount


def remove_coupon(cart: Cart, coupon_id) -> Cart:
    link = cart.find_coupon(coupon_id)
    if not link:
        raise InvalidInput("Coupon is not applied to your cart")
    # usage stays recorded; removing and re-applying must not hand out a fresh use
    cart.applied_coupons.remove(link)
    _save(cart)
    log.info("coupon %s removed from cart %s", coupon_id, cart.id)
    return cart


def list_available_coupons(cart: Cart, user_id: int, now=None) -> dict:
    now = now or utcnow()
    if not cart.items:
        raise IneligibleCoupon("Cart is empty")
    view = cart_view(cart)
    if not view.items:
        raise IneligibleCoupon("Cart contains no valid products")

    order_count = count_non_cancelled_orders(user_id)
    rows = []
    for coupon in currently_valid_query(now).all():
        verdict = check_eligibility(
            coupon, user_id, view,
            count_orders=lambda _uid: order_count,
            now=now,
            require_savings=False,
            fall_back_to_cart_subtotal=True,
        )
        if not verdict.ok:
            continue
        rows.append({
            **coupon.as_api(),
            "potentialDiscount": float(verdict.quote.discount),
            "applicableItemCount": len(verdict.quote.applicable_items),
        })

    rows.sort(key=lambda r: r["potentialDiscount"], reverse=True)
    return {
        "cartSubtotal": float(view.subtotal),
        "availableCoupons": rows,
        "isFirstTimeCustomer": order_count == 0,
    }
