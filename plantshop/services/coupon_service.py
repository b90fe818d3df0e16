# plantshop/services/coupon_service.py
import re

from sqlalchemy import or_, select, update

from ..errors import ImmutableAfterUse, IneligibleCoupon, InvalidInput, NotFound
from ..extensions import db
from ..model import CATEGORIES, Coupon, Order, OrderCoupon
from ..model.coupon import (
    APPLICABILITY_TYPES, APPLIES_ALL, APPLIES_SPECIFIC, BUY_X_GET_Y, COUPON_TYPES, FIXED, PERCENTAGE,
)
from ..utils.dates import iso, parse_iso8601, utcnow
from ..utils.logger import get_logger
from ..utils.money import D, ZERO, round_money
from . import usage_ledger
from .catalog import get_products_by_ids
from .eligibility import CartView, check_eligibility
from .order_service import count_non_cancelled_orders
from .pricing import LineItem

log = get_logger("coupons")

CODE_RE = re.compile(r"^[A-Z0-9]{3,20}$")
BULK_OPERATIONS = ("activate", "deactivate", "delete", "updateExpiry")


def normalize_code(code) -> str:
    return (code or "").strip().upper()


def find_active_by_code(code):
    return Coupon.query.filter_by(code=normalize_code(code), active=True).first()


def get_coupon(coupon_id) -> Coupon:
    coupon = db.session.get(Coupon, coupon_id)
    if not coupon:
        raise NotFound("Coupon not found")
    return coupon


def currently_valid_query(now=None):
    now = now or utcnow()
    return Coupon.query.filter(
        Coupon.active.is_(True),
        Coupon.valid_from <= now,
        Coupon.valid_to >= now,
        or_(Coupon.usage_limit_total.is_(None), Coupon.usage_count_total < Coupon.usage_limit_total),
    ).order_by(Coupon.id.asc())


# ---- payload parsing ---------------------------------------------------------

def _number(value, label, minimum=0.0, allow_none=False):
    if value is None or value == "":
        if allow_none:
            return None
        raise InvalidInput(f"{label} is required")
    try:
        n = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{label} must be a number")
    if n < minimum:
        raise InvalidInput(f"{label} must be at least {minimum:g}")
    return n


def _integer(value, label, minimum=1, allow_none=False):
    n = _number(value, label, minimum, allow_none)
    if n is None:
        return None
    if n != int(n):
        raise InvalidInput(f"{label} must be a whole number")
    return int(n)


def _as_bool(value, label):
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise InvalidInput(f"{label} must be a boolean")


def _id_list(value, label):
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidInput(f"{label} must be an array")
    try:
        return sorted({int(v) for v in value})
    except (TypeError, ValueError):
        raise InvalidInput(f"{label} must contain product ids")


def _text(value, label, max_len, required=False):
    if value is not None and not isinstance(value, str):
        raise InvalidInput(f"{label} must be text")
    text = (value or "").strip()
    if required and not text:
        raise InvalidInput(f"{label} is required")
    if len(text) > max_len:
        raise InvalidInput(f"{label} cannot exceed {max_len} characters")
    return text or None


def _apply_payload(c: Coupon, data: dict, partial: bool):
    def given(key):
        return key in data or not partial

    if given("code"):
        code = normalize_code(data.get("code"))
        if not CODE_RE.match(code):
            raise InvalidInput("Coupon code must be 3-20 characters of letters and numbers")
        if c.id is not None and code != c.code and (c.usage_count_total or 0) > 0:
            raise ImmutableAfterUse("Cannot change coupon code after it has been used")
        dup = Coupon.query.filter(Coupon.code == code)
        if c.id is not None:
            dup = dup.filter(Coupon.id != c.id)
        if dup.first():
            raise InvalidInput("Coupon code already exists")
        c.code = code

    if given("name"):
        c.name = _text(data.get("name"), "Coupon name", 100, required=True)
    if "description" in data:
        c.description = _text(data.get("description"), "Description", 500)

    if given("type"):
        ctype = (data.get("type") or PERCENTAGE).strip().lower()
        if ctype not in COUPON_TYPES:
            raise InvalidInput("Invalid coupon type")
        c.ctype = ctype
    if given("value"):
        c.value = _number(data.get("value", 0), "Coupon value")
    if "maxDiscount" in data:
        c.max_discount = _number(data.get("maxDiscount"), "Maximum discount", allow_none=True)
    if "minOrderValue" in data:
        c.min_order_value = _number(data.get("minOrderValue"), "Minimum order value", allow_none=True) or 0.0

    if "usageLimit" in data:
        limits = data.get("usageLimit") or {}
        if not isinstance(limits, dict):
            raise InvalidInput("usageLimit must be an object")
        if "total" in limits:
            c.usage_limit_total = _integer(limits.get("total"), "Total usage limit", allow_none=True)
        if "perUser" in limits:
            c.usage_limit_per_user = _integer(limits.get("perUser"), "Per user limit")

    for key, attr, label in (("validFrom", "valid_from", "Valid from date"),
                             ("validTo", "valid_to", "Valid to date")):
        if key in data:
            parsed = parse_iso8601(data.get(key))
            if parsed is None:
                raise InvalidInput(f"{label} must be a valid date")
            setattr(c, attr, parsed)

    if "applicableProducts" in data:
        scope = data.get("applicableProducts") or {}
        if not isinstance(scope, dict):
            raise InvalidInput("applicableProducts must be an object")
        mode = scope.get("type") or APPLIES_ALL
        if mode not in APPLICABILITY_TYPES:
            raise InvalidInput("Invalid applicable products type")
        categories = scope.get("categories") or []
        if not isinstance(categories, list):
            raise InvalidInput("Categories must be an array")
        bad = [cat for cat in categories if cat not in CATEGORIES]
        if bad:
            raise InvalidInput(f"Invalid category: {bad[0]}")
        c.applies_to = mode
        c.product_ids = _id_list(scope.get("products"), "Products")
        c.categories = sorted(set(categories))
        c.excluded_product_ids = _id_list(scope.get("excludedProducts"), "Excluded products")

    if "buyXGetY" in data:
        bxgy = data.get("buyXGetY") or {}
        if not isinstance(bxgy, dict):
            raise InvalidInput("buyXGetY must be an object")
        c.buy_quantity = _integer(bxgy.get("buyQuantity"), "Buy quantity", allow_none=True)
        c.get_quantity = _integer(bxgy.get("getQuantity"), "Get quantity", allow_none=True)
        c.max_sets = _integer(bxgy.get("maxSets"), "Max sets", allow_none=True)

    for key, attr in (("isActive", "active"), ("isAutomatic", "is_automatic"),
                      ("stackable", "stackable"), ("firstTimeOnly", "first_time_only")):
        if key in data:
            setattr(c, attr, _as_bool(data.get(key), key))

    if "tags" in data:
        tags = data.get("tags") or []
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise InvalidInput("Tags must be an array of strings")
        c.tags = [t.strip() for t in tags if t.strip()]
    if "internalNotes" in data:
        c.internal_notes = _text(data.get("internalNotes"), "Internal notes", 1000)

    _check_rules(c)


def _check_rules(c: Coupon):
    """Cross-field rules, run on the merged state of a create or an update."""
    if c.valid_from is None:
        c.valid_from = utcnow()
    if c.valid_to is None:
        raise InvalidInput("Valid to date is required")
    if c.valid_to <= c.valid_from:
        raise InvalidInput("Valid to date must be after valid from date")

    if c.ctype in (PERCENTAGE, FIXED) and not c.value:
        raise InvalidInput("Coupon value must be greater than 0")
    if c.ctype == PERCENTAGE:
        if not c.max_discount:
            raise InvalidInput("Maximum discount is required for percentage coupons")
        if c.value > 100:
            raise InvalidInput("Percentage value cannot exceed 100")
    if c.ctype == BUY_X_GET_Y:
        if not c.buy_quantity or not c.get_quantity:
            raise InvalidInput("Buy X Get Y details are required for this coupon type")
        c.max_sets = c.max_sets or 1

    if c.applies_to == APPLIES_SPECIFIC and c.product_ids:
        found = get_products_by_ids(c.product_ids)
        if len(found) != len(set(c.product_ids)):
            raise InvalidInput("One or more specified products do not exist")


# ---- admin CRUD --------------------------------------------------------------

def create_coupon(data: dict, created_by=None) -> Coupon:
    c = Coupon(
        ctype=PERCENTAGE, min_order_value=0.0, usage_limit_per_user=1, usage_count_total=0,
        applies_to=APPLIES_ALL, product_ids=[], categories=[], excluded_product_ids=[],
        active=True, is_automatic=False, stackable=False, first_time_only=False, tags=[],
        created_by=created_by,
    )
    _apply_payload(c, data, partial=False)
    db.session.add(c)
    db.session.commit()
    log.info("coupon %s created by user %s", c.code, created_by)
    return c


def update_coupon(c: Coupon, data: dict) -> Coupon:
    try:
        _apply_payload(c, data, partial=True)
    except Exception:
        # keep half-applied fields out of the session
        db.session.rollback()
        raise
    db.session.commit()
    log.info("coupon %s updated", c.code)
    return c


def delete_coupon(c: Coupon):
    if (c.usage_count_total or 0) > 0:
        raise ImmutableAfterUse("Cannot delete coupon that has been used. Consider deactivating it instead.")
    db.session.delete(c)
    db.session.commit()
    log.info("coupon %s deleted", c.code)


def list_coupons(args) -> dict:
    q = Coupon.query
    now = utcnow()
    status = args.get("status")
    if status == "active":
        q = q.filter(Coupon.active.is_(True), Coupon.valid_from <= now, Coupon.valid_to >= now)
    elif status == "inactive":
        q = q.filter(Coupon.active.is_(False))
    elif status == "expired":
        q = q.filter(Coupon.valid_to < now)

    if args.get("type"):
        q = q.filter(Coupon.ctype == args.get("type"))
    search = (args.get("search") or "").strip()
    if search:
        q = q.filter(or_(Coupon.code.ilike(f"%{search}%"), Coupon.name.ilike(f"%{search}%")))

    try:
        page = max(int(args.get("page", 1)), 1)
        limit = min(max(int(args.get("limit", 10)), 1), 100)
    except (TypeError, ValueError):
        raise InvalidInput("page and limit must be numbers")

    paged = q.order_by(Coupon.created_at.desc(), Coupon.id.desc()).paginate(
        page=page, per_page=limit, error_out=False
    )
    return {
        "count": len(paged.items),
        "pagination": {
            "currentPage": page,
            "totalPages": paged.pages,
            "totalItems": paged.total,
            "hasNext": paged.has_next,
            "hasPrev": paged.has_prev,
        },
        "coupons": [c.as_api(include_usage=True) for c in paged.items],
    }


def bulk_operation(operation, coupon_ids, data=None) -> int:
    if operation not in BULK_OPERATIONS or not isinstance(coupon_ids, list) or not coupon_ids:
        raise InvalidInput("Operation and coupon IDs are required")
    ids = _id_list(coupon_ids, "Coupon IDs")
    data = data or {}

    if operation in ("activate", "deactivate"):
        result = db.session.execute(
            update(Coupon).where(Coupon.id.in_(ids))
            .values(active=(operation == "activate"))
            .execution_options(synchronize_session=False)
        )
        modified = result.rowcount
    elif operation == "delete":
        unused = Coupon.query.filter(Coupon.id.in_(ids), Coupon.usage_count_total == 0).all()
        if len(unused) != len(ids):
            raise ImmutableAfterUse("Cannot delete coupons that have been used")
        for c in unused:
            db.session.delete(c)
        modified = len(unused)
    else:
        valid_to = parse_iso8601(data.get("validTo"))
        if valid_to is None:
            raise InvalidInput("New expiry date is required")
        if Coupon.query.filter(Coupon.id.in_(ids), Coupon.valid_from >= valid_to).count():
            raise InvalidInput("Valid to date must be after valid from date")
        result = db.session.execute(
            update(Coupon).where(Coupon.id.in_(ids))
            .values(valid_to=valid_to)
            .execution_options(synchronize_session=False)
        )
        modified = result.rowcount

    db.session.commit()
    db.session.expire_all()
    log.info("bulk %s on coupons %s: %s modified", operation, ids, modified)
    return modified


def coupon_stats(c: Coupon) -> dict:
    rows = db.session.execute(
        select(OrderCoupon, Order)
        .join(Order, Order.id == OrderCoupon.order_id)
        .where(OrderCoupon.coupon_id == c.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
    ).all()
    orders = [o for _, o in rows]
    total_uses = c.usage_count_total or 0
    delivered = sum(1 for o in orders if o.status == "delivered")

    savings = round_money(sum((D(link.discount_amount) for link, _ in rows), ZERO))
    avg_order = round_money(sum((D(o.total) for o in orders), ZERO) / len(orders)) if orders else ZERO
    conversion = round(delivered / total_uses * 100, 2) if total_uses > 0 else 0

    return {
        "totalUses": total_uses,
        "uniqueUsers": len(c.usages),
        "remainingUses": c.remaining_uses,
        "totalSavings": float(savings),
        "averageOrderValue": float(avg_order),
        "conversionRate": conversion,
        "recentOrders": [
            {
                "id": o.id,
                "code": o.code,
                "user": o.user_id,
                "status": o.status,
                "total": float(o.total or 0),
                "discount": float(link.discount_amount or 0),
                "createdAt": iso(o.created_at),
            }
            for link, o in rows[:10]
        ],
    }


# ---- customer-facing ---------------------------------------------------------

def _line_items_from_payload(cart_items) -> list[LineItem]:
    if not cart_items:
        return []
    if not isinstance(cart_items, list):
        raise InvalidInput("Cart items must be an array")
    wanted = []
    for entry in cart_items:
        if not isinstance(entry, dict):
            raise InvalidInput("Cart items must be objects")
        pid = entry.get("product", entry.get("productId"))
        try:
            pid = int(pid)
        except (TypeError, ValueError):
            raise InvalidInput("Invalid product ID")
        qty = _integer(entry.get("quantity", 1), "Quantity")
        wanted.append((pid, qty))

    products = {p.id: p for p in get_products_by_ids(pid for pid, _ in wanted)}
    lines = []
    for pid, qty in wanted:
        p = products.get(pid)
        if p is None:
            raise NotFound(f"Product {pid} not found")
        lines.append(LineItem(product_id=p.id, name=p.name, price=D(p.price), category=p.category, quantity=qty))
    return lines


def validate_code(code, cart_items=None, user_id=None, now=None) -> dict:
    """Preview a coupon against a list of items without touching any state."""
    code = normalize_code(code)
    if not code:
        raise InvalidInput("Coupon code is required")
    coupon = find_active_by_code(code)
    if not coupon:
        raise NotFound("Invalid coupon code")

    items = _line_items_from_payload(cart_items)
    verdict = check_eligibility(coupon, user_id, CartView.from_items(items), now=now, check_contents=bool(items))
    if not verdict.ok:
        raise IneligibleCoupon(verdict.reason)

    quote = verdict.quote
    return {
        "coupon": coupon.summary(),
        "discount": float(quote.discount),
        "discountDetails": quote.details,
        "applicableProducts": [i.as_api() for i in quote.applicable_items],
    }


def record_usage(coupon_id, order_id, user) -> Coupon:
    """Commit one use of a coupon against an order (``POST /coupons/apply``)."""
    if coupon_id is None:
        raise InvalidInput("Coupon ID is required")
    coupon = get_coupon(coupon_id)
    if order_id is not None:
        order = db.session.get(Order, order_id)
        if not order or (order.user_id != user.id and not user.is_admin):
            raise NotFound("Order not found")
    if not coupon.can_user_use(user.id):
        raise IneligibleCoupon("Cannot use this coupon")
    try:
        usage_ledger.use(coupon, user.id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    log.info("coupon %s used by user %s for order %s", coupon.code, user.id, order_id)
    return coupon


def available_for_user(user_id, now=None) -> dict:
    now = now or utcnow()
    is_first_time = count_non_cancelled_orders(user_id) == 0
    usable = [
        c for c in currently_valid_query(now).all()
        if c.can_user_use(user_id, now=now) and (is_first_time or not c.first_time_only)
    ]
    return {
        "availableCoupons": [c.as_api() for c in usable],
        "automaticCoupons": [c.as_api() for c in usable if c.is_automatic],
        "isFirstTimeCustomer": is_first_time,
    }
