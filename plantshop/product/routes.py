import re

from flask import request
from sqlalchemy import or_

from . import bp
from ..errors import InvalidInput, NotFound
from ..extensions import db
from ..model import CATEGORIES, Product
from ..utils.api import ok
from ..utils.decorators import role_required
from ..utils.logger import get_logger

log = get_logger("products")


# ---------- helpers ----------
def slugify(text):
    text = text.strip().lower()
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return text.strip("-")


def _parse_bool(v, default=False):
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in {"1", "true", "yes", "y", "on"}


def _apply(p: Product, data: dict, partial: bool):
    if "name" in data or not partial:
        name = (data.get("name") or "").strip()
        if not name:
            raise InvalidInput("name is required")
        p.name = name
        p.slug = slugify(name)
    if "price" in data or not partial:
        try:
            price = float(data.get("price"))
        except (TypeError, ValueError):
            raise InvalidInput("price must be a number")
        if price < 0:
            raise InvalidInput("price must be >= 0")
        p.price = price
    if "category" in data or not partial:
        if data.get("category") not in CATEGORIES:
            raise InvalidInput(f"category must be one of: {', '.join(CATEGORIES)}")
        p.category = data["category"]
    if "stock" in data:
        try:
            stock = int(data.get("stock"))
        except (TypeError, ValueError):
            raise InvalidInput("stock must be a whole number")
        if stock < 0:
            raise InvalidInput("stock must be >= 0")
        p.stock = stock
    if "isActive" in data:
        p.is_active = _parse_bool(data.get("isActive"), True)


# ---------- routes ----------
@bp.get("")
def list_products():
    q = Product.query.filter(Product.is_active.is_(True))
    category = request.args.get("category")
    if category:
        q = q.filter(Product.category == category)
    search = (request.args.get("search") or "").strip()
    if search:
        q = q.filter(or_(Product.name.ilike(f"%{search}%"), Product.slug.ilike(f"%{search}%")))

    page = max(request.args.get("page", 1, type=int), 1)
    per = min(max(request.args.get("per_page", 20, type=int), 1), 100)
    paged = q.order_by(Product.id.asc()).paginate(page=page, per_page=per, error_out=False)

    return ok("products", {
        "page": page,
        "per_page": per,
        "total": paged.total,
        "items": [p.as_api() for p in paged.items],
    })


@bp.get("/<int:product_id>")
def get_product(product_id: int):
    p = db.session.get(Product, product_id)
    if not p:
        raise NotFound("Product not found")
    return ok("product", p.as_api())


@bp.post("")
@role_required("admin")
def create_product():
    data = request.get_json(silent=True) or {}
    p = Product(stock=0, is_active=True)
    _apply(p, data, partial=False)
    db.session.add(p)
    db.session.commit()
    log.info("product %s created", p.id)
    return ok("Product created", p.as_api(), 201)


@bp.put("/<int:product_id>")
@role_required("admin")
def update_product(product_id: int):
    p = db.session.get(Product, product_id)
    if not p:
        raise NotFound("Product not found")
    data = request.get_json(silent=True) or {}
    try:
        _apply(p, data, partial=True)
    except InvalidInput:
        db.session.rollback()
        raise
    db.session.commit()
    log.info("product %s updated", p.id)
    return ok("Product updated", p.as_api())
