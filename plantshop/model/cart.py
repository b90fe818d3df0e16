# plantshop/model/cart.py
from __future__ import annotations
from sqlalchemy.sql import func
from ..extensions import db
from ..utils.dates import utcnow, iso
from ..utils.money import D, round_money, to_float


class Cart(db.Model):
    __tablename__ = "cart"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), unique=True, nullable=False, index=True)

    # cached totals, written by services.totals.recalc_cart
    subtotal = db.Column(db.Float, nullable=False, default=0.0)
    total_discount = db.Column(db.Float, nullable=False, default=0.0)
    final_amount = db.Column(db.Float, nullable=False, default=0.0)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    items = db.relationship(
        "CartItem",
        backref="cart",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CartItem.id.asc()",
    )

    applied_coupons = db.relationship(
        "AppliedCoupon",
        back_populates="cart",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AppliedCoupon.id.asc()",
    )

    def find_item(self, product_id) -> CartItem | None:
        return next((i for i in self.items if i.product_id == product_id), None)

    def find_coupon(self, coupon_id) -> AppliedCoupon | None:
        return next((c for c in self.applied_coupons if c.coupon_id == coupon_id), None)

    def has_coupon(self, coupon_id) -> bool:
        return self.find_coupon(coupon_id) is not None

    def as_api(self):
        return {
            "id": self.id,
            "user": self.user_id,
            "items": [i.as_api() for i in self.items],
            "appliedCoupons": [c.as_api() for c in self.applied_coupons],
            "subtotal": to_float(self.subtotal),
            "totalDiscount": to_float(self.total_discount),
            "finalAmount": to_float(self.final_amount),
            "updatedAt": iso(self.updated_at),
        }


class CartItem(db.Model):
    __tablename__ = "cart_item"

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("cart.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    price = db.Column(db.Float, nullable=False, default=0.0)  # unit price, taken on add and refreshed on quantity update

    created_at = db.Column(db.DateTime, server_default=func.now())

    product = db.relationship("Product", lazy="joined")

    def unit_price_dec(self):
        return D(self.price)

    def line_total_dec(self):
        return round_money(self.unit_price_dec() * int(self.quantity or 0))

    def as_api(self):
        return {
            "id": self.id,
            "productId": self.product_id,
            "name": self.product.name if self.product else None,
            "category": self.product.category if self.product else None,
            "price": to_float(self.price),
            "quantity": self.quantity,
            "lineTotal": float(self.line_total_dec()),
        }


class AppliedCoupon(db.Model):
    __tablename__ = "applied_coupon"
    __table_args__ = (
        db.UniqueConstraint("cart_id", "coupon_id", name="uq_applied_coupon_cart"),
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("cart.id", ondelete="CASCADE"), index=True, nullable=False)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupon.id"), index=True, nullable=False)
    # frozen when the coupon is applied; never re-quoted
    discount_amount = db.Column(db.Float, nullable=False, default=0.0)
    applied_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    cart = db.relationship("Cart", back_populates="applied_coupons")
    coupon = db.relationship("Coupon", lazy="joined")

    def as_api(self):
        return {
            "couponId": self.coupon_id,
            "coupon": self.coupon.summary() if self.coupon else None,
            "discountAmount": to_float(self.discount_amount),
            "appliedAt": iso(self.applied_at),
        }
