from ..extensions import db
from ..utils.dates import utcnow, iso

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), unique=True, index=True)  # e.g., "ORD-20251022-0001"
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    status = db.Column(db.String(20), default="pending", index=True)

    shipping_address = db.Column(db.JSON)

    # Money snapshot
    subtotal = db.Column(db.Numeric(12, 2))
    discount_total = db.Column(db.Numeric(12, 2))
    total = db.Column(db.Numeric(12, 2))

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    items = db.relationship(
        "OrderItem",
        backref="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id.asc()",
    )
    coupons = db.relationship(
        "OrderCoupon",
        backref="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def as_api(self):
        return {
            "id": self.id,
            "code": self.code,
            "user": self.user_id,
            "status": self.status,
            "shippingAddress": self.shipping_address,
            "money": {
                "subtotal": float(self.subtotal or 0),
                "discountTotal": float(self.discount_total or 0),
                "total": float(self.total or 0),
            },
            "items": [i.as_api() for i in self.items],
            "coupons": [c.as_api() for c in self.coupons],
            "createdAt": iso(self.created_at),
        }


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, index=True)
    name = db.Column(db.String(255))
    unit_price = db.Column(db.Numeric(12, 2))
    quantity = db.Column(db.Integer, nullable=False)
    line_total = db.Column(db.Numeric(12, 2))

    def as_api(self):
        return {
            "productId": self.product_id,
            "name": self.name,
            "unitPrice": float(self.unit_price or 0),
            "quantity": self.quantity,
            "lineTotal": float(self.line_total or 0),
        }


class OrderCoupon(db.Model):
    """Coupon discount carried from the cart into an order; feeds coupon stats."""
    __tablename__ = "order_coupons"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupon.id"), nullable=False, index=True)
    code = db.Column(db.String(20))
    discount_amount = db.Column(db.Numeric(12, 2))

    def as_api(self):
        return {
            "couponId": self.coupon_id,
            "code": self.code,
            "discountAmount": float(self.discount_amount or 0),
        }
