# --- plantshop/model/coupon.py ---

from sqlalchemy.sql import func
from ..extensions import db
from ..utils.dates import utcnow, iso

PERCENTAGE = "percentage"
FIXED = "fixed"
FREE_SHIPPING = "free_shipping"
BUY_X_GET_Y = "buy_x_get_y"
COUPON_TYPES = (PERCENTAGE, FIXED, FREE_SHIPPING, BUY_X_GET_Y)

# applicableProducts.type; "all" and "exclude" resolve the same way but stay distinct labels
APPLIES_ALL = "all"
APPLIES_SPECIFIC = "specific"
APPLIES_CATEGORY = "category"
APPLIES_EXCLUDE = "exclude"
APPLICABILITY_TYPES = (APPLIES_ALL, APPLIES_SPECIFIC, APPLIES_CATEGORY, APPLIES_EXCLUDE)


class Coupon(db.Model):
    __tablename__ = "coupon"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=True)

    # percentage | fixed | free_shipping | buy_x_get_y
    ctype = db.Column(db.String(16), nullable=False, default=PERCENTAGE, index=True)
    value = db.Column(db.Float, nullable=False, default=0.0)
    max_discount = db.Column(db.Float, nullable=True)          # cap for percentage coupons
    min_order_value = db.Column(db.Float, nullable=False, default=0.0)

    usage_limit_total = db.Column(db.Integer, nullable=True)   # None = unlimited
    usage_limit_per_user = db.Column(db.Integer, nullable=False, default=1)
    usage_count_total = db.Column(db.Integer, nullable=False, default=0)

    valid_from = db.Column(db.DateTime, nullable=False, default=utcnow)
    valid_to = db.Column(db.DateTime, nullable=False)

    applies_to = db.Column(db.String(16), nullable=False, default=APPLIES_ALL, index=True)
    product_ids = db.Column(db.JSON, nullable=False, default=list)
    categories = db.Column(db.JSON, nullable=False, default=list)
    excluded_product_ids = db.Column(db.JSON, nullable=False, default=list)

    # buy_x_get_y only
    buy_quantity = db.Column(db.Integer, nullable=True)
    get_quantity = db.Column(db.Integer, nullable=True)
    max_sets = db.Column(db.Integer, nullable=True)

    active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    is_automatic = db.Column(db.Boolean, nullable=False, default=False)
    stackable = db.Column(db.Boolean, nullable=False, default=False)
    first_time_only = db.Column(db.Boolean, nullable=False, default=False)

    tags = db.Column(db.JSON, nullable=False, default=list)
    internal_notes = db.Column(db.String(1000), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    usages = db.relationship(
        "CouponUsage",
        back_populates="coupon",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CouponUsage.id.asc()",
    )

    # --------- derived state ----------
    def is_valid_at(self, now=None) -> bool:
        now = now or utcnow()
        if not self.active:
            return False
        if now < self.valid_from or now > self.valid_to:
            return False
        return not self.usage_exhausted

    @property
    def is_currently_valid(self) -> bool:
        return self.is_valid_at()

    @property
    def usage_exhausted(self) -> bool:
        if self.usage_limit_total is None:
            return False
        return (self.usage_count_total or 0) >= self.usage_limit_total

    @property
    def remaining_uses(self):
        if self.usage_limit_total is None:
            return None
        return max(0, self.usage_limit_total - (self.usage_count_total or 0))

    def user_use_count(self, user_id) -> int:
        row = next((u for u in self.usages if u.user_id == user_id), None)
        return row.count if row else 0

    def can_user_use(self, user_id, now=None) -> bool:
        if not self.is_valid_at(now):
            return False
        return self.user_use_count(user_id) < (self.usage_limit_per_user or 1)

    # --------- serialisation ----------
    def summary(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "type": self.ctype,
            "value": self.value,
            "description": self.description,
        }

    def as_api(self, include_usage=False):
        data = {
            **self.summary(),
            "maxDiscount": self.max_discount,
            "minOrderValue": self.min_order_value,
            "usageLimit": {
                "total": self.usage_limit_total,
                "perUser": self.usage_limit_per_user,
            },
            "validFrom": iso(self.valid_from),
            "validTo": iso(self.valid_to),
            "applicableProducts": {
                "type": self.applies_to,
                "products": list(self.product_ids or []),
                "categories": list(self.categories or []),
                "excludedProducts": list(self.excluded_product_ids or []),
            },
            "buyXGetY": {
                "buyQuantity": self.buy_quantity,
                "getQuantity": self.get_quantity,
                "maxSets": self.max_sets,
            } if self.ctype == BUY_X_GET_Y else None,
            "isActive": self.active,
            "isAutomatic": self.is_automatic,
            "stackable": self.stackable,
            "firstTimeOnly": self.first_time_only,
            "tags": list(self.tags or []),
            "isCurrentlyValid": self.is_currently_valid,
            "remainingUses": self.remaining_uses,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }
        if include_usage:
            data["usageCount"] = {
                "total": self.usage_count_total,
                "byUser": [u.as_api() for u in self.usages],
            }
            data["internalNotes"] = self.internal_notes
            data["createdBy"] = self.created_by
        return data


class CouponUsage(db.Model):
    """Per-user usage counter; rows are written by the usage ledger only."""
    __tablename__ = "coupon_usage"
    __table_args__ = (
        db.UniqueConstraint("coupon_id", "user_id", name="uq_coupon_usage_user"),
    )

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupon.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True, nullable=False)
    count = db.Column(db.Integer, nullable=False, default=0)
    last_used = db.Column(db.DateTime, nullable=True)

    coupon = db.relationship("Coupon", back_populates="usages")

    def as_api(self):
        return {
            "user": self.user_id,
            "count": self.count,
            "lastUsed": iso(self.last_used),
        }
