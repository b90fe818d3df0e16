# plantshop/model/product.py
from ..extensions import db
from sqlalchemy.sql import func

CATEGORIES = (
    "plants",
    "tools",
    "organic-supplies",
    "organic-vegetables",
    "gifts",
    "accessories",
)


class Product(db.Model):
    __tablename__ = "product"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    slug = db.Column(db.String(255), index=True)
    price = db.Column(db.Float, nullable=False, default=0.0)
    category = db.Column(db.String(32), nullable=False, index=True)
    stock = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, default=True, index=True)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    @property
    def in_stock(self) -> bool:
        return int(self.stock or 0) > 0

    def as_api(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "price": self.price,
            "category": self.category,
            "stock": self.stock,
            "inStock": self.in_stock,
            "isActive": self.is_active,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
