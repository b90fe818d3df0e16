# ------ plantshop/model/__init__.py ------

from .user import User
from .product import Product, CATEGORIES
from .coupon import Coupon, CouponUsage
from .cart import Cart, CartItem, AppliedCoupon
from .order import Order, OrderItem, OrderCoupon, ORDER_STATUSES

__all__ = [
    "User",
    "Product",
    "CATEGORIES",
    "Coupon",
    "CouponUsage",
    "Cart",
    "CartItem",
    "AppliedCoupon",
    "Order",
    "OrderItem",
    "OrderCoupon",
    "ORDER_STATUSES",
]
