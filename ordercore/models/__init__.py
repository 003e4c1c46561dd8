from .base import Base
from .category import Category
from .coupon import Coupon, CouponUsage
from .notification import Notification
from .order import Order, OrderStatusEntry
from .product import Product
from .product_option import ProductOption, ProductOptionValue

__all__ = [
    "Base",
    "Category",
    "Coupon",
    "CouponUsage",
    "Notification",
    "Order",
    "OrderStatusEntry",
    "Product",
    "ProductOption",
    "ProductOptionValue",
]
