from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text, func
from .base import Base


class Coupon(Base):
    __tablename__ = "coupon"

    id = Column(String(36), primary_key=True)
    code = Column(String(64), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    type = Column(String(16), nullable=False)  # percentage | fixed
    value = Column(Numeric(14, 2), nullable=False)
    max_discount = Column(Numeric(14, 2), nullable=True)
    min_purchase = Column(Numeric(14, 2), nullable=False, default=0)
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    max_uses_per_user = Column(Integer, nullable=True, default=1)
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    applicable_categories = Column(JSON, nullable=True)
    applicable_products = Column(JSON, nullable=True)
    applicable_users = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())


class CouponUsage(Base):
    """Usage ledger; one row per order that actually applied the coupon."""

    __tablename__ = "coupon_usage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    coupon_id = Column(String(36), ForeignKey("coupon.id"), nullable=False, index=True)
    user_id = Column(String(128), nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, unique=True)
    discount_amount = Column(Numeric(14, 2), nullable=False)
    used_at = Column(DateTime, nullable=False)
