from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text, func
from sqlalchemy.orm import relationship, validates
from .base import Base


class Order(Base):
    """Order aggregate: line snapshots, money breakdown, status and history.

    Rows are never deleted; every change goes through a status transition or
    an append. ``version`` is the ORM version counter, so two writers that
    loaded the same version cannot both flush.
    """

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)
    order_number = Column(String(32), nullable=False, unique=True)
    request_id = Column(String(128), nullable=True, unique=True)
    user_id = Column(String(128), nullable=False, index=True)
    user_email = Column(String(255), nullable=True)
    items = Column(JSON, nullable=False)
    shipping_address = Column(JSON, nullable=False)
    payment_method = Column(String(16), nullable=False)
    items_price = Column(Numeric(14, 2), nullable=False)
    shipping_price = Column(Numeric(14, 2), nullable=False)
    tax_price = Column(Numeric(14, 2), nullable=False)
    discount_amount = Column(Numeric(14, 2), nullable=False, default=0)
    total_price = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    coupon_code = Column(String(64), nullable=True)
    status = Column(String(16), nullable=False, index=True)
    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime, nullable=True)
    payment_result = Column(JSON, nullable=True)
    is_delivered = Column(Boolean, nullable=False, default=False)
    delivered_at = Column(DateTime, nullable=True)
    tracking_info = Column(JSON, nullable=True)
    cancellation = Column(JSON, nullable=True)
    admin_notes = Column(JSON, nullable=False, default=list)
    source = Column(String(16), nullable=False, default="web")
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())
    version = Column(Integer, nullable=False)

    history = relationship(
        "OrderStatusEntry",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusEntry.id",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @validates("order_number")
    def _guard_order_number(self, key, value):
        current = self.order_number
        if current is not None and current != value:
            raise ValueError("order_number is immutable once assigned")
        return value


class OrderStatusEntry(Base):
    """Append-only status history row."""

    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    previous_status = Column(String(16), nullable=True)
    status = Column(String(16), nullable=False)
    actor = Column(String(128), nullable=False)
    note = Column(Text, nullable=True)
    is_system_generated = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False)

    order = relationship("Order", back_populates="history")
