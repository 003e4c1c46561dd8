"""
Product variants: an option group (e.g. size) and its selectable values.
A value may carry a price modifier and, optionally, its own stock count.
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import relationship
from .base import Base


class ProductOption(Base):
    """Variant group of a product (e.g. size, colour)."""
    __tablename__ = "product_option"

    id = Column(String(36), primary_key=True)
    product_id = Column(String(36), ForeignKey("product.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(128), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    is_required = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    product = relationship("Product", back_populates="options")
    values = relationship("ProductOptionValue", back_populates="option", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "sort_order": self.sort_order,
            "is_required": self.is_required,
            "values": [v.to_dict() for v in sorted(self.values, key=lambda x: x.sort_order)],
        }


class ProductOptionValue(Base):
    """Selectable value of a variant group (e.g. XL)."""
    __tablename__ = "product_option_value"

    id = Column(String(36), primary_key=True)
    option_id = Column(String(36), ForeignKey("product_option.id", ondelete="CASCADE"), nullable=False)
    value = Column(String(255), nullable=False)
    price_modifier = Column(Numeric(14, 2), nullable=False, default=0)
    stock = Column(Integer, nullable=True)  # None: the value draws on the product's stock
    sold_count = Column(Integer, nullable=False, default=0)
    sort_order = Column(Integer, nullable=False, default=0)
    is_available = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    option = relationship("ProductOption", back_populates="values")

    @property
    def tracks_stock(self) -> bool:
        return self.stock is not None

    def to_dict(self):
        return {
            "id": self.id,
            "option_id": self.option_id,
            "value": self.value,
            "price_modifier": float(self.price_modifier or 0),
            "stock": self.stock,
            "sort_order": self.sort_order,
            "is_available": self.is_available,
        }
