from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text, func
from sqlalchemy.orm import relationship
from .base import Base


class Product(Base):
    """Catalog product and its stock record.

    ``stock``, ``sold_count`` and ``version`` are written only by the
    inventory ledger, which bumps ``version`` on every stock change.
    """

    __tablename__ = "product"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),
        CheckConstraint("sold_count >= 0", name="ck_product_sold_non_negative"),
    )

    id = Column(String(36), primary_key=True)
    sku = Column(String(128), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(14, 2), nullable=False)
    discount = Column(Integer, nullable=False, default=0)  # percent, 0-100
    currency = Column(String(3), nullable=False)
    images = Column(JSON, nullable=True)
    category_id = Column(String(36), ForeignKey("category.id"), nullable=True)
    stock = Column(Integer, nullable=False, default=0)
    sold_count = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())

    options = relationship(
        "ProductOption",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductOption.sort_order",
    )

    @property
    def final_price(self) -> Decimal:
        """Price after the product-level percentage discount, rounded to whole units."""
        price = Decimal(str(self.price or 0))
        discount = int(self.discount or 0)
        if discount <= 0:
            return price.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return (price * (Decimal(100) - discount) / Decimal(100)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)

    @property
    def main_image(self):
        images = self.images or []
        return images[0] if images else None

    def find_option_value(self, name: str, value: str):
        for option in self.options:
            if option.name != name:
                continue
            for candidate in option.values:
                if candidate.value == value:
                    return candidate
        return None
