"""Cart pricing and coupon rules.

The engine only reads: it resolves every line against the catalog, checks
stock availability and coupon eligibility, and returns a ``PriceQuote``.
Stock is reserved later by the inventory ledger inside the order's unit of
work.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..models.coupon import Coupon, CouponUsage
from ..models.product import Product
from ..utils.clock import utcnow
from .errors import CouponRejected, InsufficientStock, ProductUnavailable
from .inventory import StockLine


ZERO = Decimal("0")


def round_money(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CartLine:
    product_id: str
    quantity: int
    variant: Optional[Dict[str, str]] = None


@dataclass
class PricedLine:
    product_id: str
    name: str
    image: Optional[str]
    category_id: Optional[str]
    quantity: int
    unit_price: Decimal
    discount_percent: int
    variant: Optional[Dict[str, str]] = None
    option_value_id: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_snapshot(self) -> Dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "image": self.image,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
            "discount_percent": self.discount_percent,
            "variant": self.variant,
            "option_value_id": self.option_value_id,
        }


@dataclass
class PriceQuote:
    lines: List[PricedLine]
    items_price: Decimal
    shipping_price: Decimal
    tax_price: Decimal
    discount_amount: Decimal
    total_price: Decimal
    currency: str
    coupon: Optional[Coupon] = field(default=None, repr=False)
    coupon_code: Optional[str] = None

    def stock_lines(self) -> List[StockLine]:
        return [StockLine(l.product_id, l.quantity, l.option_value_id) for l in self.lines]


class PricingEngine:
    def __init__(
        self,
        *,
        shipping_price: Decimal = Decimal("50000"),
        free_shipping_threshold: Decimal = Decimal("500000"),
        tax_rate: Decimal = Decimal("0.09"),
        currency: str = "IRR",
    ):
        self.shipping_price = Decimal(shipping_price)
        self.free_shipping_threshold = Decimal(free_shipping_threshold)
        self.tax_rate = Decimal(tax_rate)
        self.currency = currency

    @classmethod
    def from_config(cls, cfg) -> "PricingEngine":
        return cls(
            shipping_price=cfg.shipping_price,
            free_shipping_threshold=cfg.free_shipping_threshold,
            tax_rate=cfg.tax_rate,
            currency=cfg.currency,
        )

    def price(
        self,
        session: Session,
        lines: Sequence[CartLine],
        *,
        coupon_code: Optional[str] = None,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PriceQuote:
        priced = self._resolve_lines(session, lines)
        items_price = sum((l.line_total for l in priced), ZERO)
        shipping_price = self.shipping_for(items_price)
        tax_price = self.tax_for(items_price)

        coupon = None
        discount = ZERO
        if coupon_code:
            coupon, discount = self.evaluate_coupon(
                session, coupon_code, items_price=items_price, lines=priced, user_id=user_id, now=now
            )

        total = max(ZERO, items_price + shipping_price + tax_price - discount)
        return PriceQuote(
            lines=priced,
            items_price=items_price,
            shipping_price=shipping_price,
            tax_price=tax_price,
            discount_amount=discount,
            total_price=total,
            currency=self.currency,
            coupon=coupon,
            coupon_code=coupon.code if coupon is not None else None,
        )

    def shipping_for(self, items_price: Decimal) -> Decimal:
        if items_price >= self.free_shipping_threshold:
            return ZERO
        return self.shipping_price

    def tax_for(self, items_price: Decimal) -> Decimal:
        return round_money(items_price * self.tax_rate)

    def _resolve_lines(self, session: Session, lines: Sequence[CartLine]) -> List[PricedLine]:
        priced: List[PricedLine] = []
        # requested quantity per stock bucket, so repeated lines are checked together
        demand: Dict[Tuple[str, Optional[str]], int] = {}
        available: Dict[Tuple[str, Optional[str]], int] = {}

        for line in lines:
            product = session.get(Product, line.product_id)
            if product is None:
                raise ProductUnavailable(
                    f"Product {line.product_id} not found",
                    code="product_not_found",
                    status_code=404,
                    product_id=line.product_id,
                )
            if not product.is_active:
                raise ProductUnavailable(
                    f"Product {product.name} is not available",
                    code="product_inactive",
                    product_id=product.id,
                )

            unit_price = product.final_price
            option_value = None
            if line.variant:
                option_value = product.find_option_value(line.variant["name"], line.variant["value"])
                if option_value is None or not option_value.is_available:
                    raise ProductUnavailable(
                        f"Variant {line.variant['name']}={line.variant['value']} of {product.name} is not available",
                        code="variant_unavailable",
                        product_id=product.id,
                        variant=line.variant,
                    )
                unit_price = unit_price + Decimal(str(option_value.price_modifier or 0))

            base_key = (product.id, None)
            demand[base_key] = demand.get(base_key, 0) + line.quantity
            available[base_key] = int(product.stock or 0)
            if option_value is not None and option_value.tracks_stock:
                key = (product.id, option_value.id)
                demand[key] = demand.get(key, 0) + line.quantity
                available[key] = int(option_value.stock)

            priced.append(
                PricedLine(
                    product_id=product.id,
                    name=product.name,
                    image=product.main_image,
                    category_id=product.category_id,
                    quantity=line.quantity,
                    unit_price=unit_price,
                    discount_percent=int(product.discount or 0),
                    variant=line.variant,
                    option_value_id=option_value.id if option_value is not None else None,
                )
            )

        for key, requested in demand.items():
            if requested > available[key]:
                product_id, option_value_id = key
                raise InsufficientStock(
                    f"Insufficient stock for product {product_id}",
                    product_id=product_id,
                    option_value_id=option_value_id,
                    requested=requested,
                    available=available[key],
                )
        return priced

    def evaluate_coupon(
        self,
        session: Session,
        code: str,
        *,
        items_price: Decimal,
        lines: Sequence[PricedLine],
        user_id: Optional[str],
        now: Optional[datetime] = None,
    ) -> Tuple[Coupon, Decimal]:
        """Validate a coupon against the cart and return it with its discount.

        Checks run in a fixed order and the first failure is reported with its
        own rejection code.
        """
        now = now or utcnow()
        normalized = code.strip().upper()
        coupon = session.execute(select(Coupon).where(Coupon.code == normalized)).scalar_one_or_none()
        if coupon is None:
            raise CouponRejected("Coupon not found", code="coupon_not_found", coupon=normalized)
        if not coupon.is_active:
            raise CouponRejected("Coupon is not active", code="coupon_inactive", coupon=normalized)
        if coupon.valid_from is not None and now < coupon.valid_from:
            raise CouponRejected("Coupon is not valid yet", code="coupon_not_started", coupon=normalized)
        if coupon.valid_until is not None and now > coupon.valid_until:
            raise CouponRejected("Coupon has expired", code="coupon_expired", coupon=normalized)
        if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
            raise CouponRejected("Coupon usage limit reached", code="coupon_exhausted", coupon=normalized)

        min_purchase = Decimal(str(coupon.min_purchase or 0))
        if items_price < min_purchase:
            raise CouponRejected(
                f"Minimum purchase for this coupon is {min_purchase}",
                code="coupon_min_purchase",
                coupon=normalized,
                min_purchase=str(min_purchase),
            )

        if coupon.applicable_users and user_id not in coupon.applicable_users:
            raise CouponRejected("Coupon is not available for this user", code="coupon_user_not_eligible", coupon=normalized)

        if coupon.max_uses_per_user is not None and user_id:
            used_by_user = session.execute(
                select(func.count(CouponUsage.id)).where(
                    CouponUsage.coupon_id == coupon.id, CouponUsage.user_id == user_id
                )
            ).scalar_one()
            if used_by_user >= coupon.max_uses_per_user:
                raise CouponRejected("Coupon already used", code="coupon_user_limit", coupon=normalized)

        if not self._coupon_applies(coupon, lines):
            raise CouponRejected("Coupon does not apply to these products", code="coupon_not_applicable", coupon=normalized)

        return coupon, self.discount_for(coupon, items_price)

    @staticmethod
    def _coupon_applies(coupon: Coupon, lines: Sequence[PricedLine]) -> bool:
        products = set(coupon.applicable_products or [])
        categories = set(coupon.applicable_categories or [])
        if not products and not categories:
            return True
        return any(l.product_id in products or (l.category_id and l.category_id in categories) for l in lines)

    @staticmethod
    def discount_for(coupon: Coupon, items_price: Decimal) -> Decimal:
        value = Decimal(str(coupon.value))
        if coupon.type == "percentage":
            discount = round_money(items_price * value / Decimal(100))
            if coupon.max_discount is not None:
                discount = min(discount, Decimal(str(coupon.max_discount)))
            return discount
        return min(value, items_price)
