"""Stock reservation and restoration.

The ledger is the only writer of ``Product.stock``/``sold_count`` and of
variant stock. Every product row carries a ``version`` counter; a write is a
compare-and-swap ``UPDATE ... WHERE version = :seen`` so two contending
writers can never both apply a decrement computed from the same snapshot.
The ledger never commits: the caller's unit of work decides.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..models.product import Product
from ..models.product_option import ProductOption, ProductOptionValue
from ..utils.clock import utcnow
from .errors import InsufficientStock, ProductUnavailable, StockConflict
from .logging import log_event


@dataclass(frozen=True)
class StockLine:
    product_id: str
    quantity: int
    option_value_id: Optional[str] = None


@dataclass
class ProductStock:
    product_id: str
    stock: int
    sold_count: int
    version: int
    options: Dict[str, Optional[int]]  # option value id -> own stock (None: shares product stock)
    option_sold: Dict[str, int]


@dataclass
class _Demand:
    quantity: int
    options: Dict[str, int]


class InventoryLedger:
    def __init__(self, *, max_attempts: int = 3):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts

    def reserve(self, session: Session, lines: Iterable[StockLine]) -> None:
        """Decrement stock for every line, or for none of them."""
        demand = self._merge(lines)
        # check every product before touching any of them
        snapshots = {pid: self._read_product(session, pid) for pid in demand}
        for pid, need in demand.items():
            self._check(snapshots[pid], need)
        for pid, need in demand.items():
            self._apply(session, pid, need, snapshots[pid], direction=-1)
        log_event("debug", "inventory.reserved", products=list(demand), units=sum(d.quantity for d in demand.values()))

    def restore(self, session: Session, lines: Iterable[StockLine]) -> None:
        """Give back stock taken by ``reserve``; sold counters never drop below zero."""
        demand = self._merge(lines)
        snapshots = {pid: self._read_product(session, pid) for pid in demand}
        for pid, need in demand.items():
            self._apply(session, pid, need, snapshots[pid], direction=1)
        log_event("debug", "inventory.restored", products=list(demand), units=sum(d.quantity for d in demand.values()))

    @staticmethod
    def _merge(lines: Iterable[StockLine]) -> Dict[str, _Demand]:
        merged: Dict[str, _Demand] = {}
        for line in lines:
            if line.quantity < 1:
                raise ValueError("stock line quantity must be >= 1")
            entry = merged.setdefault(line.product_id, _Demand(0, {}))
            entry.quantity += line.quantity
            if line.option_value_id:
                entry.options[line.option_value_id] = entry.options.get(line.option_value_id, 0) + line.quantity
        # fixed order keeps concurrent writers from locking rows in opposite orders
        return dict(sorted(merged.items()))

    def _read_product(self, session: Session, product_id: str) -> ProductStock:
        # Core selects bypass the identity map and always see the stored row
        row = session.execute(
            select(Product.stock, Product.sold_count, Product.version).where(Product.id == product_id)
        ).first()
        if row is None:
            raise ProductUnavailable(
                f"Product {product_id} not found",
                code="product_not_found",
                status_code=404,
                product_id=product_id,
            )
        option_rows = session.execute(
            select(ProductOptionValue.id, ProductOptionValue.stock, ProductOptionValue.sold_count)
            .join(ProductOption, ProductOption.id == ProductOptionValue.option_id)
            .where(ProductOption.product_id == product_id)
        ).all()
        return ProductStock(
            product_id=product_id,
            stock=int(row.stock),
            sold_count=int(row.sold_count),
            version=int(row.version),
            options={r.id: r.stock for r in option_rows},
            option_sold={r.id: int(r.sold_count or 0) for r in option_rows},
        )

    @staticmethod
    def _check(snapshot: ProductStock, need: _Demand) -> None:
        if snapshot.stock < need.quantity:
            raise InsufficientStock(
                f"Insufficient stock for product {snapshot.product_id}",
                product_id=snapshot.product_id,
                requested=need.quantity,
                available=snapshot.stock,
            )
        for option_id, qty in need.options.items():
            if option_id not in snapshot.options:
                raise ProductUnavailable(
                    f"Variant {option_id} does not belong to product {snapshot.product_id}",
                    code="variant_unavailable",
                    product_id=snapshot.product_id,
                )
            own = snapshot.options[option_id]
            if own is not None and own < qty:
                raise InsufficientStock(
                    f"Insufficient stock for product {snapshot.product_id}",
                    product_id=snapshot.product_id,
                    option_value_id=option_id,
                    requested=qty,
                    available=own,
                )

    def _apply(self, session: Session, product_id: str, need: _Demand, snapshot: ProductStock, *, direction: int) -> None:
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                snapshot = self._read_product(session, product_id)
                if direction < 0:
                    self._check(snapshot, need)

            if direction < 0:
                new_stock = snapshot.stock - need.quantity
                new_sold = snapshot.sold_count + need.quantity
            else:
                new_stock = snapshot.stock + need.quantity
                new_sold = max(0, snapshot.sold_count - need.quantity)

            result = session.execute(
                update(Product)
                .where(Product.id == product_id, Product.version == snapshot.version)
                .values(stock=new_stock, sold_count=new_sold, version=snapshot.version + 1, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                self._apply_options(session, snapshot, need, direction)
                return
            log_event("info", "inventory.cas_retry", product_id=product_id, attempt=attempt, seen_version=snapshot.version)

        log_event("warning", "inventory.conflict", product_id=product_id, attempts=self.max_attempts)
        raise StockConflict(
            "Stock is being updated concurrently, please retry",
            product_id=product_id,
            attempts=self.max_attempts,
        )

    @staticmethod
    def _apply_options(session: Session, snapshot: ProductStock, need: _Demand, direction: int) -> None:
        # serialized by the product row CAS above
        for option_id, qty in need.options.items():
            sold = snapshot.option_sold.get(option_id, 0)
            values = {"sold_count": sold + qty if direction < 0 else max(0, sold - qty)}
            own = snapshot.options.get(option_id)
            if own is not None:
                values["stock"] = own - qty if direction < 0 else own + qty
            session.execute(
                update(ProductOptionValue)
                .where(ProductOptionValue.id == option_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

    @staticmethod
    def lines_from_snapshot(items: List[dict]) -> List[StockLine]:
        return [
            StockLine(it["product_id"], int(it["quantity"]), it.get("option_value_id"))
            for it in items or []
        ]
