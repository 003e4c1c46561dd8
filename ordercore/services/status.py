from datetime import datetime
from typing import Dict, FrozenSet, Optional

from ..models.order import Order, OrderStatusEntry
from ..utils.clock import utcnow
from .errors import IllegalTransition


PENDING = "pending"
PROCESSING = "processing"
CONFIRMED = "confirmed"
SHIPPED = "shipped"
DELIVERED = "delivered"
CANCELLED = "cancelled"
FAILED = "failed"

STATUSES = (PENDING, PROCESSING, CONFIRMED, SHIPPED, DELIVERED, CANCELLED, FAILED)

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PENDING: frozenset({PROCESSING, CANCELLED, FAILED}),
    PROCESSING: frozenset({CONFIRMED, CANCELLED}),
    CONFIRMED: frozenset({SHIPPED, CANCELLED}),
    SHIPPED: frozenset({DELIVERED}),
    DELIVERED: frozenset(),
    CANCELLED: frozenset(),
    FAILED: frozenset(),
}

TERMINAL = frozenset(s for s, targets in TRANSITIONS.items() if not targets)
CANCELLABLE = frozenset(s for s, targets in TRANSITIONS.items() if CANCELLED in targets)

SYSTEM_ACTOR = "system"


class StatusStateMachine:
    """Legal order status moves; every accepted move appends a history entry."""

    def can_transition(self, current: str, new_status: str) -> bool:
        return new_status in TRANSITIONS.get(current, frozenset())

    def can_cancel(self, order: Order) -> bool:
        return order.status in CANCELLABLE

    def start(self, order: Order, *, actor: str, now: Optional[datetime] = None) -> OrderStatusEntry:
        """Put a new order in ``pending`` and record the initial entry."""
        now = now or utcnow()
        order.status = PENDING
        entry = OrderStatusEntry(
            previous_status=None,
            status=PENDING,
            actor=actor,
            note="Order placed",
            is_system_generated=False,
            created_at=now,
        )
        order.history.append(entry)
        return entry

    def transition(
        self,
        order: Order,
        new_status: str,
        *,
        actor: str,
        note: Optional[str] = None,
        system: bool = False,
        now: Optional[datetime] = None,
    ) -> OrderStatusEntry:
        current = order.status
        if not self.can_transition(current, new_status):
            raise IllegalTransition(
                f"Cannot move order from {current} to {new_status}",
                order_id=order.id,
                current_status=current,
                requested_status=new_status,
            )
        now = now or utcnow()
        order.status = new_status
        order.updated_at = now
        if new_status == DELIVERED:
            order.is_delivered = True
            order.delivered_at = now
        elif new_status == CANCELLED:
            cancellation = dict(order.cancellation or {})
            cancellation.setdefault("cancelled_at", now.isoformat())
            order.cancellation = cancellation

        entry = OrderStatusEntry(
            previous_status=current,
            status=new_status,
            actor=SYSTEM_ACTOR if system else actor,
            note=note,
            is_system_generated=system,
            created_at=now,
        )
        order.history.append(entry)
        return entry

    def mark_paid(self, order: Order, payment_result: dict, *, now: Optional[datetime] = None) -> bool:
        """Set the paid flag once. Returns False when the order was already paid."""
        if order.is_paid:
            return False
        now = now or utcnow()
        order.is_paid = True
        order.paid_at = now
        order.payment_result = dict(payment_result or {})
        order.updated_at = now
        return True
