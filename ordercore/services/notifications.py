"""Fire-and-forget delivery of order events.

Dispatchers run after the order transaction has committed; callers wrap them
in ``best_effort`` so a failure here never reaches the customer.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict

from sqlalchemy.orm import Session

from ..db.unit_of_work import UnitOfWork
from ..models.notification import Notification
from ..utils.clock import utcnow
from .logging import log_event


ORDER_CREATED = "order.created"
ORDER_STATUS_CHANGED = "order.status_changed"
ORDER_PAYMENT_CONFIRMED = "order.payment_confirmed"
ORDER_CANCELLED = "order.cancelled"

_TITLES = {
    ORDER_CREATED: ("Order placed", "Your order {order_number} has been placed."),
    ORDER_STATUS_CHANGED: ("Order updated", "Order {order_number} is now {status}."),
    ORDER_PAYMENT_CONFIRMED: ("Payment received", "Payment for order {order_number} was confirmed."),
    ORDER_CANCELLED: ("Order cancelled", "Order {order_number} was cancelled."),
}


class NotificationDispatcher(ABC):
    @abstractmethod
    def dispatch(self, event: str, payload: Dict[str, Any]) -> None:
        ...


class LoggingNotifier(NotificationDispatcher):
    def dispatch(self, event: str, payload: Dict[str, Any]) -> None:
        log_event("info", "notification.dispatched", notification=event, **payload)


class StoredNotifier(NotificationDispatcher):
    """Persists a user-facing notification row in its own unit of work."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def dispatch(self, event: str, payload: Dict[str, Any]) -> None:
        user_id = payload.get("user_id")
        if not user_id or event not in _TITLES:
            return
        title, template = _TITLES[event]
        with UnitOfWork(self._session_factory) as uow:
            uow.session.add(
                Notification(
                    user_id=user_id,
                    type=event,
                    title=title,
                    message=template.format(
                        order_number=payload.get("order_number", ""),
                        status=payload.get("status", ""),
                    ),
                    data=payload,
                    is_read=False,
                    created_at=utcnow(),
                )
            )
            uow.commit()
        log_event("info", "notification.stored", notification=event, user_id=user_id)
