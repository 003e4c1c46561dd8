from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional
from uuid import uuid4

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..db.unit_of_work import UnitOfWork
from ..models.coupon import Coupon, CouponUsage
from ..models.order import Order
from ..utils.clock import generate_order_number, utcnow
from ..utils.dto import to_order_dto, to_order_summary, to_tracking_dto
from ..utils.pagination import normalize_paging, page_envelope
from ..utils.validators import validate_note, validate_order_request
from . import cache as cache_keys
from . import notifications as events
from .cache import Cache, InProcessCache
from .errors import (
    CouponRejected,
    IllegalTransition,
    OrderConflict,
    OrderError,
    OrderFailure,
    OrderNotCancellable,
    OrderNotFound,
    OrderNotPayable,
    PaymentAmbiguous,
    PaymentRejected,
    ValidationFailed,
)
from .inventory import InventoryLedger
from .logging import log_event
from .notifications import LoggingNotifier, NotificationDispatcher
from .payment_gateway import FakeGateway, PaymentGateway, PaymentResult
from .pricing import CartLine, PricingEngine
from .side_effects import best_effort
from .status import (
    CANCELLED,
    FAILED,
    PENDING,
    PROCESSING,
    SHIPPED,
    STATUSES,
    SYSTEM_ACTOR,
    StatusStateMachine,
)


_INTEGRITY_CONFLICT = "integrity_conflict"
_ORDER_NUMBER_ATTEMPTS = 5


class OrderService:
    """Order creation, cancellation, payment and status changes.

    Each mutating call runs in exactly one ``UnitOfWork``. Notifications and
    cache invalidation happen only after that unit has committed and go
    through ``best_effort``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        pricing: Optional[PricingEngine] = None,
        ledger: Optional[InventoryLedger] = None,
        status_machine: Optional[StatusStateMachine] = None,
        notifier: Optional[NotificationDispatcher] = None,
        cache: Optional[Cache] = None,
        gateway: Optional[PaymentGateway] = None,
        payment_methods=("online", "cod", "wallet"),
        order_number_prefix: str = "WF",
    ):
        self._session_factory = session_factory
        self.pricing = pricing if pricing is not None else PricingEngine()
        self.ledger = ledger if ledger is not None else InventoryLedger()
        self.status_machine = status_machine if status_machine is not None else StatusStateMachine()
        self.notifier = notifier if notifier is not None else LoggingNotifier()
        self.cache = cache if cache is not None else InProcessCache()
        self.gateway = gateway if gateway is not None else FakeGateway()
        self.payment_methods = tuple(payment_methods)
        self.order_number_prefix = order_number_prefix

    @contextmanager
    def _transaction(self, operation: str, **context) -> Iterator[UnitOfWork]:
        try:
            with UnitOfWork(self._session_factory) as uow:
                yield uow
        except OrderError:
            raise
        except StaleDataError as exc:
            log_event("warning", "order.conflict", operation=operation, **context)
            raise OrderConflict("Order was modified concurrently, please retry", **context) from exc
        except IntegrityError as exc:
            log_event("warning", "order.integrity_conflict", exc=exc, operation=operation, **context)
            raise OrderConflict("Conflicting write, please retry", code=_INTEGRITY_CONFLICT, **context) from exc
        except SQLAlchemyError as exc:
            log_event("error", "order.unit_of_work_failed", exc=exc, operation=operation, **context)
            raise OrderFailure("Order operation failed", operation=operation) from exc

    @staticmethod
    def _load(session: Session, order_id: str, *, for_update: bool = False) -> Order:
        stmt = select(Order).where(Order.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        order = session.execute(stmt).scalar_one_or_none()
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found", order_id=order_id)
        return order

    # ------------------------------------------------------------------
    # creation

    def create_order(
        self,
        *,
        user_id: str,
        items,
        shipping_address,
        payment_method,
        coupon_code: Optional[str] = None,
        request_id: Optional[str] = None,
        user_email: Optional[str] = None,
        source: str = "web",
    ) -> Dict:
        """Price, reserve and persist a new ``pending`` order.

        Returns ``{order_id, order_number, total_price, payment_method}``.
        Repeating a call with the same ``request_id`` returns the order the
        first call created and leaves stock alone.
        """
        raw_lines, address, method = validate_order_request(
            user_id=user_id,
            items=items,
            shipping_address=shipping_address,
            payment_method=payment_method,
            allowed_methods=self.payment_methods,
        )
        if coupon_code is not None and not isinstance(coupon_code, str):
            raise ValidationFailed("couponCode must be a string", field="couponCode")
        coupon_code = (coupon_code or "").strip() or None
        lines = [CartLine(l["product_id"], l["quantity"], l["variant"]) for l in raw_lines]

        if request_id:
            existing = self._find_by_request_id(request_id, user_id)
            if existing is not None:
                log_event("info", "order.create_replayed", request_id=request_id, order_id=existing["order_id"])
                return existing

        try:
            with self._transaction("create_order", user_id=user_id) as uow:
                session = uow.session
                quote = self.pricing.price(session, lines, coupon_code=coupon_code, user_id=user_id)
                self.ledger.reserve(session, quote.stock_lines())

                now = utcnow()
                order = Order(
                    id=str(uuid4()),
                    order_number=self._new_order_number(session, now),
                    request_id=request_id,
                    user_id=user_id,
                    user_email=user_email,
                    items=[l.to_snapshot() for l in quote.lines],
                    shipping_address=address,
                    payment_method=method,
                    items_price=quote.items_price,
                    shipping_price=quote.shipping_price,
                    tax_price=quote.tax_price,
                    discount_amount=quote.discount_amount,
                    total_price=quote.total_price,
                    currency=quote.currency,
                    coupon_code=quote.coupon_code,
                    is_paid=False,
                    is_delivered=False,
                    admin_notes=[],
                    source=source,
                    created_at=now,
                    updated_at=now,
                )
                self.status_machine.start(order, actor=user_id, now=now)
                session.add(order)
                session.flush()

                if quote.coupon is not None:
                    self._record_coupon_usage(session, quote.coupon, order, now)

                uow.commit()
                result = {
                    "order_id": order.id,
                    "order_number": order.order_number,
                    "total_price": float(order.total_price),
                    "payment_method": order.payment_method,
                }
        except OrderConflict as exc:
            if request_id and exc.code == _INTEGRITY_CONFLICT:
                existing = self._find_by_request_id(request_id, user_id)
                if existing is not None:
                    return existing
            raise

        log_event(
            "info",
            "order.created",
            user_id=user_id,
            items=len(lines),
            total=result["total_price"],
            coupon=quote.coupon_code,
        )
        self._after_commit(
            events.ORDER_CREATED,
            {"user_id": user_id, **result, "status": PENDING},
            user_id=user_id,
            product_ids=[l.product_id for l in quote.lines],
        )
        return result

    def _find_by_request_id(self, request_id: str, user_id: str) -> Optional[Dict]:
        with UnitOfWork(self._session_factory) as uow:
            order = uow.session.execute(select(Order).where(Order.request_id == request_id)).scalar_one_or_none()
            if order is None:
                return None
            if order.user_id != user_id:
                raise OrderConflict(
                    "Idempotency key was already used by another request",
                    code="idempotency_key_reused",
                    request_id=request_id,
                )
            return {
                "order_id": order.id,
                "order_number": order.order_number,
                "total_price": float(order.total_price),
                "payment_method": order.payment_method,
            }

    def _new_order_number(self, session: Session, now) -> str:
        for _ in range(_ORDER_NUMBER_ATTEMPTS):
            candidate = generate_order_number(self.order_number_prefix, now)
            taken = session.execute(select(Order.id).where(Order.order_number == candidate)).first()
            if taken is None:
                return candidate
        raise OrderFailure("Could not allocate a unique order number")

    @staticmethod
    def _record_coupon_usage(session: Session, coupon: Coupon, order: Order, now) -> None:
        # conditional increment; a coupon that ran out after pricing fails the whole unit
        result = session.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon.id,
                or_(Coupon.max_uses.is_(None), Coupon.used_count < Coupon.max_uses),
            )
            .values(used_count=Coupon.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise CouponRejected("Coupon usage limit reached", code="coupon_exhausted", coupon=coupon.code)
        session.add(
            CouponUsage(
                coupon_id=coupon.id,
                user_id=order.user_id,
                order_id=order.id,
                discount_amount=order.discount_amount,
                used_at=now,
            )
        )
        session.flush()

    # ------------------------------------------------------------------
    # cancellation

    def cancel_order(
        self,
        order_id: str,
        *,
        actor: str,
        reason: Optional[str] = None,
        cancelled_by: str = "user",
        user_id: Optional[str] = None,
    ) -> Dict:
        """Cancel, restore reserved stock and record who cancelled and why.

        The status move, the stock restoration and the metadata commit
        together; if restoring stock fails, the order stays as it was.
        """
        reason = validate_note(reason, field="reason", max_length=500, required=False)
        with self._transaction("cancel_order", order_id=order_id) as uow:
            session = uow.session
            order = self._load(session, order_id, for_update=True)
            if user_id is not None and order.user_id != user_id:
                raise OrderNotFound(f"Order {order_id} not found", order_id=order_id)
            if not self.status_machine.can_cancel(order):
                raise OrderNotCancellable(
                    f"Order in status {order.status} cannot be cancelled",
                    order_id=order.id,
                    status=order.status,
                )

            now = utcnow()
            self.status_machine.transition(order, CANCELLED, actor=actor, note=reason, now=now)
            self.ledger.restore(session, self.ledger.lines_from_snapshot(order.items))

            cancellation = dict(order.cancellation or {})
            cancellation.update({"cancelled_by": cancelled_by, "actor": actor, "reason": reason})
            if order.is_paid:
                cancellation.update({"refund_status": "pending", "refund_amount": str(order.total_price)})
            order.cancellation = cancellation

            uow.commit()
            dto = to_order_dto(order)

        log_event("info", "order.cancelled", order_id=order_id, actor=actor, cancelled_by=cancelled_by, refund=dto["is_paid"])
        self._after_commit(
            events.ORDER_CANCELLED,
            {"user_id": dto["user_id"], "order_id": order_id, "order_number": dto["order_number"], "status": CANCELLED, "reason": reason},
            user_id=dto["user_id"],
            product_ids=[it["product_id"] for it in dto["items"]],
        )
        return dto

    # ------------------------------------------------------------------
    # payment

    def confirm_payment(self, order_id: str, gateway_result: PaymentResult) -> Dict:
        """Record the gateway's verdict on an order.

        A second confirmation of an already paid order changes nothing and
        reports success. A failed payment moves a pending order to ``failed``,
        returns its reserved stock and never sets the paid flag; on an order
        that has already left ``pending`` it changes nothing.
        """
        already_paid = False
        changed = False
        with self._transaction("confirm_payment", order_id=order_id) as uow:
            order = self._load(uow.session, order_id, for_update=True)
            if order.is_paid:
                already_paid = True
            elif not gateway_result.success:
                if order.status == PENDING:
                    self.status_machine.transition(
                        order, FAILED, actor=SYSTEM_ACTOR, note=gateway_result.message or "Payment failed", system=True
                    )
                    self.ledger.restore(uow.session, self.ledger.lines_from_snapshot(order.items))
                    order.payment_result = gateway_result.to_snapshot()
                    uow.commit()
                    changed = True
            else:
                if order.status in (CANCELLED, FAILED):
                    raise OrderNotPayable(
                        f"Order in status {order.status} cannot accept a payment",
                        order_id=order.id,
                        status=order.status,
                    )
                now = utcnow()
                self.status_machine.mark_paid(order, gateway_result.to_snapshot(), now=now)
                if order.status == PENDING:
                    self.status_machine.transition(
                        order, PROCESSING, actor=SYSTEM_ACTOR, note="Payment confirmed", system=True, now=now
                    )
                uow.commit()
                changed = True
            dto = to_order_dto(order)

        if already_paid:
            log_event("info", "order.payment_replayed", order_id=order_id)
            dto["already_paid"] = True
            return dto
        if not changed:
            return dto

        released = None
        if gateway_result.success:
            log_event("info", "order.payment_confirmed", order_id=order_id, ref_id=gateway_result.ref_id)
            event = events.ORDER_PAYMENT_CONFIRMED
        else:
            log_event("info", "order.payment_failed", order_id=order_id, reason=gateway_result.message)
            event = events.ORDER_STATUS_CHANGED
            released = [it["product_id"] for it in dto["items"]]
        self._after_commit(
            event,
            {"user_id": dto["user_id"], "order_id": order_id, "order_number": dto["order_number"], "status": dto["status"]},
            user_id=dto["user_id"],
            product_ids=released,
        )
        return dto

    def handle_payment_callback(
        self,
        *,
        authority: Optional[str],
        status: Optional[str],
        order_id: Optional[str] = None,
        order_number: Optional[str] = None,
    ) -> Dict:
        """Verify a gateway redirect and confirm the order it names.

        The gateway is called with no unit of work open. An unanswered or
        unreadable verification raises ``PaymentAmbiguous`` and leaves the
        order pending.
        """
        if not authority or not status:
            raise ValidationFailed("Authority and Status are required", field="authority")
        if not order_id and not order_number:
            raise ValidationFailed("orderId or orderNumber is required", field="orderId")

        with UnitOfWork(self._session_factory) as uow:
            if order_id:
                order = self._load(uow.session, order_id)
            else:
                order = self._by_number(uow.session, order_number)
            order_id, number, total, is_paid = order.id, order.order_number, order.total_price, order.is_paid

        if is_paid:
            return {"order_id": order_id, "order_number": number, "already_paid": True}

        if str(status).strip().upper() != "OK":
            self.confirm_payment(order_id, PaymentResult(success=False, authority=authority, status=str(status), message="Payment cancelled at gateway"))
            raise PaymentRejected("Payment was not completed", order_id=order_id, order_number=number)

        try:
            result = self.gateway.verify(authority=authority, amount=total)
        except PaymentAmbiguous:
            log_event("warning", "order.payment_ambiguous", order_id=order_id, authority=authority)
            raise
        if not result.success:
            self.confirm_payment(order_id, result)
            raise PaymentRejected(result.message or "Payment verification failed", order_id=order_id, order_number=number)

        dto = self.confirm_payment(order_id, result)
        response = {"order_id": order_id, "order_number": number, "ref_id": result.ref_id}
        if dto.get("already_paid"):
            response["already_paid"] = True
        return response

    def mark_paid_manually(self, order_id: str, *, actor: str) -> Dict:
        """Admin confirmation for cash-on-delivery and offline payments."""
        now = utcnow()
        result = PaymentResult(
            success=True,
            ref_id=f"MANUAL-{now:%Y%m%d%H%M%S}",
            status="manual",
            message=f"Marked paid by {actor}",
        )
        return self.confirm_payment(order_id, result)

    # ------------------------------------------------------------------
    # status and notes

    def update_status(
        self,
        order_id: str,
        *,
        actor: str,
        new_status: str,
        note: Optional[str] = None,
        tracking_info: Optional[dict] = None,
    ) -> Dict:
        if new_status not in STATUSES:
            raise ValidationFailed(f"Unknown status: {new_status}", field="status")
        note = validate_note(note, max_length=500, required=False)
        if new_status == FAILED:
            # only a declined payment fails an order
            raise IllegalTransition("Orders are marked failed only by a declined payment", order_id=order_id, status=new_status)
        if new_status == CANCELLED:
            # cancellation must also give the stock back
            return self.cancel_order(order_id, actor=actor, reason=note, cancelled_by="admin")
        if tracking_info is not None and not isinstance(tracking_info, dict):
            raise ValidationFailed("trackingInfo must be an object", field="trackingInfo")

        with self._transaction("update_status", order_id=order_id) as uow:
            order = self._load(uow.session, order_id, for_update=True)
            previous = order.status
            now = utcnow()
            self.status_machine.transition(order, new_status, actor=actor, note=note, now=now)
            if new_status == SHIPPED and tracking_info:
                order.tracking_info = dict(tracking_info, shipped_at=now.isoformat())
            uow.commit()
            dto = to_order_dto(order)

        log_event("info", "order.status_changed", order_id=order_id, actor=actor, previous=previous, status=new_status)
        self._after_commit(
            events.ORDER_STATUS_CHANGED,
            {"user_id": dto["user_id"], "order_id": order_id, "order_number": dto["order_number"], "status": new_status},
            user_id=dto["user_id"],
        )
        return dto

    def add_admin_note(self, order_id: str, *, actor: str, note) -> Dict:
        text = validate_note(note)
        with self._transaction("add_admin_note", order_id=order_id) as uow:
            order = self._load(uow.session, order_id, for_update=True)
            now = utcnow()
            order.admin_notes = list(order.admin_notes or []) + [
                {"note": text, "added_by": actor, "added_at": now.isoformat()}
            ]
            order.updated_at = now
            uow.commit()
            dto = to_order_dto(order, include_admin=True)
        log_event("info", "order.note_added", order_id=order_id, actor=actor)
        best_effort("cache.invalidate", self._invalidate, user_id=dto["user_id"])
        return dto

    # ------------------------------------------------------------------
    # reads

    def get_order(self, order_id: str, *, user_id: Optional[str] = None, admin: bool = False) -> Dict:
        with UnitOfWork(self._session_factory) as uow:
            order = self._load(uow.session, order_id)
            if user_id is not None and order.user_id != user_id:
                raise OrderNotFound(f"Order {order_id} not found", order_id=order_id)
            return to_order_dto(order, include_admin=admin)

    @staticmethod
    def _by_number(session: Session, order_number: str) -> Order:
        number = str(order_number).strip().upper()
        order = session.execute(select(Order).where(Order.order_number == number)).scalar_one_or_none()
        if order is None:
            raise OrderNotFound(f"Order {number} not found", order_number=number)
        return order

    def get_order_by_number(self, order_number: str) -> Dict:
        with UnitOfWork(self._session_factory) as uow:
            return to_order_dto(self._by_number(uow.session, order_number))

    def track_order(self, order_number: Optional[str], email: Optional[str]) -> Dict:
        """Public tracking; the email must match the one given at checkout."""
        if not order_number or not email:
            raise ValidationFailed("orderNumber and email are required", field="orderNumber")
        with UnitOfWork(self._session_factory) as uow:
            order = self._by_number(uow.session, order_number)
            owner_email = (order.user_email or (order.shipping_address or {}).get("email") or "").lower()
            if owner_email != email.strip().lower():
                raise OrderNotFound(f"Order {order.order_number} not found", order_number=order.order_number)
            return to_tracking_dto(order)

    def list_user_orders(self, user_id: str, *, page=1, page_size=10) -> Dict:
        p, ps = normalize_paging(page, page_size, max_page_size=50)
        key = f"{cache_keys.user_orders_prefix(user_id)}{p}:{ps}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        with UnitOfWork(self._session_factory) as uow:
            session = uow.session
            total = session.execute(select(func.count(Order.id)).where(Order.user_id == user_id)).scalar_one()
            rows = (
                session.execute(
                    select(Order)
                    .where(Order.user_id == user_id)
                    .order_by(Order.created_at.desc(), Order.id)
                    .offset((p - 1) * ps)
                    .limit(ps)
                )
                .scalars()
                .all()
            )
            result = page_envelope([to_order_summary(o) for o in rows], page=p, page_size=ps, total=total)
        best_effort("cache.set", self.cache.set, key, result)
        return result

    def list_orders(self, *, status: Optional[str] = None, page=1, page_size=20) -> Dict:
        if status is not None and status not in STATUSES:
            raise ValidationFailed(f"Unknown status: {status}", field="status")
        p, ps = normalize_paging(page, page_size)
        with UnitOfWork(self._session_factory) as uow:
            session = uow.session
            count_stmt = select(func.count(Order.id))
            stmt = select(Order)
            if status:
                count_stmt = count_stmt.where(Order.status == status)
                stmt = stmt.where(Order.status == status)
            total = session.execute(count_stmt).scalar_one()
            rows = session.execute(stmt.order_by(Order.created_at.desc(), Order.id).offset((p - 1) * ps).limit(ps)).scalars().all()
            return page_envelope([to_order_summary(o) for o in rows], page=p, page_size=ps, total=total)

    def order_stats(self) -> Dict:
        with UnitOfWork(self._session_factory) as uow:
            rows = uow.session.execute(
                select(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.total_price), 0)).group_by(Order.status)
            ).all()
            revenue = uow.session.execute(
                select(func.coalesce(func.sum(Order.total_price), 0)).where(Order.is_paid.is_(True))
            ).scalar_one()
        by_status: Dict[str, Dict] = {s: {"count": 0, "amount": 0.0} for s in STATUSES}
        for status, count, amount in rows:
            by_status[status] = {"count": int(count), "amount": float(amount or 0)}
        return {
            "total_orders": sum(v["count"] for v in by_status.values()),
            "paid_revenue": float(revenue or 0),
            "by_status": by_status,
        }

    # ------------------------------------------------------------------
    # side effects

    def _after_commit(
        self,
        event: str,
        payload: Dict,
        *,
        user_id: str,
        product_ids: Optional[List[str]] = None,
    ) -> None:
        best_effort(
            "cache.invalidate",
            self._invalidate,
            user_id=user_id,
            product_ids=product_ids,
        )
        best_effort(event, self.notifier.dispatch, event, payload)

    def _invalidate(
        self,
        *,
        user_id: str,
        product_ids: Optional[List[str]] = None,
    ) -> None:
        self.cache.clear_pattern(cache_keys.user_orders_prefix(user_id))
        if product_ids:
            for pid in set(product_ids):
                self.cache.delete(cache_keys.product_key(pid))
            self.cache.clear_pattern(cache_keys.PRODUCT_LIST_PREFIX)
