"""Cancellation: guard, stock restoration and refund bookkeeping."""

import pytest

from ordercore.services.errors import OrderNotCancellable, OrderNotFound, ProductUnavailable
from ordercore.services.inventory import InventoryLedger
from ordercore.services.payment_gateway import PaymentResult


def _advance(service, order_id, *statuses):
    for status in statuses:
        service.update_status(order_id, actor="admin", new_status=status)


class TestCancel:
    def test_pending_cancel_restores_reserved_stock(self, catalog, service, place_order, notifier):
        pid = catalog.product(stock=5, sold_count=4)
        created = place_order(pid, 3)
        assert catalog.stock_of(pid) == (2, 7)

        order = service.cancel_order(created["order_id"], actor="user-1", reason="changed my mind")

        assert order["status"] == "cancelled"
        assert order["cancellation"]["reason"] == "changed my mind"
        assert order["cancellation"]["cancelled_by"] == "user"
        assert "cancelled_at" in order["cancellation"]
        assert "refund_status" not in order["cancellation"]
        assert order["status_history"][-1]["previous_status"] == "pending"
        assert catalog.stock_of(pid) == (5, 4)
        assert notifier.names() == ["order.created", "order.cancelled"]

    def test_delivered_order_cannot_be_cancelled(self, catalog, service, place_order):
        pid = catalog.product(stock=5)
        created = place_order(pid, 2)
        _advance(service, created["order_id"], "processing", "confirmed", "shipped", "delivered")

        with pytest.raises(OrderNotCancellable):
            service.cancel_order(created["order_id"], actor="user-1")

        assert service.get_order(created["order_id"])["status"] == "delivered"
        assert catalog.stock_of(pid) == (3, 2)

    def test_second_cancel_does_not_restore_twice(self, catalog, service, place_order):
        pid = catalog.product(stock=5)
        created = place_order(pid, 2)
        service.cancel_order(created["order_id"], actor="user-1")

        with pytest.raises(OrderNotCancellable):
            service.cancel_order(created["order_id"], actor="user-1")

        assert catalog.stock_of(pid) == (5, 0)

    def test_paid_order_gets_refund_fields(self, catalog, service, place_order):
        pid = catalog.product(stock=5)
        created = place_order(pid, 1)
        service.confirm_payment(created["order_id"], PaymentResult(success=True, ref_id="R1", status="OK"))

        order = service.cancel_order(created["order_id"], actor="admin", cancelled_by="admin", reason="out of region")

        assert order["cancellation"]["refund_status"] == "pending"
        assert float(order["cancellation"]["refund_amount"]) == created["total_price"]
        assert order["cancellation"]["cancelled_by"] == "admin"

    def test_other_users_order_is_hidden(self, catalog, service, place_order):
        pid = catalog.product(stock=5)
        created = place_order(pid, 1)

        with pytest.raises(OrderNotFound):
            service.cancel_order(created["order_id"], actor="intruder", user_id="intruder")

        assert service.get_order(created["order_id"])["status"] == "pending"

    def test_restore_failure_keeps_order_open(self, catalog, build_service, place_order):
        pid = catalog.product(stock=5)
        created = place_order(pid, 2)

        class BrokenLedger(InventoryLedger):
            def restore(self, session, lines):
                raise ProductUnavailable("gone", code="product_not_found", status_code=404)

        service = build_service(ledger=BrokenLedger())
        with pytest.raises(ProductUnavailable):
            service.cancel_order(created["order_id"], actor="user-1")

        order = service.get_order(created["order_id"])
        assert order["status"] == "pending"
        assert order["cancellation"] is None
        assert catalog.stock_of(pid) == (3, 2)

    def test_admin_status_change_to_cancelled_restores_stock(self, catalog, service, place_order):
        pid = catalog.product(stock=5)
        created = place_order(pid, 2)
        _advance(service, created["order_id"], "processing")

        order = service.update_status(created["order_id"], actor="admin", new_status="cancelled", note="fraud check")

        assert order["status"] == "cancelled"
        assert order["cancellation"]["cancelled_by"] == "admin"
        assert catalog.stock_of(pid) == (5, 0)

    def test_unknown_order(self, service):
        with pytest.raises(OrderNotFound):
            service.cancel_order("missing", actor="user-1")
