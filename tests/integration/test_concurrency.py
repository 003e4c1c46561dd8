"""Competing writers against a file-backed database."""

import threading

import pytest

from ordercore.db import init_db, make_engine, make_session_factory
from ordercore.services.errors import InsufficientStock, OrderConflict, OrderNotCancellable
from ordercore.services.inventory import InventoryLedger
from ordercore.services.order_service import OrderService

from conftest import ADDRESS, Catalog, RecordingNotifier


@pytest.fixture()
def file_factory(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'orders.db'}")
    init_db(eng)
    yield make_session_factory(eng)
    eng.dispose()


@pytest.fixture()
def file_catalog(file_factory):
    return Catalog(file_factory)


@pytest.fixture()
def file_service(file_factory):
    return OrderService(file_factory, ledger=InventoryLedger(max_attempts=3), notifier=RecordingNotifier())


def _run_together(*calls):
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def worker(i, fn):
        barrier.wait()
        try:
            outcomes[i] = ("ok", fn())
        except Exception as exc:  # collected for the assertions below
            outcomes[i] = ("error", exc)

    threads = [threading.Thread(target=worker, args=(i, fn)) for i, fn in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return outcomes


def test_two_orders_for_the_last_units(file_catalog, file_service):
    pid = file_catalog.product(stock=5)

    def order(user):
        return lambda: file_service.create_order(
            user_id=user,
            items=[{"productId": pid, "quantity": 3}],
            shipping_address=dict(ADDRESS),
            payment_method="online",
        )

    outcomes = _run_together(order("user-1"), order("user-2"))

    kinds = sorted(kind for kind, _ in outcomes)
    assert kinds == ["error", "ok"]
    error = next(value for kind, value in outcomes if kind == "error")
    assert isinstance(error, InsufficientStock)
    assert file_catalog.stock_of(pid) == (2, 3)


def test_concurrent_cancels_restore_once(file_catalog, file_service):
    pid = file_catalog.product(stock=5)
    created = file_service.create_order(
        user_id="user-1",
        items=[{"productId": pid, "quantity": 2}],
        shipping_address=dict(ADDRESS),
        payment_method="online",
    )

    def cancel(actor):
        return lambda: file_service.cancel_order(created["order_id"], actor=actor)

    outcomes = _run_together(cancel("user-1"), cancel("admin"))

    successes = [value for kind, value in outcomes if kind == "ok"]
    errors = [value for kind, value in outcomes if kind == "error"]
    assert len(successes) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], (OrderNotCancellable, OrderConflict))
    assert file_catalog.stock_of(pid) == (5, 0)
    assert file_service.get_order(created["order_id"])["status"] == "cancelled"
