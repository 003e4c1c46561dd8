"""Catalog lookups, their cache, and stored notifications."""

from sqlalchemy import select

from ordercore.db import UnitOfWork
from ordercore.models import Notification
from ordercore.services.cache import InProcessCache
from ordercore.services.catalog_service import CatalogService
from ordercore.services.notifications import StoredNotifier
from ordercore.services.order_service import OrderService

from conftest import ADDRESS


class TestCatalogService:
    def test_get_product_is_cached_until_invalidated(self, catalog, session_factory):
        cache = InProcessCache()
        svc = CatalogService(session_factory, cache=cache)
        pid = catalog.product(price="80000", stock=4, discount=25)

        dto = svc.get_product(pid)

        assert dto["final_price"] == 60000
        assert dto["stock"] == 4
        assert cache.get(f"products:{pid}") == dto

        svc.invalidate_cache_for_product(pid)
        assert cache.get(f"products:{pid}") is None

    def test_inactive_or_missing_product_is_empty(self, catalog, session_factory):
        svc = CatalogService(session_factory)
        pid = catalog.product(is_active=False)

        assert svc.get_product(pid) == {}
        assert svc.get_product("missing") == {}

    def test_list_filters_by_category_and_query(self, catalog, session_factory):
        svc = CatalogService(session_factory)
        cid = catalog.category("vitamins")
        in_category = catalog.product(category_id=cid)
        catalog.product()
        catalog.product(category_id=cid, is_active=False)

        page = svc.list_products(category="vitamins")

        assert page["total"] == 1
        assert [p["id"] for p in page["items"]] == [in_category]
        assert svc.list_products(query="SKU-" + in_category[:8])["total"] == 1

    def test_order_invalidates_product_listing(self, catalog, session_factory, cache, place_order):
        svc = CatalogService(session_factory, cache=cache)
        pid = catalog.product(stock=5)
        assert svc.list_products()["items"][0]["stock"] == 5

        place_order(pid, 2)

        assert svc.list_products()["items"][0]["stock"] == 3
        assert svc.get_product(pid)["sold_count"] == 2

    def test_shared_cache_sees_order_invalidation(self, catalog, session_factory):
        shared = InProcessCache()
        svc = CatalogService(session_factory, cache=shared)
        orders = OrderService(session_factory, cache=shared)
        pid = catalog.product(stock=5)
        assert svc.get_product(pid)["stock"] == 5

        orders.create_order(
            user_id="user-1",
            items=[{"productId": pid, "quantity": 3}],
            shipping_address=dict(ADDRESS),
            payment_method="online",
        )

        assert orders.cache is shared
        assert svc.cache is shared
        assert svc.get_product(pid)["stock"] == 2


class TestStoredNotifier:
    def test_order_event_becomes_a_row(self, catalog, session_factory, build_service):
        service = build_service(notifier=StoredNotifier(session_factory))
        pid = catalog.product(stock=5)

        created = service.create_order(
            user_id="user-1",
            items=[{"productId": pid, "quantity": 1}],
            shipping_address={
                "fullName": "Sara Ahmadi",
                "address": "No. 12, Valiasr St.",
                "city": "Tehran",
                "postalCode": "1234567890",
                "phone": "09120000000",
            },
            payment_method="online",
        )

        with UnitOfWork(session_factory) as uow:
            row = uow.session.execute(select(Notification)).scalar_one()
            assert row.user_id == "user-1"
            assert row.type == "order.created"
            assert created["order_number"] in row.message
            assert row.is_read is False

    def test_events_without_user_are_skipped(self, session_factory):
        StoredNotifier(session_factory).dispatch("order.created", {"order_number": "WF1"})

        with UnitOfWork(session_factory) as uow:
            assert uow.session.execute(select(Notification)).first() is None
