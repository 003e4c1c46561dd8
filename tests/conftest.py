from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

import pytest

from ordercore.db import UnitOfWork, init_db, make_engine, make_session_factory
from ordercore.models import Category, Coupon, Product, ProductOption, ProductOptionValue
from ordercore.services.cache import InProcessCache
from ordercore.services.inventory import InventoryLedger
from ordercore.services.notifications import NotificationDispatcher
from ordercore.services.order_service import OrderService
from ordercore.services.payment_gateway import FakeGateway
from ordercore.services.pricing import PricingEngine
from ordercore.utils.clock import utcnow


ADDRESS = {
    "fullName": "Sara Ahmadi",
    "address": "No. 12, Valiasr St.",
    "city": "Tehran",
    "postalCode": "1234567890",
    "phone": "09120000000",
}


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = str(Path(item.fspath))
        if "/domain/" in test_path:
            item.add_marker(pytest.mark.domain)
        elif "/application/" in test_path:
            item.add_marker(pytest.mark.application)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)


class RecordingNotifier(NotificationDispatcher):
    def __init__(self):
        self.events = []

    def dispatch(self, event, payload):
        self.events.append((event, payload))

    def names(self):
        return [e for e, _ in self.events]


class ExplodingNotifier(NotificationDispatcher):
    def dispatch(self, event, payload):
        raise RuntimeError("notification backend down")


class ExplodingCache(InProcessCache):
    def delete(self, key):
        raise RuntimeError("cache backend down")

    def clear_pattern(self, pattern):
        raise RuntimeError("cache backend down")


@pytest.fixture()
def engine():
    eng = make_engine("sqlite:///:memory:")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return make_session_factory(engine)


class Catalog:
    """Test helper that writes catalog rows directly."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def category(self, slug="supplements"):
        cid = str(uuid4())
        with UnitOfWork(self._session_factory) as uow:
            uow.session.add(Category(id=cid, name=slug.title(), slug=slug))
            uow.commit()
        return cid

    def product(self, *, price="100000", stock=10, discount=0, is_active=True, category_id=None, sold_count=0, options=None):
        pid = str(uuid4())
        with UnitOfWork(self._session_factory) as uow:
            product = Product(
                id=pid,
                sku=f"SKU-{pid[:8]}",
                name=f"Product {pid[:4]}",
                price=Decimal(price),
                discount=discount,
                currency="IRR",
                images=[f"/img/{pid[:4]}.jpg"],
                category_id=category_id,
                stock=stock,
                sold_count=sold_count,
                version=0,
                is_active=is_active,
            )
            for name, values in (options or {}).items():
                option = ProductOption(id=str(uuid4()), name=name)
                for value, modifier, own_stock in values:
                    option.values.append(
                        ProductOptionValue(
                            id=str(uuid4()),
                            value=value,
                            price_modifier=Decimal(modifier),
                            stock=own_stock,
                        )
                    )
                product.options.append(option)
            uow.session.add(product)
            uow.commit()
        return pid

    def coupon(self, code="SAVE10", **fields):
        now = utcnow()
        values = {
            "type": "percentage",
            "value": Decimal("10"),
            "min_purchase": Decimal("0"),
            "max_uses_per_user": 1,
            "valid_from": now - timedelta(days=1),
            "valid_until": now + timedelta(days=30),
            "is_active": True,
        }
        values.update(fields)
        used = values.pop("used_count", 0)
        cid = str(uuid4())
        with UnitOfWork(self._session_factory) as uow:
            uow.session.add(Coupon(id=cid, code=code, used_count=used, **values))
            uow.commit()
        return cid

    def stock_of(self, product_id):
        with UnitOfWork(self._session_factory) as uow:
            p = uow.session.get(Product, product_id)
            return p.stock, p.sold_count

    def option_value(self, product_id, value):
        with UnitOfWork(self._session_factory) as uow:
            p = uow.session.get(Product, product_id)
            for option in p.options:
                for v in option.values:
                    if v.value == value:
                        return v.id, v.stock, v.sold_count
        return None


@pytest.fixture()
def catalog(session_factory):
    return Catalog(session_factory)


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def cache():
    return InProcessCache()


@pytest.fixture()
def service(session_factory, notifier, cache, gateway):
    return OrderService(
        session_factory,
        pricing=PricingEngine(),
        ledger=InventoryLedger(max_attempts=3),
        notifier=notifier,
        cache=cache,
        gateway=gateway,
    )


@pytest.fixture()
def place_order(service):
    def _place(product_id, quantity=1, **kwargs):
        kwargs.setdefault("user_id", "user-1")
        kwargs.setdefault("shipping_address", dict(ADDRESS))
        kwargs.setdefault("payment_method", "online")
        return service.create_order(items=[{"productId": product_id, "quantity": quantity}], **kwargs)

    return _place


@pytest.fixture()
def build_service(session_factory, gateway):
    def _build(**overrides):
        params = {
            "pricing": PricingEngine(),
            "ledger": InventoryLedger(max_attempts=3),
            "notifier": RecordingNotifier(),
            "cache": InProcessCache(),
            "gateway": gateway,
        }
        params.update(overrides)
        return OrderService(session_factory, **params)

    return _build


@pytest.fixture()
def exploding_notifier():
    return ExplodingNotifier()


@pytest.fixture()
def exploding_cache():
    return ExplodingCache()
