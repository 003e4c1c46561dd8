"""HTTP surface: blueprints, error mapping and the admin guard."""

import pytest

from app import create_app
from config import ServerConfig
from ordercore.config import AppConfig
from ordercore.services.catalog_service import CatalogService

from conftest import ADDRESS


ADMIN = {"X-Admin-Token": "s3cret", "X-Admin-User": "ops"}
USER = {"X-User-Id": "user-1", "X-User-Email": "sara@example.com"}


@pytest.fixture()
def client(tmp_path, engine, session_factory, cache, service):
    app = create_app(
        server_config=ServerConfig(
            secret_key="test", admin_token="s3cret", host="127.0.0.1", port=5000, root=tmp_path
        ),
        app_config=AppConfig(database_url="sqlite://", log_level="WARNING", currency="IRR"),
        components={
            "engine": engine,
            "session_factory": session_factory,
            "cache": cache,
            "order_service": service,
            "catalog_service": CatalogService(session_factory, cache=cache),
        },
    )
    app.testing = True
    return app.test_client()


def _create(client, product_id, quantity=2, headers=USER, **body):
    payload = {
        "items": [{"productId": product_id, "quantity": quantity}],
        "shippingAddress": ADDRESS,
        "paymentMethod": "online",
    }
    payload.update(body)
    return client.post("/api/orders", json=payload, headers=headers)


class TestCustomerApi:
    def test_create_and_read_back(self, client, catalog):
        pid = catalog.product(price="100000", stock=5)

        resp = _create(client, pid)

        assert resp.status_code == 201
        order = resp.get_json()["order"]
        assert order["total_price"] == 268000

        detail = client.get(f"/api/orders/{order['order_id']}", headers=USER).get_json()["order"]
        assert detail["status"] == "pending"
        assert detail["items_price"] == 200000

        mine = client.get("/api/orders/mine", headers=USER).get_json()
        assert mine["total"] == 1

    def test_idempotency_key_header(self, client, catalog):
        pid = catalog.product(stock=5)
        headers = dict(USER, **{"Idempotency-Key": "abc-1"})

        first = _create(client, pid, headers=headers).get_json()["order"]
        second = _create(client, pid, headers=headers).get_json()["order"]

        assert first == second
        assert catalog.stock_of(pid) == (3, 2)

    def test_missing_user_is_unauthenticated(self, client, catalog):
        resp = _create(client, catalog.product(), headers={})

        assert resp.status_code == 401
        assert resp.get_json()["code"] == "unauthenticated"

    def test_domain_errors_become_json(self, client, catalog):
        pid = catalog.product(stock=1)

        short = _create(client, pid, quantity=3)
        invalid = _create(client, pid, quantity=0)

        assert short.status_code == 400
        assert short.get_json()["code"] == "insufficient_stock"
        assert invalid.status_code == 400
        assert invalid.get_json()["field"] == "items[0].quantity"

    def test_other_users_order_is_404(self, client, catalog):
        order = _create(client, catalog.product(stock=5)).get_json()["order"]

        resp = client.get(f"/api/orders/{order['order_id']}", headers={"X-User-Id": "user-2"})

        assert resp.status_code == 404
        assert resp.get_json()["code"] == "order_not_found"

    def test_cancel(self, client, catalog):
        pid = catalog.product(stock=5)
        order = _create(client, pid).get_json()["order"]

        resp = client.put(f"/api/orders/{order['order_id']}/cancel", json={"reason": "too slow"}, headers=USER)
        again = client.put(f"/api/orders/{order['order_id']}/cancel", json={}, headers=USER)

        assert resp.status_code == 200
        assert resp.get_json()["order"]["status"] == "cancelled"
        assert again.status_code == 400
        assert again.get_json()["code"] == "order_not_cancellable"
        assert catalog.stock_of(pid) == (5, 0)

    def test_verify_payment_redirect(self, client, catalog):
        order = _create(client, catalog.product(stock=5)).get_json()["order"]

        resp = client.get(
            "/api/orders/verify-payment",
            query_string={"Authority": "A-77", "Status": "OK", "orderNumber": order["order_number"]},
        )

        assert resp.status_code == 200
        assert resp.get_json()["payment"]["order_id"] == order["order_id"]
        detail = client.get(f"/api/orders/{order['order_id']}", headers=USER).get_json()["order"]
        assert detail["status"] == "processing"
        assert detail["is_paid"] is True

    def test_verify_payment_gateway_timeout(self, client, catalog, gateway):
        order = _create(client, catalog.product(stock=5)).get_json()["order"]
        gateway.configure(ambiguous=True)

        resp = client.post(
            "/api/orders/verify-payment",
            json={"authority": "A-77", "status": "OK", "orderId": order["order_id"]},
        )

        assert resp.status_code == 502
        assert resp.get_json()["code"] == "payment_gateway_error"

    def test_track(self, client, catalog):
        order = _create(client, catalog.product(stock=5)).get_json()["order"]

        ok = client.get("/api/orders/track", query_string={"orderNumber": order["order_number"], "email": "SARA@example.com"})
        wrong = client.get("/api/orders/track", query_string={"orderNumber": order["order_number"], "email": "x@y.z"})

        assert ok.status_code == 200
        assert ok.get_json()["order"]["status"] == "pending"
        assert wrong.status_code == 404

    def test_products(self, client, catalog):
        pid = catalog.product(price="90000", stock=7)

        listing = client.get("/api/products").get_json()
        single = client.get(f"/api/products/{pid}")
        missing = client.get("/api/products/nope")

        assert listing["total"] == 1
        assert single.get_json()["product"]["stock"] == 7
        assert missing.status_code == 404

    def test_product_detail_reflects_new_order(self, client, catalog):
        pid = catalog.product(stock=5)
        assert client.get(f"/api/products/{pid}").get_json()["product"]["stock"] == 5

        _create(client, pid, quantity=3)

        assert client.get(f"/api/products/{pid}").get_json()["product"]["stock"] == 2


class TestAdminApi:
    def test_requires_token(self, client):
        assert client.get("/api/admin/orders").status_code == 403
        assert client.get("/api/admin/orders", headers={"X-Admin-Token": "wrong"}).status_code == 403

    def test_status_flow_and_notes(self, client, catalog):
        order = _create(client, catalog.product(stock=5), paymentMethod="cod").get_json()["order"]
        oid = order["order_id"]

        illegal = client.put(f"/api/admin/orders/{oid}/status", json={"status": "delivered"}, headers=ADMIN)
        assert illegal.status_code == 400
        assert illegal.get_json()["code"] == "illegal_transition"

        for status in ("processing", "confirmed"):
            resp = client.put(f"/api/admin/orders/{oid}/status", json={"status": status}, headers=ADMIN)
            assert resp.status_code == 200

        paid = client.put(f"/api/admin/orders/{oid}/pay", headers=ADMIN).get_json()["order"]
        assert paid["is_paid"] is True

        note = client.post(f"/api/admin/orders/{oid}/notes", json={"note": "left at door"}, headers=ADMIN)
        assert note.status_code == 201
        assert note.get_json()["order"]["admin_notes"][0]["added_by"] == "ops"

        detail = client.get(f"/api/admin/orders/{oid}", headers=ADMIN).get_json()["order"]
        assert [e["status"] for e in detail["status_history"]] == ["pending", "processing", "confirmed"]
        assert detail["status_history"][1]["actor"] == "ops"

    def test_cancel_and_stats(self, client, catalog):
        pid = catalog.product(price="100000", stock=5)
        order = _create(client, pid, quantity=1).get_json()["order"]

        resp = client.put(f"/api/admin/orders/{order['order_id']}/cancel", json={"reason": "fraud"}, headers=ADMIN)
        stats = client.get("/api/admin/orders/stats", headers=ADMIN).get_json()["stats"]
        listing = client.get("/api/admin/orders", query_string={"status": "cancelled"}, headers=ADMIN).get_json()

        assert resp.get_json()["order"]["cancellation"]["cancelled_by"] == "admin"
        assert stats["by_status"]["cancelled"]["count"] == 1
        assert listing["total"] == 1
        assert catalog.stock_of(pid) == (5, 0)
