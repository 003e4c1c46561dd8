"""Customer-facing order and catalog API."""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from ordercore.services.errors import ValidationFailed


api_bp = Blueprint("ordercore_api", __name__, url_prefix="/api")


def _components() -> Dict[str, Any]:
    return current_app.extensions["ordercore_components"]


def _current_user() -> str:
    # identity is asserted by the upstream gateway
    user_id = (request.headers.get("X-User-Id") or "").strip()
    if not user_id:
        raise ValidationFailed("X-User-Id header is required", code="unauthenticated", status_code=401)
    return user_id


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationFailed("Request body must be a JSON object")
    return payload


@api_bp.post("/orders")
def create_order():
    payload = _json_body()
    user_id = _current_user()
    result = _components()["order_service"].create_order(
        user_id=user_id,
        user_email=request.headers.get("X-User-Email") or None,
        items=payload.get("items"),
        shipping_address=payload.get("shippingAddress"),
        payment_method=payload.get("paymentMethod"),
        coupon_code=payload.get("couponCode"),
        request_id=request.headers.get("Idempotency-Key") or None,
        source=payload.get("source") if payload.get("source") in ("web", "mobile") else "web",
    )
    return jsonify({"status": "ok", "order": result}), 201


@api_bp.get("/orders/mine")
def my_orders():
    user_id = _current_user()
    data = _components()["order_service"].list_user_orders(
        user_id,
        page=request.args.get("page", 1),
        page_size=request.args.get("pageSize", 10),
    )
    return jsonify(data)


@api_bp.get("/orders/track")
def track_order():
    data = _components()["order_service"].track_order(
        request.args.get("orderNumber"),
        request.args.get("email"),
    )
    return jsonify({"status": "ok", "order": data})


@api_bp.route("/orders/verify-payment", methods=["GET", "POST"])
def verify_payment():
    body = _json_body() if request.method == "POST" else {}
    args = request.args

    def pick(*names):
        for name in names:
            value = args.get(name) or body.get(name)
            if value:
                return str(value)
        return None

    result = _components()["order_service"].handle_payment_callback(
        authority=pick("Authority", "authority", "transactionRef"),
        status=pick("Status", "status"),
        order_id=pick("orderId"),
        order_number=pick("orderNumber"),
    )
    return jsonify({"status": "ok", "payment": result})


@api_bp.get("/orders/<order_id>")
def get_order(order_id: str):
    user_id = _current_user()
    return jsonify({"status": "ok", "order": _components()["order_service"].get_order(order_id, user_id=user_id)})


@api_bp.put("/orders/<order_id>/cancel")
def cancel_order(order_id: str):
    user_id = _current_user()
    payload = _json_body()
    order = _components()["order_service"].cancel_order(
        order_id,
        actor=user_id,
        reason=payload.get("reason"),
        cancelled_by="user",
        user_id=user_id,
    )
    return jsonify({"status": "ok", "order": order})


@api_bp.get("/products")
def list_products():
    data = _components()["catalog_service"].list_products(
        query=request.args.get("q"),
        category=request.args.get("category"),
        page=request.args.get("page", 1),
        page_size=request.args.get("pageSize", 20),
    )
    return jsonify(data)


@api_bp.get("/products/<product_id>")
def get_product(product_id: str):
    product = _components()["catalog_service"].get_product(product_id)
    if not product:
        return jsonify({"error": "Product not found", "code": "product_not_found"}), 404
    return jsonify({"status": "ok", "product": product})
