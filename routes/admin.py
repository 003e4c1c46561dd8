"""Admin order management API."""

from __future__ import annotations

import hmac

from flask import Blueprint, current_app, jsonify, request


admin_bp = Blueprint("ordercore_admin", __name__, url_prefix="/api/admin")


def _components() -> dict:
    return current_app.extensions["ordercore_components"]


def _config():
    return current_app.config["ORDERCORE_SERVER"]


def _is_authenticated() -> bool:
    expected = _config().admin_token
    supplied = request.headers.get("X-Admin-Token", "")
    return bool(expected) and hmac.compare_digest(expected, supplied)


def _actor() -> str:
    return (request.headers.get("X-Admin-User") or "admin").strip() or "admin"


@admin_bp.before_request
def guard_private_routes():
    if not _is_authenticated():
        return jsonify({"error": "Admin token required", "code": "forbidden"}), 403
    return None


@admin_bp.get("/orders")
def list_orders():
    data = _components()["order_service"].list_orders(
        status=request.args.get("status") or None,
        page=request.args.get("page", 1),
        page_size=request.args.get("pageSize", 20),
    )
    return jsonify(data)


@admin_bp.get("/orders/stats")
def order_stats():
    return jsonify({"status": "ok", "stats": _components()["order_service"].order_stats()})


@admin_bp.get("/orders/<order_id>")
def get_order(order_id: str):
    return jsonify({"status": "ok", "order": _components()["order_service"].get_order(order_id, admin=True)})


@admin_bp.put("/orders/<order_id>/status")
def update_status(order_id: str):
    payload = request.get_json(silent=True) or {}
    order = _components()["order_service"].update_status(
        order_id,
        actor=_actor(),
        new_status=str(payload.get("status") or "").strip().lower(),
        note=payload.get("note"),
        tracking_info=payload.get("trackingInfo"),
    )
    return jsonify({"status": "ok", "order": order})


@admin_bp.put("/orders/<order_id>/pay")
def mark_paid(order_id: str):
    order = _components()["order_service"].mark_paid_manually(order_id, actor=_actor())
    return jsonify({"status": "ok", "order": order})


@admin_bp.put("/orders/<order_id>/cancel")
def cancel_order(order_id: str):
    payload = request.get_json(silent=True) or {}
    order = _components()["order_service"].cancel_order(
        order_id,
        actor=_actor(),
        reason=payload.get("reason"),
        cancelled_by="admin",
    )
    return jsonify({"status": "ok", "order": order})


@admin_bp.post("/orders/<order_id>/notes")
def add_note(order_id: str):
    payload = request.get_json(silent=True) or {}
    order = _components()["order_service"].add_admin_note(order_id, actor=_actor(), note=payload.get("note"))
    return jsonify({"status": "ok", "order": order}), 201
