from typing import Any, Dict, Optional


def _money(value) -> float:
    return float(value or 0)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def to_product_dto(row: Any) -> Dict:
    return {
        "id": row.id,
        "sku": row.sku,
        "name": row.name,
        "description": row.description,
        "price": _money(row.price),
        "discount": int(row.discount or 0),
        "final_price": _money(row.final_price),
        "currency": row.currency,
        "images": row.images or [],
        "category_id": row.category_id,
        "options": [o.to_dict() for o in row.options],
        "stock": int(row.stock or 0),
        "sold_count": int(row.sold_count or 0),
        "is_active": bool(row.is_active),
    }


def to_status_entry_dto(entry: Any) -> Dict:
    return {
        "previous_status": entry.previous_status,
        "status": entry.status,
        "actor": entry.actor,
        "note": entry.note,
        "is_system_generated": bool(entry.is_system_generated),
        "timestamp": _iso(entry.created_at),
    }


def to_order_summary(order: Any) -> Dict:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "total_price": _money(order.total_price),
        "payment_method": order.payment_method,
        "status": order.status,
        "is_paid": bool(order.is_paid),
        "created_at": _iso(order.created_at),
    }


def to_order_dto(order: Any, *, include_history: bool = True, include_admin: bool = False) -> Dict:
    data = to_order_summary(order)
    data.update(
        {
            "user_id": order.user_id,
            "items": [
                dict(item, unit_price=_money(item.get("unit_price"))) for item in (order.items or [])
            ],
            "shipping_address": order.shipping_address,
            "items_price": _money(order.items_price),
            "shipping_price": _money(order.shipping_price),
            "tax_price": _money(order.tax_price),
            "discount_amount": _money(order.discount_amount),
            "currency": order.currency,
            "coupon_code": order.coupon_code,
            "paid_at": _iso(order.paid_at),
            "payment_result": order.payment_result,
            "is_delivered": bool(order.is_delivered),
            "delivered_at": _iso(order.delivered_at),
            "tracking_info": order.tracking_info,
            "cancellation": order.cancellation,
            "source": order.source,
            "updated_at": _iso(order.updated_at),
        }
    )
    if include_history:
        data["status_history"] = [to_status_entry_dto(e) for e in order.history]
    if include_admin:
        data["admin_notes"] = list(order.admin_notes or [])
        data["user_email"] = order.user_email
    return data


def to_tracking_dto(order: Any) -> Dict:
    """Public view for tracking by order number; no payment or address detail."""
    return {
        "order_number": order.order_number,
        "status": order.status,
        "is_paid": bool(order.is_paid),
        "is_delivered": bool(order.is_delivered),
        "tracking_info": order.tracking_info,
        "created_at": _iso(order.created_at),
        "status_history": [
            {"status": e.status, "timestamp": _iso(e.created_at), "note": e.note} for e in order.history
        ],
    }
