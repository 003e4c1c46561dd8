from typing import Dict, Iterable, List, Optional, Tuple

from ..services.errors import ValidationFailed


REQUIRED_ADDRESS_FIELDS = ("fullName", "address", "city", "postalCode", "phone")
OPTIONAL_ADDRESS_FIELDS = ("province", "notes", "email")
MAX_NOTES_LENGTH = 500
MAX_QUANTITY = 1000


def ensure_positive_int(value, field: str) -> int:
    # bool is an int subclass; a JSON true must not become quantity 1
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailed(f"{field} must be an integer", field=field)
    if value < 1:
        raise ValidationFailed(f"{field} must be >= 1", field=field)
    return value


def _clean_str(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def validate_cart(items) -> List[Dict]:
    if not isinstance(items, list) or not items:
        raise ValidationFailed("Cart must contain at least one item", field="items")
    lines = []
    for index, raw in enumerate(items):
        field = f"items[{index}]"
        if not isinstance(raw, dict):
            raise ValidationFailed(f"{field} must be an object", field=field)
        product_id = _clean_str(raw.get("productId") or raw.get("product_id"))
        if not product_id:
            raise ValidationFailed(f"{field}.productId is required", field=f"{field}.productId")
        quantity = ensure_positive_int(raw.get("quantity"), f"{field}.quantity")
        if quantity > MAX_QUANTITY:
            raise ValidationFailed(f"{field}.quantity must be <= {MAX_QUANTITY}", field=f"{field}.quantity")
        lines.append({"product_id": product_id, "quantity": quantity, "variant": _validate_variant(raw.get("variant"), field)})
    return lines


def _validate_variant(variant, field: str) -> Optional[Dict[str, str]]:
    if variant in (None, {}):
        return None
    if not isinstance(variant, dict):
        raise ValidationFailed(f"{field}.variant must be an object", field=f"{field}.variant")
    name = _clean_str(variant.get("name"))
    value = _clean_str(variant.get("value"))
    if not name or not value:
        raise ValidationFailed(f"{field}.variant requires name and value", field=f"{field}.variant")
    return {"name": name, "value": value}


def validate_shipping_address(address) -> Dict[str, str]:
    if not isinstance(address, dict):
        raise ValidationFailed("shippingAddress is required", field="shippingAddress")
    cleaned = {}
    missing = []
    for key in REQUIRED_ADDRESS_FIELDS:
        value = _clean_str(address.get(key))
        if not value:
            missing.append(key)
        cleaned[key] = value
    if missing:
        raise ValidationFailed(
            "shippingAddress is missing required fields",
            field="shippingAddress",
            missing=missing,
        )
    for key in OPTIONAL_ADDRESS_FIELDS:
        value = _clean_str(address.get(key))
        if value:
            cleaned[key] = value
    if len(cleaned.get("notes", "")) > MAX_NOTES_LENGTH:
        raise ValidationFailed(f"notes must be at most {MAX_NOTES_LENGTH} characters", field="shippingAddress.notes")
    return cleaned


def validate_payment_method(method, allowed: Iterable[str]) -> str:
    value = _clean_str(method).lower()
    allowed = tuple(allowed)
    if value not in allowed:
        raise ValidationFailed(
            f"paymentMethod must be one of: {', '.join(allowed)}",
            field="paymentMethod",
        )
    return value


def validate_order_request(
    *, user_id, items, shipping_address, payment_method, allowed_methods: Iterable[str]
) -> Tuple[List[Dict], Dict[str, str], str]:
    if not _clean_str(user_id):
        raise ValidationFailed("user is required", field="user_id")
    return (
        validate_cart(items),
        validate_shipping_address(shipping_address),
        validate_payment_method(payment_method, allowed_methods),
    )


def validate_note(note, *, field: str = "note", max_length: int = 1000, required: bool = True) -> Optional[str]:
    value = _clean_str(note)
    if not value:
        if required:
            raise ValidationFailed(f"{field} is required", field=field)
        return None
    if len(value) > max_length:
        raise ValidationFailed(f"{field} must be at most {max_length} characters", field=field)
    return value
