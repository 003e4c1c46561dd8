import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
import json
from typing import Optional, Tuple


DEFAULT_PAYMENT_METHODS = ("online", "cod", "wallet")
PAYMENT_GATEWAYS = {"fake", "zarinpal"}


@dataclass
class AppConfig:
    database_url: str
    log_level: str
    currency: str
    shipping_price: Decimal = Decimal("50000")
    free_shipping_threshold: Decimal = Decimal("500000")
    tax_rate: Decimal = Decimal("0.09")
    payment_methods: Tuple[str, ...] = DEFAULT_PAYMENT_METHODS
    stock_retry_attempts: int = 3
    order_number_prefix: str = "WF"
    cache_ttl_seconds: int = 300
    payment_gateway: str = "fake"
    payment_gateway_timeout: float = 10.0
    zarinpal_merchant_id: str = ""
    zarinpal_verify_url: str = "https://payment.zarinpal.com/pg/v4/payment/verify.json"


def validate_currency(value: Optional[str]) -> str:
    v = (value or "IRR").strip().upper()
    if len(v) != 3:
        raise ValueError("Invalid currency code: expected ISO4217 length 3")
    return v


def validate_amount(value, name: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"{name} must be a number")
    if amount < 0:
        raise ValueError(f"{name} must be >= 0")
    return amount


def validate_tax_rate(value) -> Decimal:
    rate = validate_amount(value, "TAX_RATE")
    if rate > 1:
        raise ValueError("TAX_RATE must be a fraction between 0 and 1")
    return rate


def validate_positive_int(value, name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer")
    if number < 1:
        raise ValueError(f"{name} must be >= 1")
    return number


def _settings_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return Path(path)
    override = os.getenv("ORDERCORE_SETTINGS_FILE")
    if override:
        return Path(override)
    return Path(__file__).resolve().parents[1] / "data" / "settings.json"


def _load_settings_file(path: Optional[Path] = None) -> dict:
    target = _settings_path(path)
    if not target.exists():
        return {}
    try:
        data = json.loads(target.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid settings file {target}: {exc}")
    return data if isinstance(data, dict) else {}


def load_env(settings_path: Optional[Path] = None) -> AppConfig:
    # data/settings.json first, environment as fallback
    s = _load_settings_file(settings_path)

    def pick(key: str, default=None):
        value = s.get(key)
        if value in (None, ""):
            value = os.getenv(key)
        return default if value in (None, "") else value

    methods = pick("PAYMENT_METHODS", ",".join(DEFAULT_PAYMENT_METHODS))
    if isinstance(methods, str):
        methods = [m.strip().lower() for m in methods.split(",") if m.strip()]
    gateway = str(pick("PAYMENT_GATEWAY", "fake")).strip().lower()
    if gateway not in PAYMENT_GATEWAYS:
        raise ValueError(f"Unsupported PAYMENT_GATEWAY: {gateway}")

    return AppConfig(
        database_url=pick("DATABASE_URL", "sqlite:///data/app.db"),
        log_level=str(pick("LOG_LEVEL", "INFO")).upper(),
        currency=validate_currency(pick("CURRENCY")),
        shipping_price=validate_amount(pick("SHIPPING_PRICE", "50000"), "SHIPPING_PRICE"),
        free_shipping_threshold=validate_amount(pick("FREE_SHIPPING_THRESHOLD", "500000"), "FREE_SHIPPING_THRESHOLD"),
        tax_rate=validate_tax_rate(pick("TAX_RATE", "0.09")),
        payment_methods=tuple(methods),
        stock_retry_attempts=validate_positive_int(pick("STOCK_RETRY_ATTEMPTS", 3), "STOCK_RETRY_ATTEMPTS"),
        order_number_prefix=str(pick("ORDER_NUMBER_PREFIX", "WF")).strip().upper(),
        cache_ttl_seconds=validate_positive_int(pick("CACHE_TTL_SECONDS", 300), "CACHE_TTL_SECONDS"),
        payment_gateway=gateway,
        payment_gateway_timeout=float(pick("PAYMENT_GATEWAY_TIMEOUT", 10)),
        zarinpal_merchant_id=str(pick("ZARINPAL_MERCHANT_ID", "")),
        zarinpal_verify_url=str(pick("ZARINPAL_VERIFY_URL", AppConfig.zarinpal_verify_url)),
    )
