import secrets
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_order_number(prefix: str = "WF", now: Optional[datetime] = None) -> str:
    """``<prefix><yy><mm><dd><6 hex>``, e.g. WF2410195F3A9C."""
    now = now or utcnow()
    return f"{prefix}{now:%y%m%d}{secrets.token_hex(3).upper()}"
