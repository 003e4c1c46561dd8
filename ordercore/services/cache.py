import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from .logging import log_event


def user_orders_prefix(user_id: str) -> str:
    return f"orders:user:{user_id}:"


def product_key(product_id: str) -> str:
    return f"products:{product_id}"


PRODUCT_LIST_PREFIX = "products:list:"


class Cache(ABC):
    """Read-through cache; never a source of truth for order or stock state."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def clear_pattern(self, pattern: str) -> int:
        """Drop every key containing ``pattern``; returns how many were dropped."""


class InProcessCache(Cache):
    # key -> (expires_at, value)
    def __init__(self, ttl_seconds: int = 300):
        self._ttl = ttl_seconds
        self._data: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at < time.monotonic():
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._data[key] = (time.monotonic() + (ttl or self._ttl), value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear_pattern(self, pattern: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if pattern in k]
            for k in doomed:
                del self._data[k]
        log_event("debug", "cache.cleared", pattern=pattern, count=len(doomed))
        return len(doomed)
