import json
import sys
import traceback
from datetime import datetime, timezone
from typing import Optional


_LEVELS = {"debug": 10, "info": 20, "warning": 30, "error": 40, "critical": 50}
_min_level = _LEVELS["info"]


def set_log_level(level: str) -> None:
    global _min_level
    _min_level = _LEVELS.get((level or "info").lower(), _LEVELS["info"])


def log_event(level: str, event: str, exc: Optional[BaseException] = None, **fields) -> None:
    """Write one JSON line to stdout; ``exc`` attaches the error and its traceback."""
    lvl = level.lower()
    if _LEVELS.get(lvl, _LEVELS["info"]) < _min_level:
        return
    payload = {
        "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "level": lvl,
        "event": event,
    }
    payload.update(fields or {})
    if exc is not None:
        payload["error_type"] = type(exc).__name__
        payload["error"] = str(exc)
        payload["traceback"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    try:
        sys.stdout.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
    except Exception:
        # best-effort logging
        pass
