from typing import Any, Callable

from .logging import log_event


def best_effort(effect: str, fn: Callable[..., Any], *args, **kwargs) -> bool:
    """Run a post-commit side effect; failures are logged and never propagate."""
    try:
        fn(*args, **kwargs)
        return True
    except Exception as exc:
        log_event("warning", "side_effect.failed", exc=exc, effect=effect)
        return False
