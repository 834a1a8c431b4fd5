"""
Concurrency utilities.

Provides a `synchronized` decorator that acquires an instance `_lock` if
present, and `call_with_timeout`, which bounds a blocking upstream call
(model endpoint, forecast provider) with an explicit deadline.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from functools import wraps
from typing import Any, Callable, TypeVar

from app.domain.exceptions import CarePlanError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Shared pool for bounded upstream calls. A timed-out call keeps its worker
# until the SDK's own timeout fires; there is no mid-flight cancellation.
_UPSTREAM_POOL = ThreadPoolExecutor(max_workers=8, thread_name_prefix="upstream")


def synchronized(func: Callable) -> Callable:
    """Decorator that acquires `self._lock` if present on the instance.

    If no `_lock` attribute exists on `self`, the function is executed
    without locking.
    """

    @wraps(func)
    def _wrapped(*args, **kwargs):
        self = args[0] if args else None
        lock = getattr(self, "_lock", None)
        if lock is None:
            return func(*args, **kwargs)
        with lock:
            return func(*args, **kwargs)

    return _wrapped


def call_with_timeout(
    fn: Callable[..., T],
    *args: Any,
    timeout: float,
    label: str = "upstream call",
    **kwargs: Any,
) -> T:
    """
    Run ``fn(*args, **kwargs)`` and wait at most *timeout* seconds.

    Raises:
        UpstreamUnavailableError: on timeout or when *fn* itself raises.
            Domain errors (``CarePlanError`` subclasses) raised by *fn*
            propagate unchanged.
    """
    future = _UPSTREAM_POOL.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError as exc:
        future.cancel()
        logger.warning("%s timed out after %.1fs", label, timeout)
        raise UpstreamUnavailableError(
            f"{label} timed out after {timeout:.0f}s",
            detail={"timeout": timeout},
        ) from exc
    except CarePlanError:
        raise
    except Exception as exc:
        logger.warning("%s failed: %s", label, exc)
        raise UpstreamUnavailableError(f"{label} failed: {exc}") from exc
