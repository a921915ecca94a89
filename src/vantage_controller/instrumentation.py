"""
Timing helpers for controller round trips.

``timed_async`` wraps coroutines such as transport probing and discovery and
logs how long they took, escalating to a warning past the configured
threshold.
"""

from __future__ import annotations

import functools
import time
from collections.abc import Callable, Coroutine
from typing import Any, ParamSpec, TypeVar

from vantage_controller.logging_abstraction import VantageLogger, get_logger

__all__ = [
    "measure_time",
    "timed_async",
]

P = ParamSpec("P")
T = TypeVar("T")

logger = get_logger(__name__)


def measure_time(start_time: float) -> float:
    """Milliseconds elapsed since *start_time* (a ``time.perf_counter()`` value)."""
    return (time.perf_counter() - start_time) * 1000


def timed_async(
    operation_name: str | None = None,
) -> Callable[[Callable[P, Coroutine[Any, Any, T]]], Callable[P, Coroutine[Any, Any, T]]]:
    """
    Decorator timing an async function.

    Disabled entirely when VANTAGE_PERF_TRACKING is off.

    Example:
        @timed_async("discovery")
        async def fetch(self): ...
    """

    def decorator(func: Callable[P, Coroutine[Any, Any, T]]) -> Callable[P, Coroutine[Any, Any, T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            from vantage_controller.const import VANTAGE_PERF_THRESHOLD_MS, VANTAGE_PERF_TRACKING

            if not VANTAGE_PERF_TRACKING:
                return await func(*args, **kwargs)

            start_time = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                _log_timing(logger, operation_name or func.__name__, measure_time(start_time), VANTAGE_PERF_THRESHOLD_MS)

        return wrapper

    return decorator


def _log_timing(log: VantageLogger, operation_name: str, elapsed_ms: float, threshold_ms: int) -> None:
    extra = {
        "operation": operation_name,
        "duration_ms": round(elapsed_ms, 2),
        "threshold_ms": threshold_ms,
    }
    if elapsed_ms > threshold_ms:
        log.warning("[%s] took %.1fms (threshold: %dms)", operation_name, elapsed_ms, threshold_ms, extra=extra)
    else:
        log.debug("[%s] took %.1fms", operation_name, elapsed_ms, extra=extra)
