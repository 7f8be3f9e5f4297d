"""
Timing instrumentation for frame processing and sink dispatch.

``timed_async`` logs how long a coroutine took and warns when it crosses the
configured threshold. Tracking starts from the bootstrap TRACK_PERF_* values;
``configure_instrumentation()`` applies the final GatewayEnv settings.
"""

from __future__ import annotations

import functools
import time
from collections.abc import Callable, Coroutine
from typing import Any, ParamSpec, TypeVar

from track_gateway.const import TRACK_PERF_THRESHOLD_MS, TRACK_PERF_TRACKING
from track_gateway.logging_abstraction import GatewayLogger, get_logger

__all__ = [
    "configure_instrumentation",
    "measure_time",
    "timed_async",
]

P = ParamSpec("P")
T = TypeVar("T")

logger = get_logger(__name__)

_perf: dict[str, Any] = {
    "tracking": TRACK_PERF_TRACKING,
    "threshold_ms": TRACK_PERF_THRESHOLD_MS,
}


def configure_instrumentation(tracking: bool, threshold_ms: int) -> None:
    _perf.update(tracking=tracking, threshold_ms=threshold_ms)


def measure_time(start_time: float) -> float:
    """Elapsed milliseconds since ``start_time`` (from time.perf_counter())."""
    return (time.perf_counter() - start_time) * 1000


def timed_async(operation_name: str | None = None) -> Callable:
    """
    Decorator for timing async functions with threshold warnings.

    Example:
        @timed_async("route_frame")
        async def route(session, frame):
            ...
    """

    def decorator(
        func: Callable[P, Coroutine[Any, Any, T]],
    ) -> Callable[P, Coroutine[Any, Any, T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            if not _perf["tracking"]:
                return await func(*args, **kwargs)

            op_name = operation_name or func.__name__
            start_time = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                _log_timing(logger, op_name, measure_time(start_time), _perf["threshold_ms"])

        return wrapper

    return decorator


def _log_timing(log: GatewayLogger, operation_name: str, elapsed_ms: float, threshold_ms: int) -> None:
    extra = {
        "operation": operation_name,
        "duration_ms": round(elapsed_ms, 2),
        "threshold_ms": threshold_ms,
        "exceeded_threshold": elapsed_ms > threshold_ms,
    }
    if elapsed_ms > threshold_ms:
        log.warning(
            "⏱️ [%s] completed in %.1fms (threshold: %dms)",
            operation_name,
            elapsed_ms,
            threshold_ms,
            extra=extra,
        )
    else:
        log.debug("⏱️ [%s] completed in %.1fms", operation_name, elapsed_ms, extra=extra)
