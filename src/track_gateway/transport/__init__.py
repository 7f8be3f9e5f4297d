"""Connection-level transport: first-packet classification and connection-fatal errors."""

from .classifier import ConnectionKind, build_health_response, classify
from .exceptions import CapacityExceededError, ClassificationTimeoutError

__all__ = [
    "CapacityExceededError",
    "ClassificationTimeoutError",
    "ConnectionKind",
    "build_health_response",
    "classify",
]
