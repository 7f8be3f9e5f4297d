"""
Per-connection log context across async operations.

Each device connection runs in its own task. The handler binds its
connection id (and, once the first frame identifies it, the device id)
next to a correlation id, and the log formatters print all three, so every
line from accept to disconnect can be tied to one socket and one device.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "bind_connection",
    "bind_device",
    "connection_fields",
    "correlation_context",
    "ensure_correlation_id",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("correlation_id", default=None)
_connection_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("connection_id", default=None)
_device_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("device_id", default=None)


def generate_correlation_id() -> str:
    """Generate a new correlation ID (UUID4 hex without dashes)."""
    return uuid.uuid4().hex


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    _correlation_id.set(correlation_id)


def ensure_correlation_id() -> str:
    """Return the current correlation ID, creating one at task entry points."""
    current_id = get_correlation_id()
    if current_id is None:
        current_id = generate_correlation_id()
        set_correlation_id(current_id)
    return current_id


def bind_connection(connection_id: str) -> str:
    """Start the log context of one accepted connection.

    Called at the top of the connection handler task, whose context is a
    copy of the listener's, so nothing leaks between connections. Clears any
    device id inherited from that copy.

    Returns:
        The correlation ID of the connection
    """
    correlation_id = ensure_correlation_id()
    _connection_id.set(connection_id)
    _device_id.set(None)
    return correlation_id


def bind_device(device_id: str | None) -> None:
    """Attach the identified device to the current connection's log context."""
    _device_id.set(device_id or None)


def connection_fields() -> dict[str, str]:
    """Bound ``connection_id``/``device_id`` of the current context, unset ones omitted."""
    fields: dict[str, str] = {}
    if (connection_id := _connection_id.get()) is not None:
        fields["connection_id"] = connection_id
    if (device_id := _device_id.get()) is not None:
        fields["device_id"] = device_id
    return fields


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Generator[str]:
    """
    Scope a correlation ID (generated when not given) and restore the previous one on exit.

    Example:
        with correlation_context() as corr_id:
            logger.info("Starting track-gateway")  # Includes corr_id
    """
    scoped_id = correlation_id or generate_correlation_id()
    token = _correlation_id.set(scoped_id)
    try:
        yield scoped_id
    finally:
        _correlation_id.reset(token)
