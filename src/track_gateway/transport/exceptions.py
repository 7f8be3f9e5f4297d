"""Custom exception types for connection-level transport errors.

All three errors are connection-fatal: the socket is closed and no Session is
created for it. None is process-fatal.
"""

from __future__ import annotations

from track_gateway.protocol.exceptions import TrackProtocolError

__all__ = [
    "CapacityExceededError",
    "ClassificationTimeoutError",
    "DuplicateConnectionError",
]


class CapacityExceededError(TrackProtocolError):
    """Session registry is full.

    Raised when:
    - A new connection arrives while the registry holds ``max_connections`` sessions
    - ``SessionRegistry.insert`` reports FULL after classification

    Attributes:
        connection_id: Peer "ip:port" that was refused
        max_connections: Configured registry cap

    """

    reason = "capacity_exceeded"

    def __init__(self, connection_id: str, max_connections: int) -> None:
        """Initialize capacity error with the refused peer and the cap."""
        self.connection_id: str = connection_id
        self.max_connections: int = max_connections
        super().__init__(f"Connection refused: {connection_id} (max connections: {max_connections})")


class ClassificationTimeoutError(TrackProtocolError):
    """New connection sent nothing before the pre-classification timer fired.

    Attributes:
        connection_id: Peer "ip:port" that stayed silent
        timeout_seconds: Timeout value that was exceeded

    """

    reason = "classification_timeout"

    def __init__(self, connection_id: str, timeout_seconds: float) -> None:
        """Initialize classification timeout error."""
        self.connection_id: str = connection_id
        self.timeout_seconds: float = timeout_seconds
        super().__init__(f"No data from {connection_id} within {timeout_seconds}s")


class DuplicateConnectionError(TrackProtocolError):
    """A live session is already registered under this connection id.

    Raised when ``SessionRegistry.insert`` reports ``DUPLICATE``; the new
    socket is closed and the registered session is left alone.
    """

    reason = "duplicate_connection"

    def __init__(self, connection_id: str) -> None:
        self.connection_id: str = connection_id
        super().__init__(f"Connection refused: {connection_id} already has a live session")
