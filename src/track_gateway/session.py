"""Per-connection session state and the shared session registry."""

from __future__ import annotations

import asyncio
import time
from enum import StrEnum
from typing import ClassVar

from track_gateway.logging_abstraction import get_logger

__all__ = [
    "InsertOutcome",
    "InvalidTransitionError",
    "Session",
    "SessionClosedError",
    "SessionError",
    "SessionRegistry",
    "SessionState",
]

logger = get_logger(__name__)


class SessionState(StrEnum):
    """Connection lifecycle state."""

    CONNECTING = "connecting"
    IDENTIFYING = "identifying"
    ACTIVE = "active"
    CLOSED = "closed"


class InsertOutcome(StrEnum):
    """Result of ``SessionRegistry.insert``."""

    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    FULL = "full"


class SessionError(Exception):
    """Base exception for session lifecycle errors."""


class InvalidTransitionError(SessionError):
    """Requested state change is not allowed from the current state.

    Attributes:
        current: State the session was in
        requested: State that was requested

    """

    def __init__(self, current: SessionState, requested: SessionState) -> None:
        self.current: SessionState = current
        self.requested: SessionState = requested
        super().__init__(f"Invalid session transition: {current} -> {requested}")


class SessionClosedError(SessionError):
    """Mutation attempted on a session that is already closed."""

    def __init__(self, connection_id: str) -> None:
        self.connection_id: str = connection_id
        super().__init__(f"Session {connection_id} is closed")


class Session:
    """Mutable state of one live device connection.

    Owned by its connection handler task; no locking is needed. Device
    identity is set once and never overwritten.
    """

    TRANSITIONS: ClassVar[dict[SessionState, frozenset[SessionState]]] = {
        SessionState.CONNECTING: frozenset({SessionState.IDENTIFYING, SessionState.CLOSED}),
        SessionState.IDENTIFYING: frozenset({SessionState.ACTIVE, SessionState.CLOSED}),
        SessionState.ACTIVE: frozenset({SessionState.CLOSED}),
        SessionState.CLOSED: frozenset(),
    }

    def __init__(self, connection_id: str, state: SessionState = SessionState.IDENTIFYING) -> None:
        self.connection_id: str = connection_id
        self.peer_ip: str = connection_id.rsplit(":", 1)[0]
        self.device_id: str | None = None
        self.device_name: str | None = None
        self.opened_at: float = time.time()
        self.last_heartbeat_at: float | None = None
        self.message_count: int = 0
        self.state: SessionState = state

    def __repr__(self) -> str:
        return (
            f"<Session {self.connection_id} device={self.device_id!r} "
            f"state={self.state} messages={self.message_count}>"
        )

    @property
    def alive(self) -> bool:
        return self.state is not SessionState.CLOSED

    @property
    def duration_seconds(self) -> float:
        return time.time() - self.opened_at

    def _ensure_open(self) -> None:
        if self.state is SessionState.CLOSED:
            raise SessionClosedError(self.connection_id)

    def transition(self, new_state: SessionState) -> None:
        """Move to ``new_state``, raising ``InvalidTransitionError`` if not allowed."""
        if new_state not in self.TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, new_state)
        self.state = new_state

    def identify(self, device_id: str, device_name: str | None = None) -> bool:
        """Set the device identity if not already known.

        Returns True only for the call that established the identity. Later
        frames reporting a different identifier do not change it.
        """
        self._ensure_open()
        if self.device_id is not None or not device_id:
            return False
        if self.state is SessionState.CONNECTING:
            self.transition(SessionState.IDENTIFYING)
        self.device_id = device_id
        self.device_name = device_name or None
        self.transition(SessionState.ACTIVE)
        return True

    def record_frame(self) -> int:
        """Count one successfully decoded frame and return the new total."""
        self._ensure_open()
        self.message_count += 1
        return self.message_count

    def mark_heartbeat(self, at: float | None = None) -> None:
        self._ensure_open()
        self.last_heartbeat_at = at if at is not None else time.time()

    def close(self) -> bool:
        """Move to CLOSED. Returns False if the session was already closed."""
        if self.state is SessionState.CLOSED:
            return False
        self.transition(SessionState.CLOSED)
        return True

    def to_dict(self) -> dict[str, object]:
        return {
            "connection_id": self.connection_id,
            "peer_ip": self.peer_ip,
            "device_id": self.device_id,
            "device_name": self.device_name,
            "state": str(self.state),
            "message_count": self.message_count,
            "opened_at": self.opened_at,
            "last_heartbeat_at": self.last_heartbeat_at,
            "duration_seconds": round(self.duration_seconds, 1),
        }


class SessionRegistry:
    """
    Maps connection id -> Session for every live connection.
    Enforces the connection cap; insert/get/remove are serialized by a lock.
    """

    def __init__(self, max_connections: int) -> None:
        self.max_connections: int = max_connections
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._sessions

    @property
    def is_full(self) -> bool:
        return len(self._sessions) >= self.max_connections

    async def insert(self, connection_id: str, session: Session) -> InsertOutcome:
        """
        Register a session.

        Returns:
            InsertOutcome: INSERTED, DUPLICATE when the id is already registered,
            FULL when the registry is at capacity
        """
        lp = "SessionRegistry:insert:"
        async with self._lock:
            if connection_id in self._sessions:
                logger.warning("%s Session for %s already registered", lp, connection_id)
                return InsertOutcome.DUPLICATE
            if len(self._sessions) >= self.max_connections:
                logger.debug(
                    "%s Registry full, refusing %s (%s/%s)",
                    lp,
                    connection_id,
                    len(self._sessions),
                    self.max_connections,
                )
                return InsertOutcome.FULL
            self._sessions[connection_id] = session
            return InsertOutcome.INSERTED

    async def try_insert(self, connection_id: str, session: Session) -> bool:
        return await self.insert(connection_id, session) is InsertOutcome.INSERTED

    async def get(self, connection_id: str) -> Session | None:
        async with self._lock:
            return self._sessions.get(connection_id)

    async def remove(self, connection_id: str) -> Session | None:
        """
        Remove a session.

        Returns:
            Session or None if it was already removed (second removal is a no-op)
        """
        async with self._lock:
            return self._sessions.pop(connection_id, None)

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def identified_count(self) -> int:
        return sum(1 for session in self._sessions.values() if session.device_id is not None)

    def stats(self) -> dict[str, int]:
        return {
            "total_connections": len(self._sessions),
            "identified_devices": self.identified_count(),
            "max_connections": self.max_connections,
        }
