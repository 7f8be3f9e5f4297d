"""Command routing: classify decoded frames and fan them out to event sinks.

Command dispatch is a lookup table, not control flow. Adding a command word
means adding a row to ``COMMAND_CATEGORIES``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from enum import StrEnum
from types import MappingProxyType
from typing import Protocol

from track_gateway.correlation import bind_device
from track_gateway.instrumentation import timed_async
from track_gateway.logging_abstraction import get_logger
from track_gateway.session import Session
from track_gateway.structs import Frame

__all__ = [
    "ALERT_SEVERITY",
    "COMMAND_CATEGORIES",
    "CommandCategory",
    "CommandRouter",
    "EventSink",
    "classify_command",
]

logger = get_logger(__name__)


class CommandCategory(StrEnum):
    HEARTBEAT = "heartbeat"
    LOCATION_REPORT = "location_report"
    POWER_FAILURE = "power_failure"
    BATTERY_LOW = "battery_low"
    TEMPERATURE = "temperature"
    JAMMING = "jamming"
    GEOFENCE = "geofence"
    UNMAPPED = "unmapped"


COMMAND_CATEGORIES: Mapping[str, CommandCategory] = MappingProxyType(
    {
        "GTHBD": CommandCategory.HEARTBEAT,
        "GTFRI": CommandCategory.LOCATION_REPORT,
        "GTPFA": CommandCategory.POWER_FAILURE,
        "GTBPL": CommandCategory.BATTERY_LOW,
        "GTTEM": CommandCategory.TEMPERATURE,
        "GTJDS": CommandCategory.JAMMING,
        "GTGEO": CommandCategory.GEOFENCE,
    }
)

ALERT_SEVERITY: Mapping[CommandCategory, str] = MappingProxyType(
    {
        CommandCategory.POWER_FAILURE: "high",
        CommandCategory.BATTERY_LOW: "medium",
        CommandCategory.TEMPERATURE: "medium",
        CommandCategory.JAMMING: "high",
        CommandCategory.GEOFENCE: "medium",
    }
)


def classify_command(command_word: str) -> CommandCategory:
    return COMMAND_CATEGORIES.get(command_word, CommandCategory.UNMAPPED)


class EventSink(Protocol):
    """Collaborator that receives routed gateway events."""

    async def on_device_identified(self, session: Session, frame: Frame) -> None:
        """Called once per session, when the device identifier becomes known."""
        ...

    async def on_frame(self, session: Session, category: CommandCategory, frame: Frame) -> None:
        """Called for every successfully decoded frame, in arrival order."""
        ...

    async def on_disconnect(self, session: Session) -> None:
        """Called once per session after it is closed and unregistered."""
        ...


class CommandRouter:
    """Route decoded frames of one or more sessions to the configured sinks.

    A failing sink is logged and skipped; it never stops the remaining sinks
    or the next frame.
    """

    def __init__(self, sinks: Iterable[EventSink] = ()) -> None:
        self.sinks: list[EventSink] = list(sinks)

    def add_sink(self, sink: EventSink) -> None:
        self.sinks.append(sink)

    async def _notify(self, hook: str, session: Session, *args: object) -> None:
        for sink in self.sinks:
            try:
                await getattr(sink, hook)(session, *args)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(
                    " Event sink failed",
                    extra={
                        "sink": type(sink).__name__,
                        "hook": hook,
                        "connection_id": session.connection_id,
                        "device_id": session.device_id,
                        "error": str(e),
                    },
                )

    @timed_async("route_frame")
    async def route(self, session: Session, frame: Frame) -> CommandCategory:
        """Classify ``frame`` and notify every sink.

        The first frame carrying a device identifier identifies the session;
        sinks get the identification event before that frame's category event.
        """
        if session.device_id is None and frame.device_id and session.identify(frame.device_id, frame.device_name):
            bind_device(session.device_id)
            logger.info(
                " Device identified",
                extra={
                    "connection_id": session.connection_id,
                    "device_id": session.device_id,
                    "device_name": session.device_name,
                },
            )
            await self._notify("on_device_identified", session, frame)

        category = classify_command(frame.command_word)
        if category is CommandCategory.HEARTBEAT:
            session.mark_heartbeat()

        await self._notify("on_frame", session, category, frame)
        return category

    async def disconnect(self, session: Session) -> None:
        """Report a finished session (final counters) to every sink."""
        await self._notify("on_disconnect", session)
