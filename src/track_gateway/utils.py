from __future__ import annotations

import asyncio
import datetime
import os
import signal
import time
from collections.abc import Awaitable, Callable

from track_gateway.const import LOCAL_TZ, PROCESS_STARTED_AT
from track_gateway.logging_abstraction import get_logger

logger = get_logger(__name__)

# strong refs so shutdown tasks are not garbage collected mid-flight
_shutdown_tasks: set[asyncio.Task[None]] = set()


def send_signal(signal_num: int):
    """Send a signal to the current process.

    Args:
        signal_num (int): The signal number to send.

    """
    try:
        logger.debug("Sending signal %s to process %s", signal_num, os.getpid())
        os.kill(os.getpid(), signal_num)
    except OSError:
        logger.exception("Failed to send signal %s to process", signal_num)
        raise


def send_sigterm():
    """Request termination of the gateway (graceful shutdown path)."""
    send_signal(signal.SIGTERM)


def signal_handler(signum: int, shutdown: Callable[[], Awaitable[None]]) -> None:
    """Schedule ``shutdown`` on the running loop when SIGINT/SIGTERM arrives."""
    logger.info("track-gateway: Intercepted signal: %s (%s)", signal.Signals(signum).name, signum)
    loop = asyncio.get_event_loop()
    task = loop.create_task(shutdown())
    _shutdown_tasks.add(task)
    task.add_done_callback(_shutdown_tasks.discard)


def utc_to_local(utc_dt: datetime.datetime) -> datetime.datetime:
    return utc_dt.astimezone(LOCAL_TZ)


def process_uptime() -> float:
    """Seconds since the gateway package was first imported."""
    return time.monotonic() - PROCESS_STARTED_AT
