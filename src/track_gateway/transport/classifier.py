"""First-packet classification of new connections.

Load balancers and uptime monitors poll the device port with plain HTTP.
Those checks get a small JSON health reply and are closed; everything else is
@Track traffic and goes to the frame pipeline with its first chunk intact.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import StrEnum

from track_gateway.const import HTTP_MARKERS

__all__ = [
    "ConnectionKind",
    "build_health_response",
    "classify",
]


class ConnectionKind(StrEnum):
    HEALTH_CHECK = "health_check"
    PROTOCOL = "protocol"


def classify(first_chunk: bytes | str) -> ConnectionKind:
    """Decide what kind of peer sent ``first_chunk``.

    Any HTTP request line or header token marks a health check request.
    """
    text = first_chunk if isinstance(first_chunk, str) else first_chunk.decode("ascii", errors="replace")
    if any(marker in text for marker in HTTP_MARKERS):
        return ConnectionKind.HEALTH_CHECK
    return ConnectionKind.PROTOCOL


def build_health_response(stats: Mapping[str, object], uptime: float) -> bytes:
    """Build the full ``HTTP/1.1 200 OK`` reply for a health check request.

    ``stats`` is the server stats mapping; ``total_connections`` and
    ``identified_devices`` are reported as ``connections`` and ``devices``.
    """
    body = json.dumps(
        {
            "status": "healthy",
            "uptime": round(uptime),
            "connections": stats.get("total_connections", 0),
            "devices": stats.get("identified_devices", 0),
            "timestamp": datetime.now(UTC).isoformat(),
        }
    ).encode()
    head = (
        "HTTP/1.1 200 OK\r\n"
        "Content-Type: application/json\r\n"
        "Access-Control-Allow-Origin: *\r\n"
        f"Content-Length: {len(body)}\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    return head.encode("ascii") + body
