"""FastAPI application exposing live gateway statistics and sessions."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from track_gateway.logging_abstraction import get_logger

if TYPE_CHECKING:
    from track_gateway.server import TrackGatewayServer

__all__ = [
    "SessionInfo",
    "StatsServer",
    "create_app",
]

logger = get_logger(__name__)


class SessionInfo(BaseModel):
    """One live connection as reported by ``/api/sessions``."""

    connection_id: str
    peer_ip: str
    device_id: str | None = None
    device_name: str | None = None
    state: str
    message_count: int
    opened_at: float
    last_heartbeat_at: float | None = None
    duration_seconds: float


def _gateway(request: Request) -> TrackGatewayServer:
    return request.app.state.gateway


def create_app(gateway: TrackGatewayServer) -> FastAPI:
    app = FastAPI(title="track-gateway stats")
    app.state.gateway = gateway
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.get("/healthz")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/api/stats")
    async def get_stats(request: Request) -> dict[str, Any]:
        return _gateway(request).stats()

    @app.get("/api/sessions")
    async def list_sessions(request: Request) -> list[SessionInfo]:
        sessions = _gateway(request).registry.sessions()
        return [SessionInfo.model_validate(session.to_dict()) for session in sessions]

    @app.get("/api/sessions/{connection_id}")
    async def get_session(connection_id: str, request: Request) -> SessionInfo:
        session = await _gateway(request).registry.get(connection_id)
        if session is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return SessionInfo.model_validate(session.to_dict())

    return app


class StatsServer:
    """Runs the stats API with uvicorn alongside the TCP server."""

    lp = "StatsServer:"
    running: bool = False
    start_task: asyncio.Task[None] | None = None

    def __init__(self, gateway: TrackGatewayServer, host: str, port: int) -> None:
        self.host = host
        self.port = port
        self.app = create_app(gateway)
        self.uvi_server = uvicorn.Server(
            config=uvicorn.Config(
                self.app,
                host=host,
                port=port,
                log_config={
                    "version": 1,
                    "disable_existing_loggers": False,
                },
                log_level="info",
            )
        )

    async def start(self) -> None:
        lp = f"{self.lp}start:"
        logger.info("%s Starting stats API on %s:%s", lp, self.host, self.port)
        self.running = True
        try:
            await self.uvi_server.serve()
        except asyncio.CancelledError:
            logger.info("%s Stats API stopped", lp)
            raise
        except Exception:
            logger.exception("%s Error starting stats API", lp)
        finally:
            self.running = False

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        logger.info("%s Stopping stats API...", lp)
        self.uvi_server.should_exit = True
        try:
            if self.start_task and not self.start_task.done():
                await asyncio.wait_for(self.start_task, timeout=5)
        except TimeoutError:
            # wait_for already cancelled the serve task
            logger.warning("%s Stats API did not stop in time", lp)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s Error stopping stats API", lp)
