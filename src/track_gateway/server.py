from __future__ import annotations

import asyncio
import contextlib

from track_gateway.const import CLASSIFICATION_TIMEOUT, TRACK_CHUNK_SIZE
from track_gateway.correlation import bind_connection, ensure_correlation_id
from track_gateway.instrumentation import timed_async
from track_gateway.logging_abstraction import get_logger
from track_gateway.protocol.acks import ack_for
from track_gateway.protocol.frame_codec import FrameBuffer, try_decode
from track_gateway.router import CommandRouter
from track_gateway.session import InsertOutcome, Session, SessionRegistry, SessionState
from track_gateway.structs import GatewayEnv
from track_gateway.transport.classifier import ConnectionKind, build_health_response, classify
from track_gateway.transport.exceptions import CapacityExceededError, ClassificationTimeoutError, DuplicateConnectionError
from track_gateway.utils import process_uptime

__all__ = [
    "TrackGatewayServer",
]
logger = get_logger(__name__)


class TrackGatewayServer:
    """TCP server that accepts @Track device connections.

    One handler task per connection: classify the first packet, then frame,
    decode, route and acknowledge every frame in arrival order until the
    peer disconnects or the connection life runs out.
    """

    def __init__(
        self,
        env: GatewayEnv,
        registry: SessionRegistry | None = None,
        router: CommandRouter | None = None,
    ) -> None:
        self.env: GatewayEnv = env
        self.host: str = env.host
        self.port: int = env.port
        self.registry: SessionRegistry = registry if registry is not None else SessionRegistry(env.max_connections)
        self.router: CommandRouter = router if router is not None else CommandRouter()
        self.running: bool = False
        self.shutting_down: bool = False
        self._server: asyncio.Server | None = None
        self._writers: dict[str, asyncio.StreamWriter] = {}
        self.start_task: asyncio.Task[None] | None = None
        self.stats_task: asyncio.Task[None] | None = None
        # lifetime counters
        self.total_messages: int = 0
        self.accepted_connections: int = 0
        self.rejected_connections: int = 0
        self.duplicate_connections: int = 0
        self.health_checks: int = 0
        self.decode_errors: int = 0
        self.acks_sent: int = 0

        logger.info(
            "TCP Server initialized",
            extra={
                "host": self.host,
                "port": self.port,
                "enable_sack": env.enable_sack,
                "sack_mode": int(env.sack_mode),
                "connection_life": env.connection_life,
                "max_connections": env.max_connections,
            },
        )

    @property
    def uptime(self) -> float:
        return process_uptime()

    @property
    def bound_port(self) -> int | None:
        """Port actually listened on (differs from ``port`` when it is 0)."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    def stats(self) -> dict[str, object]:
        registry_stats = self.registry.stats()
        return {
            "total_connections": registry_stats["total_connections"],
            "identified_devices": registry_stats["identified_devices"],
            "max_connections": registry_stats["max_connections"],
            "total_messages": self.total_messages,
            "accepted_connections": self.accepted_connections,
            "rejected_connections": self.rejected_connections,
            "duplicate_connections": self.duplicate_connections,
            "health_checks": self.health_checks,
            "decode_errors": self.decode_errors,
            "acks_sent": self.acks_sent,
            "heartbeat_interval": self.env.heartbeat_interval,
            "uptime": round(self.uptime, 1),
        }

    async def periodic_stats_logger(self) -> None:
        """Log server stats every ``stats_log_interval`` seconds."""
        interval = self.env.stats_log_interval
        logger.info(" Starting server stats monitoring", extra={"interval_seconds": interval})

        while self.running:
            try:
                await asyncio.sleep(interval)
                if not self.running:
                    break
                logger.info("Server Stats", extra=self.stats())
            except asyncio.CancelledError:
                logger.info("Stats monitoring task cancelled")
                break
            except Exception as e:
                logger.exception(" Error in stats monitoring", extra={"error": str(e)})

    async def listen(self) -> None:
        """Bind the listening socket without blocking."""
        self._server = await asyncio.start_server(
            self._register_new_connection,
            host=self.host,
            port=self.port,
        )
        self.running = True
        logger.info(
            " TCP Server started - waiting for device connections",
            extra={"host": self.host, "port": self.bound_port},
        )

    async def start(self) -> None:
        try:
            await self.listen()
        except asyncio.CancelledError as ce:
            logger.debug("Server start cancelled", extra={"reason": str(ce)})
            raise
        except Exception as e:
            logger.exception(
                " Failed to start TCP server",
                extra={"host": self.host, "port": self.port, "error": str(e)},
            )
            return

        assert self._server is not None
        try:
            if self.env.stats_log_interval > 0:
                self.stats_task = asyncio.create_task(self.periodic_stats_logger())
            async with self._server:
                await self._server.serve_forever()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(" Server exception", extra={"error": str(e)})

    async def _close_all_connections(self) -> None:
        writers = list(self._writers.items())
        if not writers:
            logger.info("No devices connected during shutdown")
            return
        logger.info(" Shutting down server, closing device connections", extra={"connection_count": len(writers)})
        for connection_id, writer in writers:
            try:
                await self._close_writer(writer)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(
                    " Error closing device connection",
                    extra={"connection_id": connection_id, "error": str(e)},
                )

    async def _close_tcp_server(self) -> None:
        if self._server is None:
            logger.debug("Server not running")
            return
        logger.debug("Closing TCP server...")
        self._server.close()
        await self._server.wait_closed()
        logger.debug(" TCP server closed")

    async def stop(self) -> None:
        try:
            self.shutting_down = True
            self.running = False
            if self._server is not None:
                # stop accepting before tearing down live connections
                self._server.close()
            await self._close_all_connections()
            await self._close_tcp_server()
        except asyncio.CancelledError as ce:
            logger.debug("Server stop cancelled", extra={"reason": str(ce)})
            raise
        except Exception as e:
            logger.exception(" Error during server shutdown", extra={"error": str(e)})
        else:
            logger.info(" Server stopped successfully", extra=self.stats())
        finally:
            if self.start_task and not self.start_task.done():
                logger.debug("Cancelling start task")
                _ = self.start_task.cancel()
            if self.stats_task and not self.stats_task.done():
                logger.debug("Cancelling stats task")
                _ = self.stats_task.cancel()

    @staticmethod
    async def _close_writer(writer: asyncio.StreamWriter) -> None:
        if not writer.is_closing():
            writer.close()
        with contextlib.suppress(ConnectionError, OSError):
            await writer.wait_closed()

    async def _read_first_chunk(self, reader: asyncio.StreamReader, connection_id: str) -> bytes:
        """First read of a new connection, bounded by the classification timer.

        Raises:
            ClassificationTimeoutError: nothing arrived within ``CLASSIFICATION_TIMEOUT``

        """
        try:
            async with asyncio.timeout(CLASSIFICATION_TIMEOUT):
                return await reader.read(TRACK_CHUNK_SIZE)
        except TimeoutError:
            raise ClassificationTimeoutError(connection_id, CLASSIFICATION_TIMEOUT) from None

    async def _send_health_response(self, writer: asyncio.StreamWriter, connection_id: str) -> None:
        self.health_checks += 1
        writer.write(build_health_response(self.stats(), process_uptime()))
        await writer.drain()
        logger.debug("Health check answered", extra={"connection_id": connection_id})

    async def _send_ack(self, session: Session, writer: asyncio.StreamWriter, ack_text: str) -> None:
        if writer.is_closing():
            logger.debug(
                "Writer closing, ack not sent",
                extra={"connection_id": session.connection_id, "ack": ack_text},
            )
            return
        writer.write(ack_text.encode("ascii"))
        await writer.drain()
        self.acks_sent += 1
        logger.debug("SACK sent", extra={"connection_id": session.connection_id, "ack": ack_text})

    @timed_async("process_frame")
    async def _process_frame(self, session: Session, writer: asyncio.StreamWriter, text: str) -> None:
        result = try_decode(text)
        if result.frame is None:
            self.decode_errors += 1
            error = result.error
            logger.warning(
                "Frame decode failed",
                extra={
                    "connection_id": session.connection_id,
                    "device_id": session.device_id,
                    "reason": error.reason if error else "unknown",
                    "detail": error.detail if error else None,
                    "data_preview": error.data_preview if error else text[:32],
                },
            )
            return

        frame = result.frame
        _ = session.record_frame()
        self.total_messages += 1
        logger.debug(
            "Frame received",
            extra={
                "connection_id": session.connection_id,
                "kind": str(frame.kind),
                "command_word": frame.command_word,
                "sequence_number": frame.sequence_number,
                "message_count": session.message_count,
            },
        )
        _ = await self.router.route(session, frame)

        ack_text = ack_for(frame, enabled=self.env.enable_sack, mode=self.env.sack_mode)
        if ack_text is not None:
            await self._send_ack(session, writer, ack_text)

    async def _serve_session(
        self,
        session: Session,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        first_chunk: bytes,
    ) -> None:
        framer = FrameBuffer()
        chunk = first_chunk
        while chunk:
            for text in framer.feed(chunk):
                await self._process_frame(session, writer, text)
            chunk = await reader.read(TRACK_CHUNK_SIZE)
        logger.debug("Peer closed connection", extra={"connection_id": session.connection_id})

    async def _register_new_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        _ = ensure_correlation_id()
        loop = asyncio.get_running_loop()
        # connection life is a fixed countdown from accept; frames do not extend it
        deadline = loop.time() + self.env.connection_life
        peername: tuple[str, int] | None = writer.get_extra_info("peername")
        if peername is None:
            logger.warning("Could not get peername from writer")
            await self._close_writer(writer)
            return
        connection_id = f"{peername[0]}:{peername[1]}"
        _ = bind_connection(connection_id)

        if self.registry.is_full:
            self.rejected_connections += 1
            error = CapacityExceededError(connection_id, self.registry.max_connections)
            logger.warning(str(error), extra={"connection_id": connection_id, "reason": error.reason})
            await self._close_writer(writer)
            return

        logger.info(" New connection", extra={"connection_id": connection_id})
        _ = self._writers.setdefault(connection_id, writer)
        session: Session | None = None
        try:
            first_chunk = await self._read_first_chunk(reader, connection_id)
            if not first_chunk:
                logger.debug("Connection closed before sending data", extra={"connection_id": connection_id})
                return

            if classify(first_chunk) is ConnectionKind.HEALTH_CHECK:
                await self._send_health_response(writer, connection_id)
                return

            candidate = Session(connection_id, state=SessionState.CONNECTING)
            candidate.transition(SessionState.IDENTIFYING)
            outcome = await self.registry.insert(connection_id, candidate)
            if outcome is InsertOutcome.DUPLICATE:
                self.duplicate_connections += 1
                dup_error = DuplicateConnectionError(connection_id)
                logger.warning(str(dup_error), extra={"connection_id": connection_id, "reason": dup_error.reason})
                return
            if outcome is InsertOutcome.FULL:
                self.rejected_connections += 1
                error = CapacityExceededError(connection_id, self.registry.max_connections)
                logger.warning(str(error), extra={"connection_id": connection_id, "reason": error.reason})
                return
            session = candidate
            self.accepted_connections += 1

            async with asyncio.timeout_at(deadline):
                await self._serve_session(session, reader, writer, first_chunk)
        except ClassificationTimeoutError as e:
            logger.info(str(e), extra={"connection_id": connection_id, "reason": e.reason})
        except TimeoutError:
            logger.info(
                "Connection life expired",
                extra={"connection_id": connection_id, "connection_life": self.env.connection_life},
            )
        except asyncio.CancelledError as ce:
            logger.debug("Connection cancelled", extra={"connection_id": connection_id, "reason": str(ce)})
            raise
        except (ConnectionError, OSError) as e:
            logger.info(
                "Connection error",
                extra={"connection_id": connection_id, "error_type": type(e).__name__, "error": str(e)},
            )
        except Exception as e:
            logger.exception(" Error handling connection", extra={"connection_id": connection_id, "error": str(e)})
        finally:
            if self._writers.get(connection_id) is writer:
                del self._writers[connection_id]
            if session is not None:
                await self._teardown_session(session)
            await self._close_writer(writer)

    async def _teardown_session(self, session: Session) -> None:
        _ = session.close()
        removed = await self.registry.remove(session.connection_id)
        if removed is None:
            return
        logger.info(
            " Session closed",
            extra={
                "connection_id": session.connection_id,
                "device_id": session.device_id,
                "duration_seconds": round(session.duration_seconds, 1),
                "message_count": session.message_count,
                "remaining_connections": len(self.registry),
            },
        )
        await self.router.disconnect(session)
