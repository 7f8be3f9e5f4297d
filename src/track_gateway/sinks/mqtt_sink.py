"""MQTT event sink: publishes routed gateway events as JSON.

Topic layout under the configured base topic:
    <topic>/status                                 online/offline (retained, LWT)
    <topic>/devices/<device_id>/identified         first frame carrying an identity
    <topic>/devices/<device_id>/<category>         every routed frame
    <topic>/alerts/<device_id>                     alert categories and speeding
    <topic>/connections/<connection_id>/closed     final session counters
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import TYPE_CHECKING

import aiomqtt

from track_gateway.logging_abstraction import get_logger
from track_gateway.protocol.report_parser import parse_location
from track_gateway.router import ALERT_SEVERITY, CommandCategory
from track_gateway.utils import send_sigterm

if TYPE_CHECKING:
    from track_gateway.session import Session
    from track_gateway.structs import Frame, GatewayEnv

__all__ = ["MQTTEventSink"]

logger = get_logger(__name__)

BIRTH_MSG = b"online"
WILL_MSG = b"offline"
UNKNOWN_DEVICE = "unknown"


def frame_payload(frame: Frame) -> dict[str, object]:
    sent_at = frame.sent_at
    return {
        "kind": str(frame.kind),
        "command_word": frame.command_word,
        "protocol_version": frame.protocol_version,
        "device_id": frame.device_id,
        "device_name": frame.device_name,
        "send_time": frame.send_time,
        "sent_at": sent_at.isoformat() if sent_at else None,
        "sequence_number": frame.sequence_number,
        "raw_text": frame.raw_text,
    }


class MQTTEventSink:
    """Publish gateway events to an MQTT broker.

    A failed publish is logged and reported as False; it never raises into
    the router. ``start()`` keeps the broker connection up in the background.
    """

    lp: str = "mqtt_sink:"

    def __init__(self, env: GatewayEnv) -> None:
        self.topic: str = env.mqtt_topic or "track_gateway"
        self.broker_host: str = env.mqtt_host
        self.broker_port: int = env.mqtt_port or 1883
        self.broker_username: str | None = env.mqtt_user
        self.broker_password: str | None = env.mqtt_pass
        self.broker_client_id: str = f"track_gateway_{uuid.uuid4().hex[:8]}"
        self.speed_limit_kmh: float = env.speed_limit_kmh
        # seconds between reconnect attempts; 0 falls back to 5
        self.reconnect_delay: int = env.mqtt_conn_delay if env.mqtt_conn_delay > 0 else 5
        self.client: aiomqtt.Client | None = None
        self.start_task: asyncio.Task[None] | None = None
        self._connected: bool = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _new_client(self) -> aiomqtt.Client:
        lwt = aiomqtt.Will(topic=f"{self.topic}/status", payload=WILL_MSG, retain=True)
        return aiomqtt.Client(
            hostname=self.broker_host,
            port=self.broker_port,
            username=self.broker_username,
            password=self.broker_password,
            identifier=self.broker_client_id,
            will=lwt,
        )

    async def connect(self) -> bool:
        lp = f"{self.lp}connect:"
        self._connected = False
        logger.debug("%s Connecting to MQTT broker %s:%s...", lp, self.broker_host, self.broker_port)
        self.client = self._new_client()
        try:
            _ = await self.client.__aenter__()
        except aiomqtt.MqttError as mqtt_err:
            # [code:134] Bad user name or password
            logger.warning("%s Connection failed [MqttError] -> %s", lp, mqtt_err)
            if "code:134" in str(mqtt_err):
                logger.error(
                    "%s Bad username or password, check your MQTT credentials (username: %s)",
                    lp,
                    self.broker_username,
                )
                send_sigterm()
            return False
        self._connected = True
        logger.info("%s Connected to MQTT broker: %s port: %s", lp, self.broker_host, self.broker_port)
        try:
            await self.client.publish(f"{self.topic}/status", BIRTH_MSG, qos=0, retain=True)
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s Birth message failed -> %s", lp, mqtt_err)
            self._connected = False
        return self._connected

    async def start(self) -> None:
        """Connect, and reconnect whenever a publish marks the link as down."""
        lp = f"{self.lp}start:"
        delay = self.reconnect_delay
        try:
            while True:
                if not self._connected and not await self.connect():
                    logger.info(
                        "%s connecting to MQTT broker failed, sleeping for %s seconds before re-trying...",
                        lp,
                        delay,
                    )
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s MQTT start() EXCEPTION", lp)

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        if self.start_task and not self.start_task.done():
            _ = self.start_task.cancel()
        if self.client is None:
            return
        try:
            if self._connected:
                await self.client.publish(f"{self.topic}/status", WILL_MSG, qos=0, retain=True)
            await self.client.__aexit__(None, None, None)
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s MQTT disconnect failed: %s", lp, mqtt_err)
        else:
            logger.info("%s Disconnected from MQTT broker", lp)
        finally:
            self._connected = False

    async def publish(self, topic: str, msg_data: bytes) -> bool:
        """Publish a message to the MQTT broker."""
        lp = f"{self.lp}publish:"
        if not self._connected or self.client is None:
            return False
        try:
            _ = await self.client.publish(topic, msg_data, qos=0, retain=False)
        except aiomqtt.MqttCodeError as mqtt_code_exc:
            logger.warning("%s [MqttCodeError] -> %s", lp, mqtt_code_exc)
            self._connected = False
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s [MqttError] -> %s", lp, mqtt_err)
            self._connected = False
        else:
            return True
        return False

    async def publish_json_msg(self, topic: str, msg_data: dict[str, object]) -> bool:
        return await self.publish(topic, json.dumps(msg_data, default=str).encode())

    def _device_topic(self, device_id: str | None, suffix: str) -> str:
        return f"{self.topic}/devices/{device_id or UNKNOWN_DEVICE}/{suffix}"

    async def on_device_identified(self, session: Session, frame: Frame) -> None:
        _ = await self.publish_json_msg(
            self._device_topic(session.device_id, "identified"),
            {
                "connection_id": session.connection_id,
                "peer_ip": session.peer_ip,
                "device_id": session.device_id,
                "device_name": session.device_name,
                "protocol_version": frame.protocol_version,
            },
        )

    async def on_frame(self, session: Session, category: CommandCategory, frame: Frame) -> None:
        device_id = session.device_id or frame.device_id
        payload = frame_payload(frame)
        payload["category"] = str(category)
        payload["connection_id"] = session.connection_id

        location = parse_location(frame) if category is CommandCategory.LOCATION_REPORT else None
        if location is not None:
            payload["location"] = location.model_dump(mode="json")

        _ = await self.publish_json_msg(self._device_topic(device_id, str(category)), payload)

        alert: dict[str, object] | None = None
        if category in ALERT_SEVERITY:
            alert = {"alert_type": str(category), "severity": ALERT_SEVERITY[category]}
        elif location is not None and location.speed is not None and location.speed > self.speed_limit_kmh:
            alert = {
                "alert_type": "speed_limit",
                "severity": "high",
                "speed_kmh": location.speed,
                "limit_kmh": self.speed_limit_kmh,
            }
        if alert is not None:
            alert.update(device_id=device_id, command_word=frame.command_word, send_time=frame.send_time)
            _ = await self.publish_json_msg(f"{self.topic}/alerts/{device_id or UNKNOWN_DEVICE}", alert)

    async def on_disconnect(self, session: Session) -> None:
        _ = await self.publish_json_msg(
            f"{self.topic}/connections/{session.connection_id}/closed",
            {
                "connection_id": session.connection_id,
                "device_id": session.device_id,
                "duration_seconds": round(session.duration_seconds, 1),
                "message_count": session.message_count,
            },
        )
