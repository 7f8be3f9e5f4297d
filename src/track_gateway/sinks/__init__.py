"""Event sinks for routed gateway events.

- log_sink.py: LoggingSink, one structured log line per event
- mqtt_sink.py: MQTTEventSink, JSON events published over MQTT
"""

from .log_sink import LoggingSink
from .mqtt_sink import MQTTEventSink

__all__ = [
    "LoggingSink",
    "MQTTEventSink",
]
