"""Status events emitted by the pump controllers.

Every state transition of a pump controller produces a ``StatusEvent`` with
action ``transition``. Controllers also report ``trigger_ignored`` (a due
trigger arrived while the pump could not start), ``activation_aborted`` (the
pin could not be switched on) and ``gpio_failure`` (a LOW write failed).

Sinks:
    LoggingEventSink: always installed; FAULT entries are logged CRITICAL
    MqttEventSink: optional, publishes each event as JSON to a telemetry topic
"""
import json
import socket
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

TRANSITION = 'transition'
TRIGGER_IGNORED = 'trigger_ignored'
ACTIVATION_ABORTED = 'activation_aborted'
GPIO_FAILURE = 'gpio_failure'


def _state_name(state) -> Optional[str]:
    return None if state is None else getattr(state, 'name', str(state))


@dataclass(frozen=True)
class StatusEvent:
    """A pump status change or notice.

    Attributes:
        pump_id: Pump the event concerns
        action: One of ``transition``, ``trigger_ignored``,
            ``activation_aborted``, ``gpio_failure``
        old_state: State before the event (PumpState)
        new_state: State after the event (PumpState)
        timestamp: Wall-clock time of the event (UTC)
        monotonic: Monotonic time of the event
        detail: Human-readable reason
    """
    pump_id: str
    action: str
    old_state: Any
    new_state: Any
    monotonic: float
    detail: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pump_id': self.pump_id,
            'action': self.action,
            'old_state': _state_name(self.old_state),
            'new_state': _state_name(self.new_state),
            'timestamp': self.timestamp.isoformat().replace('+00:00', 'Z'),
            'monotonic': self.monotonic,
            'detail': self.detail,
        }


class EventSink(ABC):
    """Receiver of status events."""

    @abstractmethod
    def publish(self, event: StatusEvent):
        pass

    def close(self):
        pass


class LoggingEventSink(EventSink):
    """Writes status events to the log."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def publish(self, event: StatusEvent):
        if event.action == TRANSITION:
            message = (f"{event.pump_id}: {_state_name(event.old_state)} -> "
                       f"{_state_name(event.new_state)}")
            if event.detail:
                message += f" ({event.detail})"
            if _state_name(event.new_state) == 'FAULT':
                self.log.critical(f"{message} - pump disabled until restart")
            else:
                self.log.info(message)
        elif event.action == TRIGGER_IGNORED:
            self.log.warning(f"{event.pump_id}: trigger ignored in state "
                             f"{_state_name(event.old_state)}: {event.detail}")
        else:
            self.log.error(f"{event.pump_id}: {event.action}: {event.detail}")


class CompositeEventSink(EventSink):
    """Fans events out to several sinks; a failing sink does not stop the others."""

    def __init__(self, sinks: Iterable[EventSink]):
        self.sinks: List[EventSink] = list(sinks)

    def publish(self, event: StatusEvent):
        for sink in self.sinks:
            try:
                sink.publish(event)
            except Exception as e:
                logger.error(f"Event sink {sink.__class__.__name__} failed: {e}")

    def close(self):
        for sink in self.sinks:
            sink.close()


class MqttEventSink(EventSink):
    """Publishes status events to an MQTT broker.

    Publish-only: nothing is subscribed, so the broker cannot command pumps.
    The connection is made in the background so a missing broker never
    delays watering; paho reconnects on its own.

    Args:
        broker: Broker hostname
        port: Broker port (8883 is used when TLS is enabled)
        topic: Telemetry topic for events
        tls: Enable TLS
        ca_path: CA certificate for TLS
        client: Pre-built paho client, mainly for tests
    """

    def __init__(self, broker: str, port: int = 1883, topic: str = 'water/telemetry',
                 tls: bool = False, ca_path: Optional[str] = None,
                 client: Optional[mqtt.Client] = None):
        self.topic = topic
        self.host = socket.gethostname()
        self.status_topic = f"{topic}/{self.host}/status"

        self.client = client or mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, clean_session=True)
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect

        if tls:
            import ssl
            self.client.tls_set(
                ca_certs=ca_path,
                cert_reqs=ssl.CERT_REQUIRED,
                tls_version=ssl.PROTOCOL_TLS
            )
            logger.info("MQTT TLS enabled")

        self.client.will_set(self.status_topic, payload=self._status_payload('offline'), qos=1, retain=True)

        port = 8883 if tls else port
        self.client.connect_async(broker, port, keepalive=60)
        self.client.loop_start()
        logger.info(f"Publishing status events to {broker}:{port} on {topic}")

    def _status_payload(self, status: str) -> str:
        return json.dumps({
            'host': self.host,
            'status': status,
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
        })

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error(f"MQTT connection failed: {reason_code}")
            return
        logger.info("MQTT connected")
        client.publish(self.status_topic, self._status_payload('online'), qos=1, retain=True)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        logger.warning(f"MQTT disconnected: {reason_code}")

    def publish(self, event: StatusEvent):
        payload = dict(event.to_dict(), host=self.host)
        try:
            self.client.publish(self.topic, json.dumps(payload), qos=1)
        except Exception as e:
            logger.error(f"Failed to publish event: {e}")

    def close(self):
        try:
            self.client.publish(self.status_topic, self._status_payload('offline'), qos=1, retain=True)
            self.client.loop_stop()
            self.client.disconnect()
        except Exception as e:
            logger.debug(f"Error during MQTT cleanup: {e}")
