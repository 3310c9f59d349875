"""
Base MQTT Publisher
===================

Bounded Context: MQTT Infrastructure

One paho client per outbound topic. The inference bridge owns two of them
(inference packets and telemetry); both are written to from the
coordinator's worker threads while paho runs its own network loop.

Contract:
- publish() never raises; a failure is logged and returned as False
- Payloads are compact JSON; packets above max_payload_size are refused
  before they reach the client (a base64 frame can be several MiB)
- The network loop reconnects on its own after a broker outage; publish()
  reports False while the link is down

Architecture:
    BasePublisher (abstract)
        ↓
    InferencePublisher, TelemetryPublisher (concrete)
"""

import json
import threading
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
import paho.mqtt.client as mqtt

from ..logging import StructuredLogger, LogEvent

DEFAULT_MAX_PAYLOAD_SIZE = 8 * 1024 * 1024
RECONNECT_MIN_DELAY = 1
RECONNECT_MAX_DELAY = 30


class BasePublisher(ABC):
    """
    Abstract base class for the bridge's MQTT publishers.

    Subclasses implement format_message() and a typed publish_* method that
    calls publish().

    Attributes:
        topic: Destination topic
        qos: QoS for every message on this topic
        max_payload_size: Largest encoded payload accepted, in bytes
        logger: Structured logger instance
    """

    def __init__(
        self,
        broker_host: str,
        broker_port: int,
        topic: str,
        client_id: str,
        logger: StructuredLogger,
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 0,
        max_payload_size: int = DEFAULT_MAX_PAYLOAD_SIZE,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.topic = topic
        self.client_id = client_id
        self.logger = logger
        self.qos = qos
        self.max_payload_size = max_payload_size

        self.client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
        )
        if username and password:
            self.client.username_pw_set(username, password)
        self.client.reconnect_delay_set(RECONNECT_MIN_DELAY, RECONNECT_MAX_DELAY)

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect

        self._connected = threading.Event()
        self._loop_running = False
        self._stats_lock = threading.Lock()
        self._published = 0
        self._failed = 0
        self._bytes_published = 0

    @property
    def broker(self) -> str:
        return f"{self.broker_host}:{self.broker_port}"

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message=f"Broker refused connection (rc={reason_code})",
                metadata={'broker': self.broker, 'client_id': self.client_id}
            )
            return

        self._connected.set()
        self.logger.info(
            event=LogEvent.MQTT_CONNECTED,
            message=f"Publishing to '{self.topic}'",
            metadata={'broker': self.broker, 'client_id': self.client_id, 'qos': self.qos}
        )

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties) -> None:
        self._connected.clear()
        if reason_code.is_failure:
            self.logger.warning(
                event=LogEvent.MQTT_DISCONNECTED,
                message="Lost broker connection, paho will reconnect",
                metadata={'broker': self.broker, 'reason_code': str(reason_code)}
            )

    def connect(self, timeout: float = 10.0) -> bool:
        """
        Start the network loop and wait for the broker to accept.

        A timeout leaves the loop running, so a broker that comes up later
        is still picked up.
        """
        try:
            self.client.connect(self.broker_host, self.broker_port)
        except (OSError, ValueError) as e:
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message="Failed to connect to broker",
                exc_info=e,
                metadata={'broker': self.broker}
            )
            return False

        self.client.loop_start()
        self._loop_running = True

        if self._connected.wait(timeout=timeout):
            return True

        self.logger.error(
            event=LogEvent.MQTT_CONNECTION_ERROR,
            message=f"No CONNACK after {timeout}s",
            metadata={'broker': self.broker}
        )
        return False

    def disconnect(self) -> None:
        """Stop the network loop. Safe to call when never connected."""
        if not self._loop_running:
            return

        self.client.disconnect()
        self.client.loop_stop()
        self._loop_running = False
        self._connected.clear()

        self.logger.info(
            event=LogEvent.MQTT_DISCONNECTED,
            message="Publisher closed",
            metadata=self.get_stats()
        )

    def is_connected(self) -> bool:
        return self._connected.is_set()

    @abstractmethod
    def format_message(self, *args, **kwargs) -> Dict[str, Any]:
        """Build the JSON-compatible message body."""
        raise NotImplementedError("Subclasses must implement format_message()")

    def encode(self, message_data: Dict[str, Any]) -> bytes:
        """Compact JSON encoding used on the wire."""
        return json.dumps(message_data, separators=(',', ':')).encode('utf-8')

    def publish(self, message_data: Dict[str, Any], retain: bool = False) -> bool:
        """
        Encode and hand one message to the paho client.

        Returns:
            True if the client queued the message, False otherwise
        """
        if not self._connected.is_set():
            self.logger.warning(
                event=LogEvent.MQTT_PUBLISH_FAILED,
                message="Cannot publish: not connected to broker",
                metadata={'topic': self.topic}
            )
            self._count_failure()
            return False

        try:
            payload = self.encode(message_data)
        except (TypeError, ValueError) as e:
            self.logger.error(
                event=LogEvent.SERIALIZATION_ERROR,
                message="Message is not JSON serializable",
                exc_info=e,
                metadata={'topic': self.topic}
            )
            self._count_failure()
            return False

        if len(payload) > self.max_payload_size:
            self.logger.warning(
                event=LogEvent.MQTT_PUBLISH_FAILED,
                message="Payload above size limit, not published",
                metadata={'topic': self.topic, 'bytes': len(payload), 'limit': self.max_payload_size}
            )
            self._count_failure()
            return False

        try:
            result = self.client.publish(self.topic, payload, qos=self.qos, retain=retain)
        except (OSError, ValueError) as e:
            self.logger.error(
                event=LogEvent.MQTT_PUBLISH_ERROR,
                message="Error publishing message",
                exc_info=e,
                metadata={'topic': self.topic}
            )
            self._count_failure()
            return False

        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            self.logger.warning(
                event=LogEvent.MQTT_PUBLISH_FAILED,
                message=f"Publish failed (rc={result.rc})",
                metadata={'topic': self.topic}
            )
            self._count_failure()
            return False

        with self._stats_lock:
            self._published += 1
            self._bytes_published += len(payload)

        self.logger.debug(
            event=LogEvent.MQTT_PUBLISH_SUCCESS,
            message="Published message",
            metadata={'topic': self.topic, 'bytes': len(payload)}
        )
        return True

    def _count_failure(self) -> None:
        with self._stats_lock:
            self._failed += 1

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            return {
                'topic': self.topic,
                'broker': self.broker,
                'connected': self._connected.is_set(),
                'published': self._published,
                'failed': self._failed,
                'bytes_published': self._bytes_published,
            }
