"""
Inference Subscriber
====================

Bounded Context: Message Consumption

Consumes the "inference" topic: decodes each packet into a PublishPacket
and hands it to a callback. Used by `lookout-cli watch` and by downstream
consumers.

Sequence numbers come from the bridge's lifetime counter, so a jump between
consecutive packets means packets were lost (QoS 0, full publish queue or
a subscriber that was offline). Gaps are counted, not repaired. A bridge
restart resets the counter; a sequence number lower than the last seen one
is treated as a new session.

Example:
    >>> from lookout_mqtt import InferenceSubscriber, create_logger
    >>>
    >>> subscriber = InferenceSubscriber(
    ...     broker_host="localhost",
    ...     inference_topic="inference",
    ...     on_packet=lambda packet: print(packet.get_sequence_numbers()),
    ...     logger=create_logger("watcher")
    ... )
    >>> subscriber.connect()
    >>> subscriber.start()
"""

import json
import threading
from typing import Any, Callable, Dict, Optional
import paho.mqtt.client as mqtt

from .schemas import PublishPacket
from .logging import StructuredLogger, LogEvent


class InferenceSubscriber:
    """
    Subscriber for inference packets.

    on_packet runs in the paho network thread; keep it short.
    The topic may contain MQTT wildcards ("lookout/+/inference").
    """

    def __init__(
        self,
        broker_host: str,
        inference_topic: str,
        on_packet: Callable[[PublishPacket], None],
        logger: StructuredLogger,
        broker_port: int = 1883,
        client_id: str = "lookout_subscriber",
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 0
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.inference_topic = inference_topic
        self.client_id = client_id
        self.logger = logger
        self.qos = qos
        self.on_packet = on_packet

        self.client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
        )
        if username and password:
            self.client.username_pw_set(username, password)

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

        self._connected = threading.Event()
        self._running = False
        self._stats_lock = threading.Lock()
        self._packets_received = 0
        self._frames_received = 0
        self._invalid_packets = 0
        self._sequence_gaps = 0
        self._missing_detections = 0
        self._last_sequence: Optional[int] = None

    @property
    def broker(self) -> str:
        return f"{self.broker_host}:{self.broker_port}"

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message=f"Broker refused connection (rc={reason_code})",
                metadata={'broker': self.broker}
            )
            return

        # Re-subscribe on every (re)connect; clean sessions forget subscriptions
        client.subscribe(self.inference_topic, qos=self.qos)
        self._connected.set()
        self.logger.info(
            event=LogEvent.MQTT_CONNECTED,
            message=f"Subscribed to '{self.inference_topic}'",
            metadata={'broker': self.broker}
        )

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties) -> None:
        self._connected.clear()
        if reason_code.is_failure:
            self.logger.warning(
                event=LogEvent.MQTT_DISCONNECTED,
                message="Lost broker connection",
                metadata={'broker': self.broker, 'reason_code': str(reason_code)}
            )

    def _on_message(self, client, userdata, msg: mqtt.MQTTMessage) -> None:
        if not mqtt.topic_matches_sub(self.inference_topic, msg.topic):
            self.logger.warning(
                event=LogEvent.DESERIALIZATION_ERROR,
                message=f"Ignoring message on unexpected topic {msg.topic}"
            )
            return

        self.handle_payload(msg.payload)

    def handle_payload(self, payload: bytes) -> Optional[PublishPacket]:
        """Decode raw message bytes; returns the packet or None if invalid."""
        try:
            data = json.loads(payload.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            self._count_invalid()
            self.logger.error(
                event=LogEvent.DESERIALIZATION_ERROR,
                message="Inference message is not JSON",
                exc_info=e,
                metadata={'bytes': len(payload)}
            )
            return None

        if not isinstance(data, dict):
            self._count_invalid()
            self.logger.error(
                event=LogEvent.DESERIALIZATION_ERROR,
                message=f"Inference message must be an object, got {type(data).__name__}"
            )
            return None

        return self._handle_packet_message(data)

    def _handle_packet_message(self, data: Dict[str, Any]) -> Optional[PublishPacket]:
        try:
            packet = PublishPacket.from_dict(data)
        except ValueError as e:
            self._count_invalid()
            self.logger.error(
                event=LogEvent.DESERIALIZATION_ERROR,
                message="Inference packet failed schema validation",
                exc_info=e
            )
            return None

        self._record(packet)
        self.logger.debug(
            event=LogEvent.INFERENCE_RECEIVED,
            message=f"Received {packet.detection_count} detections",
            metadata={
                'sequence_numbers': packet.get_sequence_numbers(),
                'frame_bytes': len(packet.frame)
            }
        )

        try:
            self.on_packet(packet)
        except Exception as e:
            self.logger.error(
                event=LogEvent.INFERENCE_RECEIVED,
                message="Packet callback failed",
                exc_info=e,
                metadata={'sequence_numbers': packet.get_sequence_numbers()}
            )
        return packet

    def _record(self, packet: PublishPacket) -> None:
        sequence_numbers = packet.get_sequence_numbers()

        with self._stats_lock:
            self._packets_received += 1
            if packet.has_frame:
                self._frames_received += 1
            if not sequence_numbers:
                return

            first = sequence_numbers[0]
            last = self._last_sequence
            missing = first - last - 1 if last is not None else 0
            if missing > 0:
                self._sequence_gaps += 1
                self._missing_detections += missing
            self._last_sequence = sequence_numbers[-1]

        if missing > 0:
            self.logger.warning(
                event=LogEvent.INFERENCE_RECEIVED,
                message=f"Sequence gap: {missing} detections missing",
                metadata={'after': last, 'next': first}
            )

    def _count_invalid(self) -> None:
        with self._stats_lock:
            self._invalid_packets += 1

    def connect(self, timeout: float = 10.0) -> bool:
        """Start the network loop and wait for the subscription."""
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
        if self._connected.wait(timeout=timeout):
            return True

        self.logger.error(
            event=LogEvent.MQTT_CONNECTION_ERROR,
            message=f"No CONNACK after {timeout}s",
            metadata={'broker': self.broker}
        )
        return False

    def start(self) -> None:
        if not self._connected.is_set():
            self.logger.warning(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message="Cannot start: not connected to broker"
            )
            return

        self._running = True

    def stop(self) -> None:
        """Stop the network loop and disconnect."""
        self._running = False
        self.client.disconnect()
        self.client.loop_stop()

        self.logger.info(
            event=LogEvent.MQTT_DISCONNECTED,
            message="Subscriber stopped",
            metadata=self.get_stats()
        )

    def is_connected(self) -> bool:
        return self._connected.is_set()

    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            return {
                'packets_received': self._packets_received,
                'frames_received': self._frames_received,
                'invalid_packets': self._invalid_packets,
                'sequence_gaps': self._sequence_gaps,
                'missing_detections': self._missing_detections,
                'last_sequence_number': self._last_sequence,
                'connected': self._connected.is_set(),
                'inference_topic': self.inference_topic,
                'broker': self.broker,
            }
