"""
Inference Publisher
===================

Bounded Context: Inference Packet Production

Publishes correlated inference packets (filtered detections + JPEG frame)
to the "inference" topic.

Message Flow:
    InferenceCoordinator → PublishPacket → InferencePublisher → MQTT Broker

Example:
    >>> from lookout_mqtt.publishers import InferencePublisher
    >>> from lookout_mqtt.logging import create_logger
    >>>
    >>> publisher = InferencePublisher(
    ...     broker_host="localhost",
    ...     topic="inference",
    ...     logger=create_logger("inference_publisher")
    ... )
    >>> publisher.connect()
    >>> publisher.publish_packet(packet)
"""

from typing import Dict, Any, Optional
from .base import BasePublisher
from ..schemas import PublishPacket
from ..logging import StructuredLogger, LogEvent


class InferencePublisher(BasePublisher):
    """
    Publisher for PublishPacket instances.

    Attributes:
        Same as BasePublisher, plus:
        schema_version: Current schema version for packets
    """

    def __init__(
        self,
        broker_host: str,
        topic: str,
        logger: StructuredLogger,
        broker_port: int = 1883,
        client_id: str = "lookout_inference_publisher",
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 0
    ):
        super().__init__(
            broker_host=broker_host,
            broker_port=broker_port,
            topic=topic,
            client_id=client_id,
            logger=logger,
            username=username,
            password=password,
            qos=qos
        )
        self.schema_version = "1.0"

    def format_message(self, packet: PublishPacket) -> Dict[str, Any]:
        """
        Format PublishPacket to JSON-compatible dict.

        Raises:
            ValueError: If the packet cannot be serialized
        """
        try:
            formatted = packet.to_dict()

            self.logger.debug(
                event=LogEvent.INFERENCE_SERIALIZED,
                message="Serialized inference packet",
                metadata={
                    'detection_count': packet.detection_count,
                    'frame_bytes': len(packet.frame)
                }
            )

            return formatted

        except Exception as e:
            self.logger.error(
                event=LogEvent.SERIALIZATION_ERROR,
                message="Failed to serialize inference packet",
                exc_info=e
            )
            raise ValueError(f"Failed to format inference packet: {e}")

    def publish_packet(self, packet: PublishPacket) -> bool:
        """
        Publish an inference packet.

        Returns:
            True if published successfully, False otherwise
        """
        try:
            message_data = self.format_message(packet)

            success = self.publish(message_data)

            if success:
                self.logger.info(
                    event=LogEvent.INFERENCE_PUBLISHED,
                    message=f"Published {packet.detection_count} detections",
                    metadata={
                        'sequence_numbers': packet.get_sequence_numbers(),
                        'has_frame': packet.has_frame
                    }
                )

            return success

        except Exception as e:
            self.logger.error(
                event=LogEvent.MQTT_PUBLISH_ERROR,
                message="Error publishing inference packet",
                exc_info=e,
                metadata={'topic': self.topic}
            )
            return False
