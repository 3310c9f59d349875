"""
MQTT Publishers
==============

Bounded Context: Message Production

Design:
- BasePublisher: Abstract base with connection management
- InferencePublisher: Publishes correlated inference packets
- TelemetryPublisher: Publishes telemetry counters and events

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

from .base import BasePublisher
from .inference import InferencePublisher
from .telemetry import TelemetryPublisher

__all__ = [
    'BasePublisher',
    'InferencePublisher',
    'TelemetryPublisher',
]
