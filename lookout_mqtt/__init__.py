"""
Lookout MQTT Communication Package
==================================

Bounded Context: Communication Protocol for the inference bridge

MQTT messaging between the inference bridge (subprocess ingestion +
frame correlation) and its consumers: the "inference" topic, telemetry,
and structured logs.

Architecture:
- schemas/: Immutable data structures with type safety
- publishers/: Message producers (InferencePublisher, TelemetryPublisher)
- logging/: Structured JSON logging for observability

Public API
----------
Schemas:
    Timestamp
    DetectedObject, DetectionEvent
    FrameBuffer, SequencedDetection, PublishPacket
    HealthCode

Publishers:
    InferencePublisher, TelemetryPublisher
    BasePublisher (for custom publishers)

Subscriber:
    InferenceSubscriber

Logging:
    LogEvent, StructuredLogger, create_logger

Example:
    >>> from lookout_mqtt import InferencePublisher, create_logger
    >>> from lookout_mqtt.schemas import PublishPacket, Timestamp
    >>>
    >>> publisher = InferencePublisher(
    ...     broker_host="localhost",
    ...     topic="inference",
    ...     logger=create_logger("inference_publisher")
    ... )
    >>> publisher.connect()
    >>> publisher.publish_packet(
    ...     PublishPacket(schema_version="1.0", timestamp=Timestamp.now())
    ... )
"""

__version__ = "1.0.0"

from .schemas import (
    Timestamp,
    DetectedObject,
    DetectionEvent,
    FrameBuffer,
    SequencedDetection,
    PublishPacket,
    HealthCode,
)

from .publishers import (
    BasePublisher,
    InferencePublisher,
    TelemetryPublisher,
)

from .subscriber import InferenceSubscriber

from .logging import (
    LogEvent,
    StructuredLogger,
    create_logger,
)

__all__ = [
    '__version__',
    # Schemas
    'Timestamp',
    'DetectedObject',
    'DetectionEvent',
    'FrameBuffer',
    'SequencedDetection',
    'PublishPacket',
    'HealthCode',
    # Publishers
    'BasePublisher',
    'InferencePublisher',
    'TelemetryPublisher',
    # Subscriber
    'InferenceSubscriber',
    # Logging
    'LogEvent',
    'StructuredLogger',
    'create_logger',
]
