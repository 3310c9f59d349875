"""
Lookout MQTT Schemas
====================

Bounded Context: Data Structures

Immutable, typed data structures for decoded stream data and published
messages.

Public API
----------
Common Types:
    Timestamp: ISO 8601 timestamp wrapper

Detection Types:
    DetectedObject: Single object reported by the on-camera detector
    DetectionEvent: One decoded detection message

Packet Types:
    FrameBuffer: One JPEG frame cut from the MJPEG stream
    SequencedDetection: Filtered detection with its sequence number
    PublishPacket: Complete packet for the inference topic

Health Types:
    HealthCode: Ordered health classification (CRITICAL < WARNING < GOOD)

Example:
    >>> from lookout_mqtt.schemas import DetectedObject, SequencedDetection
    >>> obj = DetectedObject(id="3", display_name="person", confidence=91)
    >>> SequencedDetection(sequence_number=0, detection=obj).to_dict()
    {'sequence_number': 0, 'id': '3', 'display_name': 'person', 'confidence': 91}
"""

from .common import Timestamp
from .detection import DetectedObject, DetectionEvent
from .packet import FrameBuffer, SequencedDetection, PublishPacket
from .health import HealthCode

__all__ = [
    # Common types
    'Timestamp',
    # Detection types
    'DetectedObject',
    'DetectionEvent',
    # Packet types
    'FrameBuffer',
    'SequencedDetection',
    'PublishPacket',
    # Health
    'HealthCode',
]
