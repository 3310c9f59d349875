"""
Inference Packet Schema
=======================

Bounded Context: Published Inference Data

Schema of the packets published to the "inference" topic: the filtered,
sequenced detections of one batch plus the video frame correlated with it.

Message Flow:
    DetectionEvent + FrameBuffer → InferenceCoordinator → PublishPacket → InferencePublisher → MQTT
"""

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .common import Timestamp
from .detection import DetectedObject


@dataclass(frozen=True)
class FrameBuffer:
    """
    One complete JPEG frame (SOI..EOI inclusive) cut from the MJPEG stream.

    Attributes:
        data: JPEG bytes
        captured_at: time.time() when the frame was emitted by the parser
    """
    data: bytes
    captured_at: float

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class SequencedDetection:
    """
    A detected object that passed filtering, stamped with its sequence number.

    Attributes:
        sequence_number: Value from the coordinator's lifetime counter
        detection: The detected object
    """
    sequence_number: int
    detection: DetectedObject

    def __post_init__(self):
        """Validate invariants."""
        if self.sequence_number < 0:
            raise ValueError(
                f"Sequence number must be >= 0, got {self.sequence_number}"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            'sequence_number': self.sequence_number,
            **self.detection.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SequencedDetection':
        """Deserialize from dict.

        Raises:
            ValueError: If required fields missing or invalid
        """
        try:
            return cls(
                sequence_number=int(data['sequence_number']),
                detection=DetectedObject.from_dict(data),
            )
        except KeyError as e:
            raise ValueError(f"Missing required SequencedDetection field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid SequencedDetection data: {e}")


@dataclass(frozen=True)
class PublishPacket:
    """
    Complete inference packet for MQTT publication.

    Attributes:
        schema_version: Message schema version (for evolution)
        timestamp: Publication time
        detections: Filtered, sequenced detections in payload order
        frame: Correlated JPEG bytes (empty when no frame arrived in time)
        frame_captured_at: Capture time of the frame, if any
        source_timestamp: Timestamp carried by the detection payload, if any

    Example:
        >>> packet = PublishPacket(
        ...     schema_version="1.0",
        ...     timestamp=Timestamp.now(),
        ...     detections=[seq_det],
        ...     frame=jpeg_bytes,
        ... )
        >>> json_data = packet.to_dict()
    """
    schema_version: str
    timestamp: Timestamp
    detections: List[SequencedDetection] = field(default_factory=list)
    frame: bytes = b""
    frame_captured_at: Optional[float] = None
    source_timestamp: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict (frame as base64)."""
        return {
            'schema_version': self.schema_version,
            'timestamp': self.timestamp.to_dict(),
            'source_timestamp': self.source_timestamp,
            'detections': [det.to_dict() for det in self.detections],
            'frame': base64.b64encode(self.frame).decode('ascii'),
            'frame_captured_at': self.frame_captured_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PublishPacket':
        """Deserialize from dict.

        Raises:
            ValueError: If required fields missing or invalid
        """
        try:
            return cls(
                schema_version=str(data['schema_version']),
                timestamp=Timestamp(value=data['timestamp']),
                detections=[
                    SequencedDetection.from_dict(det)
                    for det in data.get('detections', [])
                ],
                frame=base64.b64decode(data.get('frame') or b"", validate=True),
                frame_captured_at=data.get('frame_captured_at'),
                source_timestamp=data.get('source_timestamp'),
            )
        except KeyError as e:
            raise ValueError(f"Missing required PublishPacket field: {e}")
        except (TypeError, ValueError, binascii.Error) as e:
            raise ValueError(f"Invalid PublishPacket data: {e}")

    @property
    def detection_count(self) -> int:
        """Number of detections in this packet."""
        return len(self.detections)

    @property
    def has_frame(self) -> bool:
        return len(self.frame) > 0

    def get_sequence_numbers(self) -> List[int]:
        """Sequence numbers in packet order."""
        return [det.sequence_number for det in self.detections]

    def get_detections_by_class(self, class_name: str) -> List[SequencedDetection]:
        """Filter detections by class name."""
        return [
            det for det in self.detections
            if det.detection.display_name == class_name
        ]
