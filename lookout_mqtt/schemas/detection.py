"""
Detection Schema
================

Bounded Context: Detection Data Structures

Schema of the detection payloads decoded from the detection subprocess
(gst-launch hex dump). One DetectionEvent per complete decoded message.

Payload (as emitted by the camera's analytics stream):
    {
        "timestamp": 1571952645123,
        "objects": [
            {"id": "7", "display_name": "person", "confidence": 87}
        ]
    }

Message Flow:
    gst-launch stdout → DetectionStreamParser → DetectionEvent → InferenceCoordinator
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class DetectedObject:
    """
    Single object reported by the on-camera detector.

    Attributes:
        id: Detector-assigned object identifier (string or int, passed through)
        display_name: Class label (e.g., "person", "Negative")
        confidence: Confidence score in percent [0, 100]

    Invariants:
        - confidence in [0, 100]
    """
    id: Any
    display_name: str
    confidence: float

    def __post_init__(self):
        """Validate invariants."""
        if not (0.0 <= self.confidence <= 100.0):
            raise ValueError(
                f"Confidence must be in [0, 100], got {self.confidence}"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            'id': self.id,
            'display_name': self.display_name,
            'confidence': self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DetectedObject':
        """Deserialize from dict.

        Raises:
            ValueError: If required fields missing or invalid
        """
        try:
            return cls(
                id=data.get('id'),
                display_name=str(data['display_name']),
                confidence=float(data.get('confidence') or 0),
            )
        except KeyError as e:
            raise ValueError(f"Missing required DetectedObject field: {e}")
        except (TypeError, ValueError, AttributeError) as e:
            raise ValueError(f"Invalid DetectedObject data: {e}")


@dataclass(frozen=True)
class DetectionEvent:
    """
    One decoded detection message.

    Attributes:
        objects: Detected objects, in payload order
        received_at: time.time() when the message was decoded
        source_timestamp: Timestamp carried in the payload, if any
    """
    objects: List[DetectedObject] = field(default_factory=list)
    received_at: float = field(default_factory=time.time)
    source_timestamp: Optional[Any] = None

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        received_at: Optional[float] = None
    ) -> 'DetectionEvent':
        """Deserialize a decoded JSON payload.

        Raises:
            ValueError: If the payload is not an object with an "objects" list
        """
        if not isinstance(data, dict):
            raise ValueError(f"Detection payload must be an object, got {type(data).__name__}")

        objects = data.get('objects')
        if not isinstance(objects, list):
            raise ValueError("Detection payload has no 'objects' list")

        return cls(
            objects=[DetectedObject.from_dict(obj) for obj in objects],
            received_at=received_at if received_at is not None else time.time(),
            source_timestamp=data.get('timestamp'),
        )

    def class_names(self) -> List[str]:
        """Class labels in payload order."""
        return [obj.display_name for obj in self.objects]
