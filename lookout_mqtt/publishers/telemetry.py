"""
Telemetry Publisher
===================

Bounded Context: Telemetry Production

Publishes per-batch telemetry counters and events for the device dashboard.

Message format:
    {
        "kind": "telemetry" | "event",
        "timestamp": "2025-10-24T15:30:45.123456+00:00",
        "source": "cam_01",
        "values": {"allDetections": 3, "detections-of-class": 2}
    }
"""

from typing import Any, Dict, Optional

from .base import BasePublisher
from ..schemas import Timestamp
from ..logging import StructuredLogger, LogEvent

TELEMETRY_KIND = "telemetry"
EVENT_KIND = "event"


class TelemetryPublisher(BasePublisher):
    """
    Publisher for telemetry counters and events.

    Example:
        >>> telemetry = TelemetryPublisher(
        ...     broker_host="localhost",
        ...     topic="lookout/cam_01/telemetry",
        ...     source="cam_01",
        ...     logger=logger
        ... )
        >>> telemetry.send_telemetry({'allDetections': 2})
        >>> telemetry.send_event('inferenceClasses', 'person,car')
    """

    def __init__(
        self,
        broker_host: str,
        topic: str,
        logger: StructuredLogger,
        source: str = "",
        broker_port: int = 1883,
        client_id: str = "lookout_telemetry_publisher",
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
        self.source = source

    def format_message(self, kind: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Wrap values in the telemetry envelope."""
        return {
            'kind': kind,
            'timestamp': Timestamp.now().to_dict(),
            'source': self.source,
            'values': dict(values),
        }

    def send_telemetry(self, counters: Dict[str, Any]) -> bool:
        """Publish telemetry counters. Returns False on failure."""
        return self._send(TELEMETRY_KIND, counters)

    def send_event(self, name: str, value: Any) -> bool:
        """Publish a single named event. Returns False on failure."""
        return self._send(EVENT_KIND, {name: value})

    def _send(self, kind: str, values: Dict[str, Any]) -> bool:
        success = self.publish(self.format_message(kind, values))
        if success:
            self.logger.debug(
                event=LogEvent.TELEMETRY_SENT,
                message=f"Sent {kind}",
                metadata={'values': values}
            )
        return success
