"""
Structured Log Event Types
==========================

Bounded Context: Observability Event Taxonomy

This module defines typed event names for structured logging.

Event Naming Convention:
    <component>.<category>.<action>

    component: mqtt, inference, telemetry, stream, health, error
    category: connected, publish, crashed
    action: success, failed, restarted

Example Log Query (CloudWatch Insights):
    fields @timestamp, event, message, metadata.sequence_numbers
    | filter event = "inference.published"
    | stats count() by bin(5m)
"""

from enum import Enum


class LogEvent(str, Enum):
    """
    Typed log event names for structured logging.

    Categories:
    - mqtt.*: MQTT broker interactions
    - inference.*: Correlated inference packets
    - telemetry.*: Telemetry counters and events
    - stream.*: Subprocess stream lifecycle
    - health.*: Health escalation
    - error.*: Error conditions
    """

    # ========== MQTT Events ==========
    MQTT_CONNECTED = "mqtt.connected"
    """MQTT broker connection established."""

    MQTT_DISCONNECTED = "mqtt.disconnected"
    """MQTT broker connection lost."""

    MQTT_PUBLISH_SUCCESS = "mqtt.publish.success"
    """Message successfully published to broker."""

    MQTT_PUBLISH_FAILED = "mqtt.publish.failed"
    """Message publication failed."""

    # ========== Inference Events ==========
    INFERENCE_SERIALIZED = "inference.serialized"
    """Inference packet serialized to JSON."""

    INFERENCE_PUBLISHED = "inference.published"
    """Inference packet published to the inference topic."""

    INFERENCE_RECEIVED = "inference.received"
    """Inference packet received by subscriber."""

    # ========== Telemetry Events ==========
    TELEMETRY_SENT = "telemetry.sent"
    """Telemetry counters or event sent."""

    # ========== Stream Events ==========
    STREAM_STARTED = "stream.started"
    """Media subprocess spawned."""

    STREAM_STOPPED = "stream.stopped"
    """Media subprocess stopped by the caller."""

    STREAM_CRASHED = "stream.crashed"
    """Media subprocess failed to spawn or exited on its own."""

    STREAM_RESTART_SCHEDULED = "stream.restart.scheduled"
    """Restart of a crashed subprocess scheduled."""

    # ========== Health Events ==========
    HEALTH_DEGRADED = "health.degraded"
    """Health sample below Good."""

    HEALTH_RESTART_REQUESTED = "health.restart_requested"
    """Device restart requested after persistent degradation."""

    # ========== Error Events ==========
    SERIALIZATION_ERROR = "error.serialization"
    """Failed to serialize message to JSON."""

    DESERIALIZATION_ERROR = "error.deserialization"
    """Failed to deserialize message from JSON."""

    MQTT_CONNECTION_ERROR = "error.mqtt_connection"
    """Failed to connect to MQTT broker."""

    MQTT_PUBLISH_ERROR = "error.mqtt_publish"
    """Error during message publication."""

    TELEMETRY_ERROR = "error.telemetry"
    """Telemetry could not be sent."""


# Event categories for filtering
MQTT_EVENTS = {
    LogEvent.MQTT_CONNECTED,
    LogEvent.MQTT_DISCONNECTED,
    LogEvent.MQTT_PUBLISH_SUCCESS,
    LogEvent.MQTT_PUBLISH_FAILED,
}

INFERENCE_EVENTS = {
    LogEvent.INFERENCE_SERIALIZED,
    LogEvent.INFERENCE_PUBLISHED,
    LogEvent.INFERENCE_RECEIVED,
}

STREAM_EVENTS = {
    LogEvent.STREAM_STARTED,
    LogEvent.STREAM_STOPPED,
    LogEvent.STREAM_CRASHED,
    LogEvent.STREAM_RESTART_SCHEDULED,
}

ERROR_EVENTS = {
    LogEvent.SERIALIZATION_ERROR,
    LogEvent.DESERIALIZATION_ERROR,
    LogEvent.MQTT_CONNECTION_ERROR,
    LogEvent.MQTT_PUBLISH_ERROR,
    LogEvent.TELEMETRY_ERROR,
}
