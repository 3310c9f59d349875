"""
lookout_processor - Inference bridge service

Correlates the detection stream with the video stream and publishes
inference packets via MQTT; escalates sustained failure to a device restart.

Architecture:
- InferenceCoordinator: supervisors + parsers, filtering, frame correlation
- HealthTracker: health sampling and restart escalation
- ProcessorConfig: Configuration management

Threading Model:
- Detection Reader Thread (supervisor, feeds DetectionStreamParser)
- Video Reader Thread (supervisor, feeds FrameStreamParser)
- Publisher Thread (frame correlation + MQTT publish)
- Telemetry Worker (counters and events)
- Control Plane Thread (paho-mqtt internal for commands)
"""

from lookout_processor.config import (
    ProcessorConfig,
    StreamConfig,
    InferenceConfig,
    FrameParserConfig,
    HealthConfig,
    MQTTConfig,
)
from lookout_processor.coordinator import (
    InferenceCoordinator,
    PendingBatch,
    SettingResult,
)
from lookout_processor.health import HealthTracker, debug_timer_requested

__all__ = [
    "ProcessorConfig",
    "StreamConfig",
    "InferenceConfig",
    "FrameParserConfig",
    "HealthConfig",
    "MQTTConfig",
    "InferenceCoordinator",
    "PendingBatch",
    "SettingResult",
    "HealthTracker",
    "debug_timer_requested",
]
