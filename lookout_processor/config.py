"""
Configuration schema for the inference bridge.

Defines the subprocess commands, inference filtering, frame parsing, health
escalation and MQTT settings. Loaded from YAML and validated at startup.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import yaml

from lookout_streams.commands import (
    DETECTION_ARGS_TEMPLATE,
    DETECTION_RESTART_DELAY,
    FFMPEG_COMMAND,
    GST_COMMAND,
    RTSP_CAPTURE_SOURCE,
    VIDEO_RESTART_DELAY,
    video_args_template,
)
from lookout_streams.detection_parser import PAYLOAD_COLUMN
from lookout_streams.frame_parser import DEFAULT_HEADER_OFFSET, DEFAULT_MAX_FRAME_SIZE
from lookout_streams.supervisor import STREAM_URL_PLACEHOLDER


@dataclass(frozen=True)
class StreamConfig:
    """One supervised subprocess."""

    command: str
    args_template: str
    restart_delay: float
    critical_restart_count: int = 5
    max_restarts: Optional[int] = None  # None = restart forever
    restart_window: float = 300.0

    def __post_init__(self):
        """Validate stream configuration."""
        if not self.command:
            raise ValueError("command cannot be empty")

        if STREAM_URL_PLACEHOLDER not in self.args_template:
            raise ValueError(
                f"args_template must contain {STREAM_URL_PLACEHOLDER}, "
                f"got {self.args_template!r}"
            )

        if self.restart_delay < 0:
            raise ValueError(
                f"restart_delay must be >= 0, got {self.restart_delay}"
            )

        if self.max_restarts is not None and self.max_restarts < 1:
            raise ValueError(
                f"max_restarts must be >= 1 or null, got {self.max_restarts}"
            )


def _default_detection_stream() -> StreamConfig:
    return StreamConfig(
        command=GST_COMMAND,
        args_template=DETECTION_ARGS_TEMPLATE,
        restart_delay=DETECTION_RESTART_DELAY,
    )


def _default_video_stream() -> StreamConfig:
    return StreamConfig(
        command=FFMPEG_COMMAND,
        args_template=video_args_template(RTSP_CAPTURE_SOURCE),
        restart_delay=VIDEO_RESTART_DELAY,
    )


@dataclass(frozen=True)
class InferenceConfig:
    """Filtering and correlation of detection batches."""

    confidence_threshold: int = 70
    detect_class: str = "person"
    correlation_timeout: float = 5.0
    payload_column: int = PAYLOAD_COLUMN

    def __post_init__(self):
        """Validate inference configuration."""
        if not 0 <= self.confidence_threshold <= 100:
            raise ValueError(
                f"confidence_threshold must be in [0, 100], got {self.confidence_threshold}"
            )

        if not self.detect_class:
            raise ValueError("detect_class cannot be empty")

        if self.correlation_timeout <= 0:
            raise ValueError(
                f"correlation_timeout must be > 0, got {self.correlation_timeout}"
            )


@dataclass(frozen=True)
class FrameParserConfig:
    """MJPEG frame extraction."""

    header_offset: int = DEFAULT_HEADER_OFFSET
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE
    retain_marker_lookback: bool = False

    def __post_init__(self):
        """Validate frame parser configuration."""
        if self.header_offset < 0:
            raise ValueError(
                f"header_offset must be >= 0, got {self.header_offset}"
            )

        if self.max_frame_size <= self.header_offset:
            raise ValueError(
                f"max_frame_size must exceed header_offset, got {self.max_frame_size}"
            )


@dataclass(frozen=True)
class HealthConfig:
    """Health escalation policy."""

    start_period: float = 60.0
    retries: int = 3
    check_interval: float = 15.0
    debug_timer: bool = False

    def __post_init__(self):
        """Validate health configuration."""
        if self.start_period < 0:
            raise ValueError(
                f"start_period must be >= 0, got {self.start_period}"
            )

        if self.retries < 1:
            raise ValueError(f"retries must be >= 1, got {self.retries}")

        if self.check_interval <= 0:
            raise ValueError(
                f"check_interval must be > 0, got {self.check_interval}"
            )


@dataclass(frozen=True)
class MQTTConfig:
    """MQTT broker configuration."""

    broker: str = "localhost"
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    qos: int = 0  # Data plane QoS (fire-and-forget)

    inference_topic: str = "inference"
    telemetry_topic: str = "lookout/{service_id}/telemetry"
    command_topic: str = "lookout/control/{service_id}/commands"
    status_topic: str = "lookout/control/{service_id}/status"

    def __post_init__(self):
        """Validate MQTT configuration."""
        if not 1 <= self.port <= 65535:
            raise ValueError(
                f"MQTT port must be in [1, 65535], got {self.port}"
            )

        if self.qos not in {0, 1, 2}:
            raise ValueError(
                f"MQTT QoS must be 0, 1, or 2, got {self.qos}"
            )


@dataclass(frozen=True)
class ProcessorConfig:
    """
    Main configuration for the inference bridge.

    Immutable after construction (frozen dataclass). Runtime settings
    (confidence threshold, detect class) are changed on the coordinator,
    not here.
    """

    service_id: str

    # Optional URLs to start with; the control plane can start later
    data_stream_url: str = ""
    video_stream_url: str = ""
    video_capture_source: str = RTSP_CAPTURE_SOURCE

    detection_stream: StreamConfig = field(default_factory=_default_detection_stream)
    video_stream: StreamConfig = field(default_factory=_default_video_stream)
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    frame_parser: FrameParserConfig = field(default_factory=FrameParserConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    mqtt_config: MQTTConfig = field(default_factory=MQTTConfig)

    def __post_init__(self):
        """Validate processor configuration."""
        if not self.service_id:
            raise ValueError("service_id cannot be empty")

        if not self.video_capture_source:
            raise ValueError("video_capture_source cannot be empty")

    def topic(self, template: str) -> str:
        """Expand {service_id} in a topic template."""
        return template.format(service_id=self.service_id)

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "ProcessorConfig":
        """
        Load configuration from YAML file.

        Example YAML:
            service_id: "cam_01"
            data_stream_url: "rtsp://192.168.1.20:8900/live"
            video_stream_url: "rtsp://192.168.1.20:8900/live"

            detection_stream:
              restart_delay: 5

            video_stream:
              restart_delay: 10
              critical_restart_count: 5

            inference:
              confidence_threshold: 70
              detect_class: "person"

            health:
              start_period: 60
              retries: 3

            mqtt_config:
              broker: "localhost"
              port: 1883
        """
        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "ProcessorConfig":
        """Build configuration from already-parsed YAML data."""
        capture_source = data.get("video_capture_source", RTSP_CAPTURE_SOURCE)

        detection_data = {
            "command": GST_COMMAND,
            "args_template": DETECTION_ARGS_TEMPLATE,
            "restart_delay": DETECTION_RESTART_DELAY,
            **(data.get("detection_stream") or {}),
        }
        video_data = {
            "command": FFMPEG_COMMAND,
            "args_template": video_args_template(capture_source),
            "restart_delay": VIDEO_RESTART_DELAY,
            **(data.get("video_stream") or {}),
        }

        return cls(
            service_id=data["service_id"],
            data_stream_url=data.get("data_stream_url", ""),
            video_stream_url=data.get("video_stream_url", ""),
            video_capture_source=capture_source,
            detection_stream=StreamConfig(**detection_data),
            video_stream=StreamConfig(**video_data),
            inference=InferenceConfig(**(data.get("inference") or {})),
            frame_parser=FrameParserConfig(**(data.get("frame_parser") or {})),
            health=HealthConfig(**(data.get("health") or {})),
            mqtt_config=MQTTConfig(**(data.get("mqtt_config") or {})),
        )
