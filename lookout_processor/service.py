"""
Inference Bridge Service - wires the coordinator to MQTT.

Connects the control plane and publishers, registers the control commands,
starts the optional health timer and owns the shutdown order.

Commands (Control Plane Thread):
    start       {"data_url": "...", "video_url": "..."}
    stop
    set_setting {"name": "confidenceThreshold", "value": 80}
    health      samples health (the external probe) and reports it
"""

import logging
import threading
from typing import Dict

from lookout_processor.config import ProcessorConfig
from lookout_processor.coordinator import InferenceCoordinator
from lookout_processor.health import HealthTracker, debug_timer_requested

logger = logging.getLogger(__name__)


class InferenceBridgeService:
    """
    Lifecycle owner of one inference bridge.

    Usage:
        service = InferenceBridgeService(
            config=config,
            control_plane=control_plane,
            coordinator=coordinator,
            inference_publisher=inference_publisher,
            telemetry_publisher=telemetry_publisher,
        )
        service.setup()
        service.start()
        service.wait()  # Blocks until stopped
    """

    def __init__(
        self,
        config: ProcessorConfig,
        control_plane,  # MQTTControlPlane
        coordinator: InferenceCoordinator,
        inference_publisher,  # InferencePublisher
        telemetry_publisher=None,  # TelemetryPublisher
        health_tracker: HealthTracker = None,
    ):
        self.config = config
        self.control_plane = control_plane
        self.coordinator = coordinator
        self.inference_publisher = inference_publisher
        self.telemetry_publisher = telemetry_publisher

        self.health_tracker = health_tracker or HealthTracker(
            sources={"streams": coordinator.get_health},
            on_restart_device=control_plane.request_device_restart,
            start_period=config.health.start_period,
            retries=config.health.retries,
        )

        self._running = False
        self._stopped_event = threading.Event()

        logger.info(
            f"InferenceBridgeService initialized for service_id={config.service_id}"
        )

    def setup(self):
        """Register command handlers. Must be called before start()."""
        registry = self.control_plane.command_registry

        registry.register("start", self._handle_start, "Start detection and video streams")
        registry.register("stop", self._handle_stop, "Stop both streams")
        registry.register("set_setting", self._handle_set_setting, "Change a runtime setting")
        registry.register("health", self._handle_health, "Sample and report health")

        logger.info("Control handlers registered")

    def start(self):
        """
        Connect MQTT clients and start streams configured in the YAML file.

        Raises:
            RuntimeError: If the control plane cannot connect
        """
        if self._running:
            logger.warning("Service already running")
            return

        logger.info("Starting inference bridge service")

        if not self.control_plane.connect(timeout=5.0):
            raise RuntimeError("Failed to connect to MQTT broker (control plane)")

        self.inference_publisher.connect()
        if self.telemetry_publisher is not None:
            self.telemetry_publisher.connect()

        if self.config.data_stream_url:
            self.coordinator.start(
                self.config.data_stream_url,
                self.config.video_stream_url,
            )

        if debug_timer_requested(self.config.health.debug_timer):
            self.health_tracker.start(self.config.health.check_interval)

        self._running = True
        self._stopped_event.clear()
        self.control_plane.publish_status("running", self.coordinator.get_settings())
        logger.info("✅ Inference bridge service started")

    def wait(self):
        """Block until stop() is called."""
        if not self._running:
            logger.warning("Service not running")
            return

        while not self._stopped_event.wait(timeout=0.5):
            pass

    def stop(self):
        """
        Stop streams, the health timer and the MQTT clients.

        Order: health timer, coordinator, publishers, control plane.
        """
        if not self._running:
            logger.warning("Service not running")
            return

        logger.info("Stopping inference bridge service")

        self.health_tracker.stop()
        self.coordinator.close()

        self.inference_publisher.disconnect()
        if self.telemetry_publisher is not None:
            self.telemetry_publisher.disconnect()

        self.control_plane.publish_status("stopped")
        self.control_plane.disconnect()

        self._running = False
        self._stopped_event.set()
        logger.info("✅ Inference bridge service stopped")

    # ─────────────────────────────────────────────────────────────────────
    # Command Handlers (called by Control Plane Thread)
    # ─────────────────────────────────────────────────────────────────────

    def _handle_start(self, command: Dict):
        """Handle start command (Control Plane Thread)."""
        data_url = command.get("data_url")
        if not data_url:
            self.control_plane.publish_status("error", {"command": "start", "error": "data_url is required"})
            return

        video_url = command.get("video_url") or ""
        started = self.coordinator.start(data_url, video_url)

        status = "streams_started" if started else "streams_start_failed"
        self.control_plane.publish_status(status, {"data_url": data_url, "video_url": video_url})
        logger.info(f"Streams start requested: {status}")

    def _handle_stop(self, command: Dict):
        """Handle stop command (Control Plane Thread)."""
        self.coordinator.stop()

        self.control_plane.publish_status("streams_stopped", self.coordinator.get_stats())
        logger.info("Streams stopped")

    def _handle_set_setting(self, command: Dict):
        """Handle set_setting command (Control Plane Thread)."""
        result = self.coordinator.apply_setting(command.get("name"), command.get("value"))

        status = "setting_applied" if result.ok else "setting_rejected"
        self.control_plane.publish_status(status, result.to_dict())

    def _handle_health(self, command: Dict):
        """Handle health command (Control Plane Thread)."""
        health = self.health_tracker.check_health_state()

        self.control_plane.publish_status("health", {
            "health": health.name,
            "health_code": int(health),
            "streak": self.health_tracker.streak,
            "stats": self.coordinator.get_stats(),
        })
