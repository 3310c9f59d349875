"""
Control plane and service command tests (no broker)
===================================================

Usage:
    pytest test_control_plane.py
"""

import json

import pytest

from lookout_control import CommandNotAvailableError, CommandRegistry, MQTTControlPlane
from lookout_mqtt.schemas import HealthCode
from lookout_processor import InferenceCoordinator, ProcessorConfig
from lookout_processor.health import HealthTracker
from lookout_processor.service import InferenceBridgeService

from test_coordinator import FakePublisher, FakeSupervisor, FakeTelemetry


class RecordingControlPlane(MQTTControlPlane):
    """Control plane whose status messages are recorded instead of sent."""

    def __init__(self):
        super().__init__(
            broker_host="localhost",
            broker_port=1883,
            command_topic="lookout/control/cam_01/commands",
            status_topic="lookout/control/cam_01/status",
            client_id="test_bridge",
        )
        self.statuses = []

    def publish_status(self, status, details=None):
        self.statuses.append(self.build_status(status, details))
        return True

    def last_status(self):
        return self.statuses[-1]


# ─────────────────────────────────────────────────────────────────────────────
# CommandRegistry
# ─────────────────────────────────────────────────────────────────────────────

def test_registry_dispatches_payload():
    registry = CommandRegistry()
    calls = []
    registry.register("start", calls.append, "Start streams")

    registry.execute("start", {"command": "start", "data_url": "rtsp://x"})

    assert calls == [{"command": "start", "data_url": "rtsp://x"}]
    assert registry.is_available("start")
    assert registry.get_help() == {"start": "Start streams"}
    assert len(registry) == 1


def test_registry_rejects_unknown_and_duplicate_commands():
    registry = CommandRegistry()
    registry.register("stop", lambda data: None, "Stop")

    with pytest.raises(CommandNotAvailableError, match="Available commands: stop"):
        registry.execute("pause")
    with pytest.raises(ValueError):
        registry.register("stop", lambda data: None, "Stop again")


# ─────────────────────────────────────────────────────────────────────────────
# MQTTControlPlane message handling
# ─────────────────────────────────────────────────────────────────────────────

def test_handle_payload_routes_command():
    plane = RecordingControlPlane()
    calls = []
    plane.command_registry.register("health", calls.append, "Health")

    plane.handle_payload(json.dumps({"command": "HEALTH"}).encode())

    assert calls == [{"command": "HEALTH"}]


def test_handle_payload_reports_unknown_command():
    plane = RecordingControlPlane()

    plane.handle_payload(b'{"command": "reboot"}')

    assert plane.last_status()["status"] == "error"
    assert plane.last_status()["details"]["command"] == "reboot"


def test_handle_payload_contains_handler_errors():
    plane = RecordingControlPlane()

    def broken(data):
        raise KeyError("data_url")

    plane.command_registry.register("start", broken, "Start")
    plane.handle_payload(b'{"command": "start"}')

    assert plane.last_status()["status"] == "error"


@pytest.mark.parametrize("payload", [b"not json", b"[1, 2]", b'{"command": ""}', b"\xff\xfe"])
def test_handle_payload_ignores_garbage(payload):
    plane = RecordingControlPlane()
    plane.handle_payload(payload)
    assert plane.statuses == []


def test_device_restart_request_is_status_message():
    plane = RecordingControlPlane()

    plane.request_device_restart(HealthCode.CRITICAL)

    assert plane.last_status()["status"] == "device_restart_requested"
    assert plane.last_status()["details"] == {"health": "CRITICAL", "health_code": 0}


# ─────────────────────────────────────────────────────────────────────────────
# InferenceBridgeService command handlers
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def bridge():
    config = ProcessorConfig(service_id="cam_01")
    plane = RecordingControlPlane()
    detection, video = FakeSupervisor(), FakeSupervisor()
    coordinator = InferenceCoordinator(
        detection_supervisor=detection,
        video_supervisor=video,
        publisher=FakePublisher(),
        telemetry=FakeTelemetry(),
    )
    service = InferenceBridgeService(
        config=config,
        control_plane=plane,
        coordinator=coordinator,
        inference_publisher=FakePublisher(),
    )
    service.setup()

    yield service, plane, detection, video

    coordinator.close()


def send(plane, **command):
    plane.handle_payload(json.dumps(command).encode())


def test_service_registers_commands(bridge):
    service, plane, _, _ = bridge

    assert plane.command_registry.available_commands == {"start", "stop", "set_setting", "health"}


def test_start_and_stop_commands(bridge):
    service, plane, detection, video = bridge

    send(plane, command="start", data_url="rtsp://cam/data", video_url="rtsp://cam/video")

    assert detection.urls == ["rtsp://cam/data"]
    assert video.urls == ["rtsp://cam/video"]
    assert plane.last_status()["status"] == "streams_started"

    send(plane, command="stop")

    assert not detection.running
    assert plane.last_status()["status"] == "streams_stopped"


def test_start_without_data_url_is_rejected(bridge):
    service, plane, detection, _ = bridge

    send(plane, command="start")

    assert detection.urls == []
    assert plane.last_status()["status"] == "error"


def test_set_setting_command(bridge):
    service, plane, _, _ = bridge

    send(plane, command="set_setting", name="confidenceThreshold", value=85)
    assert plane.last_status()["status"] == "setting_applied"
    assert service.coordinator.confidence_threshold == 85

    send(plane, command="set_setting", name="zoom", value=2)
    assert plane.last_status()["status"] == "setting_rejected"
    assert plane.last_status()["details"]["name"] == "zoom"


def test_health_command_samples_tracker(bridge):
    service, plane, _, video = bridge
    video.health = HealthCode.WARNING

    send(plane, command="health")

    details = plane.last_status()["details"]
    assert details["health"] == "WARNING"
    assert details["health_code"] == 1
    assert details["streak"] == 1


def test_health_escalation_reaches_control_plane():
    now = [0.0]
    plane = RecordingControlPlane()
    tracker = HealthTracker(
        sources={"video": lambda: HealthCode.CRITICAL},
        on_restart_device=plane.request_device_restart,
        clock=lambda: now[0],
    )

    for moment in (0.0, 30.0, 61.0):
        now[0] = moment
        tracker.check_health_state()

    assert [s["status"] for s in plane.statuses] == ["device_restart_requested"]
