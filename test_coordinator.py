"""
InferenceCoordinator tests
==========================

Supervisors, publisher and telemetry are replaced by in-memory fakes; the
publisher thread and telemetry worker are real.

Usage:
    pytest test_coordinator.py
"""

import queue
import threading
import time

import pytest

from lookout_mqtt.schemas import DetectedObject, DetectionEvent, FrameBuffer, HealthCode
from lookout_processor.coordinator import (
    ALL_DETECTIONS_COUNTER,
    CLASS_DETECTIONS_COUNTER,
    INFERENCE_CLASSES_EVENT,
    VIDEO_ERROR_EVENT,
    VIDEO_STARTED_EVENT,
    InferenceCoordinator,
)
from lookout_streams.detection_parser import PAYLOAD_COLUMN
from lookout_streams.frame_parser import EOI, SOI


class FakeSupervisor:
    def __init__(self, start_result=True):
        self.start_result = start_result
        self.urls = []
        self.on_data = None
        self.on_crash = None
        self.running = False
        self.stops = 0
        self.health = HealthCode.GOOD
        self.restart_count = 0
        self.restart_pending = False

    def start(self, url, on_data, on_crash=None):
        self.urls.append(url)
        self.on_data = on_data
        self.on_crash = on_crash
        self.running = self.start_result
        return self.start_result

    def stop(self):
        self.stops += 1
        self.running = False

    @property
    def is_running(self):
        return self.running

    def get_health(self):
        return self.health


class FakePublisher:
    def __init__(self):
        self.packets = queue.Queue()

    def publish_packet(self, packet):
        self.packets.put(packet)
        return True

    def next_packet(self, timeout=5.0):
        return self.packets.get(timeout=timeout)


class FakeTelemetry:
    def __init__(self, fail=False):
        self.fail = fail
        self.counters = []
        self.events = []
        self.lock = threading.Lock()

    def send_telemetry(self, counters):
        if self.fail:
            raise RuntimeError("telemetry link down")
        with self.lock:
            self.counters.append(counters)
        return True

    def send_event(self, name, value):
        if self.fail:
            raise RuntimeError("telemetry link down")
        with self.lock:
            self.events.append((name, value))
        return True

    def events_named(self, name):
        return [value for event, value in self.events if event == name]


def detection(confidence, name, obj_id=None):
    return DetectedObject(id=obj_id, display_name=name, confidence=confidence)


def event(*objects):
    return DetectionEvent(objects=list(objects))


def jpeg(seed: int) -> bytes:
    return SOI + bytes((j + seed) % 250 for j in range(700)) + EOI


def dump_buffer(payload: str) -> bytes:
    raw = payload.encode()
    lines = []
    for offset in range(0, len(raw), 16):
        row = raw[offset:offset + 16]
        prefix = f"{offset:08x} (0x{offset:012x}): " + " ".join(f"{b:02x}" for b in row)
        lines.append(prefix.ljust(PAYLOAD_COLUMN) + row.decode())
    return ("\n".join(lines) + "\n").encode()


@pytest.fixture
def parts():
    return {
        "detection": FakeSupervisor(),
        "video": FakeSupervisor(),
        "publisher": FakePublisher(),
        "telemetry": FakeTelemetry(),
    }


@pytest.fixture
def make_coordinator(parts):
    created = []

    def make(**kwargs):
        coordinator = InferenceCoordinator(
            detection_supervisor=parts["detection"],
            video_supervisor=parts["video"],
            publisher=parts["publisher"],
            telemetry=parts["telemetry"],
            **kwargs
        )
        created.append(coordinator)
        return coordinator

    yield make

    for coordinator in created:
        coordinator.close()


def test_filtering_keeps_only_qualifying_detections(make_coordinator, parts):
    coordinator = make_coordinator()
    coordinator.start("rtsp://cam/data", "rtsp://cam/video")

    batch = coordinator.handle_detection_event(event(
        detection(50, "person"),
        detection(71, "Negative"),
        detection(90, "car"),
    ))
    coordinator.handle_frame(FrameBuffer(data=jpeg(1), captured_at=123.0))

    packet = parts["publisher"].next_packet()
    assert batch is not None
    assert [(d.detection.display_name, d.detection.confidence) for d in packet.detections] == [("car", 90.0)]
    assert packet.frame == jpeg(1)
    assert packet.frame_captured_at == 123.0


def test_no_survivors_publishes_nothing(make_coordinator, parts):
    coordinator = make_coordinator()
    coordinator.start("rtsp://cam/data", "")

    batch = coordinator.handle_detection_event(event(
        detection(69, "person"),
        detection(99, "Negative"),
    ))
    coordinator.close()

    assert batch is None
    assert parts["publisher"].packets.empty()
    assert parts["telemetry"].counters == []
    assert coordinator.next_sequence_number == 0


def test_threshold_is_inclusive(make_coordinator):
    coordinator = make_coordinator()
    coordinator.start("rtsp://cam/data", "")

    batch = coordinator.handle_detection_event(event(detection(70, "person")))

    assert batch is not None
    assert [d.sequence_number for d in batch.detections] == [0]


def test_missing_frame_publishes_empty_frame(make_coordinator, parts):
    coordinator = make_coordinator(correlation_timeout=0.2)
    coordinator.start("rtsp://cam/data", "rtsp://cam/video")

    started = time.monotonic()
    coordinator.handle_detection_event(event(detection(90, "person")))
    packet = parts["publisher"].next_packet()

    assert packet.frame == b""
    assert not packet.has_frame
    assert packet.frame_captured_at is None
    assert time.monotonic() - started < 3.0
    assert coordinator.packets_failed == 0


def test_frame_seen_before_batch_is_not_reused(make_coordinator, parts):
    coordinator = make_coordinator()
    coordinator.start("rtsp://cam/data", "rtsp://cam/video")

    coordinator.handle_frame(FrameBuffer(data=jpeg(1), captured_at=1.0))
    assert coordinator.last_frame is not None

    coordinator.handle_detection_event(event(detection(90, "person")))
    assert coordinator.last_frame is None

    coordinator.handle_frame(FrameBuffer(data=jpeg(2), captured_at=2.0))

    assert parts["publisher"].next_packet().frame == jpeg(2)


def test_one_frame_resolves_every_waiting_batch(make_coordinator, parts):
    coordinator = make_coordinator()
    coordinator.start("rtsp://cam/data", "rtsp://cam/video")

    coordinator.handle_detection_event(event(detection(90, "person")))
    coordinator.handle_detection_event(event(detection(80, "car")))
    coordinator.handle_frame(FrameBuffer(data=jpeg(3), captured_at=3.0))

    first = parts["publisher"].next_packet()
    second = parts["publisher"].next_packet()
    assert first.frame == second.frame == jpeg(3)
    assert first.get_sequence_numbers() == [0]
    assert second.get_sequence_numbers() == [1]


def test_sequence_numbers_increase_across_video_restart(make_coordinator, parts):
    coordinator = make_coordinator(correlation_timeout=0.05)
    coordinator.start("rtsp://cam/data", "rtsp://cam/video")
    video = parts["video"]

    coordinator.handle_detection_event(event(detection(90, "person"), detection(95, "car")))
    video.on_crash("exited with code 1")
    coordinator.handle_detection_event(event(detection(90, "person")))

    # A new session does not reset the counter either
    coordinator.start("rtsp://cam/data", "rtsp://cam/video")
    coordinator.handle_detection_event(event(detection(91, "dog")))

    sequence = []
    for _ in range(3):
        sequence.extend(parts["publisher"].next_packet().get_sequence_numbers())

    assert sequence == [0, 1, 2, 3]


def test_video_crash_replaces_frame_parser_and_reports_event(make_coordinator, parts):
    coordinator = make_coordinator()
    coordinator.start("rtsp://cam/data", "rtsp://cam/video")
    video = parts["video"]

    # Half a frame from the crashed generation
    video.on_data(jpeg(4)[:400])
    assert coordinator._frame_parser.in_progress
    parser_before = coordinator._frame_parser

    video.on_crash("exited with code 1")

    assert coordinator._frame_parser is not parser_before
    assert not coordinator._frame_parser.in_progress

    coordinator.close()
    assert parts["telemetry"].events_named(VIDEO_STARTED_EVENT) == ["1"]
    assert parts["telemetry"].events_named(VIDEO_ERROR_EVENT) == ["exited with code 1"]


def test_detection_crash_discards_partial_message(make_coordinator, parts):
    coordinator = make_coordinator(correlation_timeout=0.05)
    coordinator.start("rtsp://cam/data", "")
    data = parts["detection"]

    payload = '{ "timestamp": 1, "objects": [{"id": 1, "display_name": "person", "confidence": 90}]}'
    data.on_data(dump_buffer(payload)[:150])
    data.on_crash("exited with code 1")

    data.on_data(dump_buffer(payload) + dump_buffer("trailing buffer"))

    packet = parts["publisher"].next_packet()
    assert [d.detection.display_name for d in packet.detections] == ["person"]
    assert coordinator.events_received == 1


def test_streams_feed_end_to_end(make_coordinator, parts):
    coordinator = make_coordinator()
    coordinator.start("rtsp://cam/data", "rtsp://cam/video")

    payload = (
        '{ "timestamp": 1571952645123, "objects": ['
        '{"id": 1, "display_name": "person", "confidence": 88}, '
        '{"id": 2, "display_name": "Negative", "confidence": 99}]}'
    )
    stream = dump_buffer(payload) + dump_buffer("next buffer")
    for i in range(0, len(stream), 37):
        parts["detection"].on_data(stream[i:i + 37])

    frame = jpeg(5)
    parts["video"].on_data(frame[:300])
    parts["video"].on_data(frame[300:])

    packet = parts["publisher"].next_packet()
    assert [(d.sequence_number, d.detection.id) for d in packet.detections] == [(0, 1)]
    assert packet.frame == frame
    assert packet.source_timestamp == 1571952645123


def test_batch_telemetry(make_coordinator, parts):
    coordinator = make_coordinator(detect_class="person", correlation_timeout=0.05)
    coordinator.start("rtsp://cam/data", "")

    coordinator.handle_detection_event(event(
        detection(90, "person"),
        detection(80, "car"),
        detection(75, "person"),
        detection(10, "person"),
    ))
    parts["publisher"].next_packet()
    coordinator.close()

    assert parts["telemetry"].counters == [
        {ALL_DETECTIONS_COUNTER: 3, CLASS_DETECTIONS_COUNTER: 2}
    ]
    assert parts["telemetry"].events_named(INFERENCE_CLASSES_EVENT) == ["person,car,person"]


def test_telemetry_failure_does_not_block_publishing(make_coordinator, parts):
    parts["telemetry"].fail = True
    coordinator = make_coordinator(correlation_timeout=0.05)
    coordinator.start("rtsp://cam/data", "")

    coordinator.handle_detection_event(event(detection(90, "person")))

    packet = parts["publisher"].next_packet()
    assert packet.get_sequence_numbers() == [0]


def test_start_result_follows_detection_stream_only(make_coordinator, parts):
    parts["video"].start_result = False
    coordinator = make_coordinator()
    assert coordinator.start("rtsp://cam/data", "rtsp://cam/video") is True

    parts["detection"].start_result = False
    assert coordinator.start("rtsp://cam/data", "rtsp://cam/video") is False


def test_start_without_video_url_skips_video(make_coordinator, parts):
    coordinator = make_coordinator()
    coordinator.start("rtsp://cam/data", "")

    assert parts["detection"].urls == ["rtsp://cam/data"]
    assert parts["video"].urls == []


def test_local_capture_device_starts_without_video_url(make_coordinator, parts):
    coordinator = make_coordinator(video_capture_source="/dev/video0")

    coordinator.start("rtsp://cam/data", "")
    coordinator.start("rtsp://cam/data", "rtsp://cam/video")

    assert parts["video"].urls == ["/dev/video0", "/dev/video0"]


def test_telemetry_sent_when_publish_queue_is_full(make_coordinator, parts):
    coordinator = make_coordinator(publish_queue_size=1)

    # No publisher thread yet, so nothing drains the queue
    assert coordinator.handle_detection_event(event(detection(90, "person"))) is not None
    assert coordinator.handle_detection_event(event(detection(80, "car"))) is None
    coordinator.close()

    assert coordinator.batches_dropped == 1
    assert parts["telemetry"].counters == [
        {ALL_DETECTIONS_COUNTER: 1, CLASS_DETECTIONS_COUNTER: 1},
        {ALL_DETECTIONS_COUNTER: 1, CLASS_DETECTIONS_COUNTER: 0},
    ]


def test_reader_of_previous_session_cannot_reach_new_parsers(make_coordinator, parts):
    coordinator = make_coordinator(correlation_timeout=0.05)
    coordinator.start("rtsp://cam/data", "rtsp://cam/video")
    stale_detection = parts["detection"].on_data
    stale_video = parts["video"].on_data

    coordinator.start("rtsp://cam/data", "rtsp://cam/video")

    payload = '{ "timestamp": 2, "objects": [{"id": 4, "display_name": "person", "confidence": 90}]}'
    stale_detection(dump_buffer(payload)[:150])
    stale_video(jpeg(6)[:400])

    assert coordinator._detection_parser.state.name == "SEEKING_HEADER"
    assert not coordinator._frame_parser.in_progress

    parts["detection"].on_data(dump_buffer(payload) + dump_buffer("trailing buffer"))

    packet = parts["publisher"].next_packet()
    assert [d.detection.id for d in packet.detections] == [4]
    assert coordinator.events_received == 1


def test_stop_is_idempotent_and_releases_waiters(make_coordinator, parts):
    coordinator = make_coordinator(correlation_timeout=30.0)
    coordinator.start("rtsp://cam/data", "rtsp://cam/video")
    coordinator.handle_detection_event(event(detection(90, "person")))

    started = time.monotonic()
    coordinator.stop()
    coordinator.stop()

    assert time.monotonic() - started < 5.0
    assert not coordinator.is_running
    assert coordinator._frame_waiters == []
    assert parts["detection"].stops >= 1
    assert not parts["video"].running


@pytest.mark.parametrize("value, expected", [
    (80, 80),
    ("85", 85),
    (0, 0),
    (100, 100),
])
def test_confidence_threshold_setting_accepted(make_coordinator, value, expected):
    coordinator = make_coordinator()

    result = coordinator.apply_setting("confidenceThreshold", value)

    assert result.ok
    assert coordinator.confidence_threshold == expected


@pytest.mark.parametrize("value", [101, -1, "abc", None, True, 70.5])
def test_confidence_threshold_setting_rejected(make_coordinator, value):
    coordinator = make_coordinator()

    result = coordinator.apply_setting("confidenceThreshold", value)

    assert result.status == "error"
    assert coordinator.confidence_threshold == 70


def test_detect_class_setting(make_coordinator):
    coordinator = make_coordinator()

    assert coordinator.apply_setting("detectClass", "car").ok
    assert coordinator.detect_class == "car"

    assert not coordinator.apply_setting("detectClass", "").ok
    assert not coordinator.apply_setting("detectClass", 5).ok
    assert coordinator.detect_class == "car"


def test_unknown_setting_returns_error_result(make_coordinator):
    coordinator = make_coordinator()

    result = coordinator.apply_setting("frameRate", 30)

    assert result.status == "error"
    assert result.name == "frameRate"


def test_new_threshold_applies_to_next_event(make_coordinator):
    coordinator = make_coordinator()
    coordinator.start("rtsp://cam/data", "")
    coordinator.apply_setting("confidenceThreshold", 95)

    assert coordinator.handle_detection_event(event(detection(90, "car"))) is None


def test_health_is_worst_of_both_streams(make_coordinator, parts):
    coordinator = make_coordinator()
    assert coordinator.get_health() == HealthCode.GOOD

    parts["video"].health = HealthCode.CRITICAL
    parts["detection"].health = HealthCode.WARNING

    assert coordinator.get_health() == HealthCode.CRITICAL
