"""
Test MQTT Pub/Sub (Without Real Broker)
========================================

Tests the publish/subscribe flow without requiring a real MQTT broker, by
calling the formatting and handler methods directly.

Usage:
    pytest test_mqtt_pubsub.py
"""

import base64
import json

import pytest

from lookout_mqtt import (
    InferencePublisher,
    InferenceSubscriber,
    LogEvent,
    TelemetryPublisher,
    create_logger,
)
from lookout_mqtt.publishers.telemetry import EVENT_KIND, TELEMETRY_KIND
from lookout_mqtt.schemas import (
    DetectedObject,
    DetectionEvent,
    PublishPacket,
    SequencedDetection,
    Timestamp,
)

JPEG = b"\xff\xd8" + bytes(range(200)) + b"\xff\xd9"


def make_packet(frame: bytes = JPEG) -> PublishPacket:
    return PublishPacket(
        schema_version="1.0",
        timestamp=Timestamp.now(),
        detections=[
            SequencedDetection(7, DetectedObject(id=1, display_name="person", confidence=91.5)),
            SequencedDetection(8, DetectedObject(id=2, display_name="car", confidence=75)),
        ],
        frame=frame,
        frame_captured_at=1700000000.5,
        source_timestamp=1571952645123,
    )


def test_inference_packet_wire_format():
    publisher = InferencePublisher(
        broker_host="localhost",
        topic="inference",
        logger=create_logger("test"),
    )

    message = json.loads(json.dumps(publisher.format_message(make_packet())))

    assert message["schema_version"] == "1.0"
    assert message["detections"][0] == {
        "sequence_number": 7,
        "id": 1,
        "display_name": "person",
        "confidence": 91.5,
    }
    assert base64.b64decode(message["frame"]) == JPEG
    assert message["frame_captured_at"] == 1700000000.5
    assert message["source_timestamp"] == 1571952645123


def test_packet_without_frame_serializes_empty_string():
    packet = make_packet(frame=b"")

    assert packet.to_dict()["frame"] == ""
    assert not PublishPacket.from_dict(packet.to_dict()).has_frame


def test_packet_helpers():
    packet = make_packet()

    assert packet.detection_count == 2
    assert packet.get_sequence_numbers() == [7, 8]
    assert [d.detection.id for d in packet.get_detections_by_class("car")] == [2]


def test_subscriber_callbacks():
    received = []

    subscriber = InferenceSubscriber(
        broker_host="localhost",
        inference_topic="inference",
        on_packet=received.append,
        logger=create_logger("test"),
    )

    packet = make_packet()
    subscriber._handle_packet_message(json.loads(json.dumps(packet.to_dict())))
    subscriber._handle_packet_message(make_packet(frame=b"").to_dict())

    assert len(received) == 2
    assert received[0].frame == JPEG
    assert received[0].get_sequence_numbers() == [7, 8]
    assert received[0].timestamp == packet.timestamp

    stats = subscriber.get_stats()
    assert stats["packets_received"] == 2
    assert stats["frames_received"] == 1


def test_subscriber_drops_invalid_packet():
    received = []
    subscriber = InferenceSubscriber(
        broker_host="localhost",
        inference_topic="inference",
        on_packet=received.append,
        logger=create_logger("test"),
    )

    subscriber._handle_packet_message({"timestamp": "2025-01-01T00:00:00+00:00"})
    subscriber._handle_packet_message({
        "schema_version": "1.0",
        "timestamp": "2025-01-01T00:00:00+00:00",
        "frame": "not base64!",
    })

    assert received == []
    assert subscriber.get_stats()["packets_received"] == 0


def test_telemetry_envelopes():
    telemetry = TelemetryPublisher(
        broker_host="localhost",
        topic="lookout/cam_01/telemetry",
        logger=create_logger("test"),
        source="cam_01",
    )

    counters = telemetry.format_message(TELEMETRY_KIND, {"allDetections": 3, "detections-of-class": 2})
    event = telemetry.format_message(EVENT_KIND, {"inferenceClasses": "person,car,person"})

    assert counters["kind"] == "telemetry"
    assert counters["source"] == "cam_01"
    assert counters["values"] == {"allDetections": 3, "detections-of-class": 2}
    assert event["values"] == {"inferenceClasses": "person,car,person"}
    Timestamp(value=event["timestamp"]).to_datetime()


def test_publish_without_connection_reports_failure():
    publisher = InferencePublisher(
        broker_host="localhost",
        topic="inference",
        logger=create_logger("test"),
    )

    assert publisher.publish_packet(make_packet()) is False
    assert not publisher.is_connected()


def test_detection_event_from_payload():
    event = DetectionEvent.from_dict(
        {"timestamp": 12, "objects": [{"id": "a", "display_name": "dog", "confidence": "88"}]},
        received_at=5.0,
    )

    assert event.received_at == 5.0
    assert event.source_timestamp == 12
    assert event.class_names() == ["dog"]
    assert event.objects[0].confidence == 88.0


@pytest.mark.parametrize("payload", [
    [],
    {"objects": "person"},
    {"objects": [{"id": 1, "confidence": 50}]},
    {"objects": [{"id": 1, "display_name": "dog", "confidence": 150}]},
])
def test_detection_event_rejects_bad_payloads(payload):
    with pytest.raises(ValueError):
        DetectionEvent.from_dict(payload)


def test_oversize_packet_is_refused_before_the_client():
    publisher = InferencePublisher(
        broker_host="localhost",
        topic="inference",
        logger=create_logger("test"),
    )
    publisher.max_payload_size = 1024
    publisher._connected.set()
    sent = []
    publisher.client.publish = lambda *args, **kwargs: sent.append(args)

    assert publisher.publish_packet(make_packet(frame=JPEG * 50)) is False
    assert sent == []
    assert publisher.get_stats()["failed"] == 1


def test_structured_logger_context_and_level(capsys):
    logger = create_logger("bind_test", stream="video_stream").bind(generation=2)

    logger.debug(LogEvent.STREAM_STARTED, "dropped below INFO")
    logger.warning(LogEvent.STREAM_CRASHED, "exited on its own", {"returncode": 1})

    lines = [line for line in capsys.readouterr().err.splitlines() if line]
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["event"] == "stream.crashed"
    assert record["context"] == {"stream": "video_stream", "generation": 2}
    assert record["metadata"] == {"returncode": 1}


def packet_with_sequences(*numbers):
    return PublishPacket(
        schema_version="1.0",
        timestamp=Timestamp.now(),
        detections=[
            SequencedDetection(n, DetectedObject(id=n, display_name="person", confidence=90))
            for n in numbers
        ],
    )


def test_subscriber_counts_sequence_gaps():
    subscriber = InferenceSubscriber(
        broker_host="localhost",
        inference_topic="lookout/+/inference",
        on_packet=lambda packet: None,
        logger=create_logger("test"),
    )

    for numbers in [(0, 1), (2,), (6, 7), (8,), (0,)]:
        payload = json.dumps(packet_with_sequences(*numbers).to_dict()).encode()
        assert subscriber.handle_payload(payload) is not None

    stats = subscriber.get_stats()
    assert stats["packets_received"] == 5
    assert stats["sequence_gaps"] == 1
    assert stats["missing_detections"] == 3
    assert stats["last_sequence_number"] == 0


@pytest.mark.parametrize("payload", [b"\xff", b"not json", b"[1]"])
def test_subscriber_rejects_undecodable_payloads(payload):
    subscriber = InferenceSubscriber(
        broker_host="localhost",
        inference_topic="inference",
        on_packet=lambda packet: None,
        logger=create_logger("test"),
    )

    assert subscriber.handle_payload(payload) is None
    assert subscriber.get_stats()["invalid_packets"] == 1


def test_subscriber_survives_failing_callback():
    def broken(packet):
        raise RuntimeError("consumer bug")

    subscriber = InferenceSubscriber(
        broker_host="localhost",
        inference_topic="inference",
        on_packet=broken,
        logger=create_logger("test"),
    )

    assert subscriber.handle_payload(json.dumps(make_packet().to_dict()).encode()) is not None
    assert subscriber.get_stats()["packets_received"] == 1
