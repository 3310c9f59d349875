"""
Lookout CLI tests (command building only, no broker)
====================================================

Usage:
    pytest test_cli.py
"""

from pathlib import Path

import pytest

from lookout_cli.cli import build_command, build_parser, format_packet, parse_setting_value
from lookout_mqtt.schemas import DetectedObject, PublishPacket, SequencedDetection, Timestamp

START_COMMAND_FILE = Path(__file__).parent / "config" / "commands" / "start.yaml"


def parse(*argv):
    return build_parser().parse_args(list(argv))


def test_start_command_from_arguments():
    args = parse("start", "rtsp://cam/data", "--video-url", "rtsp://cam/video")

    assert build_command(args) == {
        "command": "start",
        "data_url": "rtsp://cam/data",
        "video_url": "rtsp://cam/video",
    }


def test_start_command_from_yaml():
    command = build_command(parse("start", "--config", str(START_COMMAND_FILE)))

    assert command["command"] == "start"
    assert command["data_url"].startswith("rtsp://")


def test_start_without_url_is_an_error():
    with pytest.raises(ValueError):
        build_command(parse("start"))


def test_missing_yaml_file_is_an_error(tmp_path):
    with pytest.raises(FileNotFoundError):
        build_command(parse("start", "--config", str(tmp_path / "missing.yaml")))


@pytest.mark.parametrize("raw, expected", [
    ("80", 80),
    ("person", "person"),
    ("62.5", 62.5),
])
def test_setting_values_are_typed(raw, expected):
    assert parse_setting_value(raw) == expected


def test_set_setting_and_simple_commands():
    assert build_command(parse("set-setting", "detectClass", "car")) == {
        "command": "set_setting",
        "name": "detectClass",
        "value": "car",
    }
    assert build_command(parse("--service-id", "cam_09", "health")) == {"command": "health"}


def test_format_packet():
    packet = PublishPacket(
        schema_version="1.0",
        timestamp=Timestamp(value="2025-01-01T00:00:00+00:00"),
        detections=[SequencedDetection(3, DetectedObject(id=1, display_name="person", confidence=91.5))],
        frame=b"",
    )

    assert format_packet(packet) == "[2025-01-01T00:00:00+00:00] #3 person (91.5) | no frame"
