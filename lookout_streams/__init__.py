"""
lookout_streams - Media subprocess ingestion

Bounded Context: Subprocess supervision and stream framing
Responsibilities:
  - ProcessSupervisor: spawn/kill one subprocess, restart it after a crash
  - DetectionStreamParser: detection JSON messages out of a gst hex dump
  - FrameStreamParser: JPEG frames out of an MJPEG byte stream

Threading Model:
  - One reader thread per subprocess generation feeds its parser
  - Parsers are single-threaded and recreated with each generation
"""

from lookout_streams.commands import (
    DETECTION_ARGS_TEMPLATE,
    DETECTION_RESTART_DELAY,
    FFMPEG_COMMAND,
    GST_COMMAND,
    VIDEO_RESTART_DELAY,
    video_args_template,
)
from lookout_streams.detection_parser import DetectionStreamParser, ParserState
from lookout_streams.frame_parser import FrameStreamParser
from lookout_streams.supervisor import (
    STREAM_URL_PLACEHOLDER,
    ProcessHandle,
    ProcessState,
    ProcessSupervisor,
)

__all__ = [
    "DETECTION_ARGS_TEMPLATE",
    "DETECTION_RESTART_DELAY",
    "FFMPEG_COMMAND",
    "GST_COMMAND",
    "VIDEO_RESTART_DELAY",
    "video_args_template",
    "DetectionStreamParser",
    "ParserState",
    "FrameStreamParser",
    "STREAM_URL_PLACEHOLDER",
    "ProcessHandle",
    "ProcessState",
    "ProcessSupervisor",
]
