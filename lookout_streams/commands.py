"""
Command templates for the two media subprocesses.

`###STREAM_URL` is replaced with the stream URL (or capture device) before
the template is split on whitespace.
"""

import platform

GST_COMMAND = "gst-launch-1.0"
DETECTION_ARGS_TEMPLATE = (
    "-q rtspsrc location=###STREAM_URL protocols=tcp "
    "! application/x-rtp, media=application ! fakesink dump=true"
)

FFMPEG_COMMAND = "ffmpeg"
RTSP_VIDEO_ARGS_TEMPLATE = (
    "-i ###STREAM_URL -loglevel quiet -an -f image2pipe -vf fps=1/2 -q 1 pipe:1"
)
V4L2_VIDEO_ARGS_TEMPLATE = (
    "-f video4linux2 -i ###STREAM_URL -framerate 15 -loglevel quiet -an "
    "-f image2pipe -vf scale=640:360,fps=1/2 -q 1 pipe:1"
)
AVFOUNDATION_VIDEO_ARGS_TEMPLATE = (
    "-f avfoundation -framerate 15 -video_device_index ###STREAM_URL -i default "
    "-loglevel quiet -an -f image2pipe -vf scale=640:360,fps=1/2 -q 1 pipe:1"
)

RTSP_CAPTURE_SOURCE = "rtsp"
DETECTION_RESTART_DELAY = 5.0
VIDEO_RESTART_DELAY = 10.0


def video_args_template(capture_source: str = RTSP_CAPTURE_SOURCE) -> str:
    """
    ffmpeg arguments for a capture source.

    "rtsp" reads the stream URL given to start(); anything else is a local
    capture device (video4linux2 on Linux, avfoundation on macOS).
    """
    if capture_source == RTSP_CAPTURE_SOURCE:
        return RTSP_VIDEO_ARGS_TEMPLATE
    if platform.system() == "Darwin":
        return AVFOUNDATION_VIDEO_ARGS_TEMPLATE
    return V4L2_VIDEO_ARGS_TEMPLATE
