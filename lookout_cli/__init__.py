"""
Lookout CLI - Command-line interface for inference bridge control.

Sends MQTT commands to the bridge without hand-writing JSON.

Usage:
    lookout-cli start rtsp://camera/live --video-url rtsp://camera/live
    lookout-cli set-setting confidenceThreshold 80
    lookout-cli stop
    lookout-cli health
    lookout-cli watch
"""

__version__ = "1.0.0"
