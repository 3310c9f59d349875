"""
Structured Logging for Lookout
==============================

Bounded Context: Observability

JSON-structured logging with typed event names.

Public API
----------
    LogEvent: Typed event names (enum)
    StructuredLogger: JSON logger implementation
    create_logger: Factory function

Example:
    >>> from lookout_mqtt.logging import StructuredLogger, LogEvent
    >>> logger = StructuredLogger(component="video_stream")
    >>> logger.warning(
    ...     event=LogEvent.STREAM_CRASHED,
    ...     message="ffmpeg exited on its own",
    ...     metadata={'returncode': 1}
    ... )
"""

from .events import LogEvent
from .structured import StructuredLogger, create_logger

__all__ = [
    'LogEvent',
    'StructuredLogger',
    'create_logger',
]
