"""
Structured JSON Logger
======================

Bounded Context: Observability Infrastructure

One JSON object per record, keyed by a typed LogEvent, so supervisor crashes,
restarts and publish failures can be filtered by event name.

Output:
    {
        "timestamp": "2025-10-24T15:30:45.123456+00:00",
        "level": "WARNING",
        "component": "streams",
        "event": "stream.crashed",
        "message": "video_stream exited on its own",
        "context": {"stream": "video_stream"},
        "metadata": {"returncode": 1, "generation": 3}
    }

Records below the logger's level are dropped before any JSON is rendered;
the frame and detection paths log at high rates.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from .events import LogEvent

LOGGER_PREFIX = "lookout"


class StructuredLogger:
    """
    JSON logger bound to a component name and optional fixed context.

    Attributes:
        component: Component name (e.g., "inference_publisher", "streams")
        context: Fields repeated on every record (e.g., {"stream": "video_stream"})
        logger: Underlying Python logger instance
    """

    def __init__(
        self,
        component: str,
        level: int = logging.INFO,
        logger_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.component = component
        self.context = dict(context or {})
        self.logger_name = logger_name or f"{LOGGER_PREFIX}.{component}"
        self.logger = logging.getLogger(self.logger_name)
        self.logger.setLevel(level)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(JSONFormatter())
            self.logger.addHandler(handler)

    def bind(self, **context: Any) -> "StructuredLogger":
        """
        Child logger sharing this logger's handlers, with extra context.

        Example:
            >>> video_log = create_logger("streams").bind(stream="video_stream")
        """
        return StructuredLogger(
            component=self.component,
            level=self.logger.level,
            logger_name=self.logger_name,
            context={**self.context, **context},
        )

    def render(
        self,
        level: str,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exc_info: Optional[BaseException] = None
    ) -> str:
        """JSON text of one record."""
        entry: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': level,
            'component': self.component,
            'event': event.value,
            'message': message,
        }
        if self.context:
            entry['context'] = self.context
        if metadata:
            entry['metadata'] = metadata
        if exc_info is not None:
            entry['exception'] = {
                'type': type(exc_info).__name__,
                'message': str(exc_info),
            }
        return json.dumps(entry, default=str)

    def _log(
        self,
        level: int,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        if not self.logger.isEnabledFor(level):
            return

        self.logger.log(
            level,
            self.render(logging.getLevelName(level), event, message, metadata, exc_info),
            exc_info=exc_info if level >= logging.ERROR else None
        )

    def debug(self, event: LogEvent, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._log(logging.DEBUG, event, message, metadata)

    def info(self, event: LogEvent, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._log(logging.INFO, event, message, metadata)

    def warning(self, event: LogEvent, message: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._log(logging.WARNING, event, message, metadata)

    def error(
        self,
        event: LogEvent,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exc_info: Optional[BaseException] = None
    ) -> None:
        """Log ERROR; exc_info adds the exception summary and the traceback."""
        self._log(logging.ERROR, event, message, metadata, exc_info)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)


class JSONFormatter(logging.Formatter):
    """Pass-through formatter: the message is already JSON."""

    def format(self, record: logging.LogRecord) -> str:
        return record.getMessage()


def create_logger(component: str, level: int = logging.INFO, **context: Any) -> StructuredLogger:
    """
    Build a StructuredLogger for a component.

    Example:
        >>> logger = create_logger("inference_publisher", level=logging.DEBUG)
        >>> stream_log = create_logger("streams", stream="detection_stream")
    """
    return StructuredLogger(component=component, level=level, context=context)
