"""
Inference Coordinator - correlates detection batches with video frames.

Owns the two supervisor+parser pairs (detection stream, video stream),
filters decoded detections, stamps survivors with sequence numbers, pairs
each qualifying batch with the next video frame and publishes the result.

Threading Model:
- Detection Reader Thread (supervisor): parse → filter → queue batch
- Video Reader Thread (supervisor): parse → resolve frame waiters
- Publisher Thread (ours): wait for the batch's frame (bounded) → publish
- Telemetry Worker (ThreadPoolExecutor, 1 worker): counters and events
- Control Plane Thread (paho-mqtt internal): start/stop/apply_setting

Neither reader thread ever blocks on the other stream: the frame wait
happens on the publisher thread, one future per batch.
"""

import concurrent.futures
import functools
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from lookout_mqtt.schemas import (
    DetectionEvent,
    FrameBuffer,
    HealthCode,
    PublishPacket,
    SequencedDetection,
    Timestamp,
)
from lookout_streams import (
    DetectionStreamParser,
    FrameStreamParser,
    ProcessSupervisor,
)
from lookout_streams.commands import RTSP_CAPTURE_SOURCE

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"
NEGATIVE_CLASS = "Negative"

# Runtime settings
CONFIDENCE_THRESHOLD_SETTING = "confidenceThreshold"
DETECT_CLASS_SETTING = "detectClass"

# Telemetry
ALL_DETECTIONS_COUNTER = "allDetections"
CLASS_DETECTIONS_COUNTER = "detections-of-class"
INFERENCE_CLASSES_EVENT = "inferenceClasses"
VIDEO_STARTED_EVENT = "VideoStreamProcessingStarted"
VIDEO_ERROR_EVENT = "VideoStreamProcessingError"
VIDEO_STOPPED_EVENT = "VideoStreamProcessingStopped"

SETTING_ACK = "ack"
SETTING_ERROR = "error"


@dataclass(frozen=True)
class SettingResult:
    """Outcome of a runtime setting change."""
    status: str  # "ack" or "error"
    name: str
    message: str
    value: Any = None

    @property
    def ok(self) -> bool:
        return self.status == SETTING_ACK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "name": self.name,
            "message": self.message,
            "value": self.value,
        }


class ParserBinding:
    """
    Parser of one start() session.

    Stream callbacks are bound to the session's binding, so a chunk from a
    reader thread of an earlier session never reaches a newer parser. A
    crash within the session swaps in a fresh parser for the next generation.
    """

    def __init__(self, factory: Callable[[], Any]):
        self._factory = factory
        self.parser = factory()

    def renew(self) -> None:
        self.parser = self._factory()


@dataclass
class PendingBatch:
    """
    A qualifying detection batch waiting for its frame.

    The frame future is resolved by the video reader thread with the next
    emitted frame, or with None when the coordinator stops.
    """
    detections: List[SequencedDetection]
    frame_future: concurrent.futures.Future
    deadline: float
    source_timestamp: Optional[Any] = None
    created_at: float = field(default_factory=time.time)


class InferenceCoordinator:
    """
    Detection/frame correlation and publishing.

    Usage:
        coordinator = InferenceCoordinator.from_config(
            config,
            publisher=inference_publisher,
            telemetry=telemetry_publisher,
        )
        coordinator.start(data_url, video_url)
        ...
        coordinator.stop()
        coordinator.close()

    Collaborators:
        publisher: anything with publish_packet(PublishPacket) -> bool
        telemetry: anything with send_telemetry(dict) and send_event(name, value)
    """

    def __init__(
        self,
        detection_supervisor: ProcessSupervisor,
        video_supervisor: ProcessSupervisor,
        publisher,  # InferencePublisher
        telemetry=None,  # TelemetryPublisher
        confidence_threshold: int = 70,
        detect_class: str = "person",
        correlation_timeout: float = 5.0,
        detection_parser_factory: Callable[[], DetectionStreamParser] = DetectionStreamParser,
        frame_parser_factory: Callable[[], FrameStreamParser] = FrameStreamParser,
        publish_queue_size: int = 512,
        video_capture_source: str = RTSP_CAPTURE_SOURCE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.detection_supervisor = detection_supervisor
        self.video_supervisor = video_supervisor
        self.publisher = publisher
        self.telemetry = telemetry

        self.confidence_threshold = confidence_threshold
        self.detect_class = detect_class
        self.correlation_timeout = correlation_timeout
        self.video_capture_source = video_capture_source

        self._detection_parser_factory = detection_parser_factory
        self._frame_parser_factory = frame_parser_factory
        self._clock = clock

        self._detection_binding = ParserBinding(detection_parser_factory)
        self._frame_binding = ParserBinding(frame_parser_factory)

        # Written only by the detection reader thread
        self._next_sequence = 0

        # Frame cache and waiters are shared by both reader threads
        self._frame_lock = threading.Lock()
        self._last_frame: Optional[FrameBuffer] = None
        self._frame_waiters: List[concurrent.futures.Future] = []

        self.publish_queue: "queue.Queue[PendingBatch]" = queue.Queue(maxsize=publish_queue_size)
        self.publisher_thread: Optional[threading.Thread] = None
        self.stop_event = threading.Event()

        self._telemetry_executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="TelemetryWorker"
        )

        self._running = False

        self.events_received = 0
        self.frames_received = 0
        self.packets_published = 0
        self.packets_failed = 0
        self.batches_dropped = 0

    @classmethod
    def from_config(cls, config, publisher, telemetry=None) -> "InferenceCoordinator":
        """
        Build a coordinator and its supervisors from a ProcessorConfig.
        """
        def make_supervisor(name, stream):
            return ProcessSupervisor(
                name=name,
                command=stream.command,
                args_template=stream.args_template,
                restart_delay=stream.restart_delay,
                critical_restart_count=stream.critical_restart_count,
                max_restarts=stream.max_restarts,
                restart_window=stream.restart_window,
            )

        inference = config.inference
        frame_parser = config.frame_parser

        return cls(
            detection_supervisor=make_supervisor("detection_stream", config.detection_stream),
            video_supervisor=make_supervisor("video_stream", config.video_stream),
            publisher=publisher,
            telemetry=telemetry,
            confidence_threshold=inference.confidence_threshold,
            detect_class=inference.detect_class,
            correlation_timeout=inference.correlation_timeout,
            video_capture_source=config.video_capture_source,
            detection_parser_factory=lambda: DetectionStreamParser(
                payload_column=inference.payload_column
            ),
            frame_parser_factory=lambda: FrameStreamParser(
                header_offset=frame_parser.header_offset,
                max_frame_size=frame_parser.max_frame_size,
                retain_marker_lookback=frame_parser.retain_marker_lookback,
            ),
        )

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle (Control Plane Thread)
    # ─────────────────────────────────────────────────────────────────────

    def start(self, data_url: str, video_url: str = "") -> bool:
        """
        Start both streams.

        An already running session is stopped first, so start() can be used
        to switch URLs. With a local video capture source the device is
        opened and video_url is ignored.

        Returns:
            Result of starting the detection stream. A failed video stream
            start is logged but does not fail the call.
        """
        self._stop_streams()

        detection = self._detection_binding = ParserBinding(self._detection_parser_factory)
        frames = self._frame_binding = ParserBinding(self._frame_parser_factory)

        self._start_publisher_thread()
        self._running = True

        video_source = self.video_source(video_url)
        logger.info(f"Starting streams (data_url={data_url}, video_source={video_source or '-'})")

        started = self.detection_supervisor.start(
            data_url,
            on_data=functools.partial(self._on_detection_data, detection),
            on_crash=functools.partial(self._on_detection_crash, detection),
        )
        if not started:
            logger.error("❌ Detection stream failed to start, restart scheduled")

        if video_source:
            if self.video_supervisor.start(
                video_source,
                on_data=functools.partial(self._on_video_data, frames),
                on_crash=functools.partial(self._on_video_crash, frames),
            ):
                self._send_event(VIDEO_STARTED_EVENT, "1")
            else:
                logger.warning("⚠️ Video stream failed to start, continuing without frames")
        else:
            logger.warning("⚠️ No video URL, packets will carry no frame")

        if started:
            logger.info("✅ Inference streams started")
        return started

    def stop(self) -> None:
        """
        Stop both streams and the publisher thread. Idempotent.
        """
        if not self._running:
            return

        logger.info("Stopping inference streams")
        self._stop_streams()

        # Release batches still waiting for a frame
        self._resolve_waiters(None)

        self.stop_event.set()
        if self.publisher_thread:
            self.publisher_thread.join(timeout=5.0)
            self.publisher_thread = None

        dropped = self._drain_publish_queue()
        if dropped:
            logger.warning(f"Dropped {dropped} unpublished batches on stop")

        self._running = False
        logger.info("✅ Inference streams stopped")

    def close(self) -> None:
        """Stop and release the telemetry worker."""
        self.stop()
        self._telemetry_executor.shutdown(wait=True)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def next_sequence_number(self) -> int:
        return self._next_sequence

    def video_source(self, video_url: str = "") -> str:
        """What the video subprocess opens: the URL for rtsp, else the capture device."""
        if self.video_capture_source == RTSP_CAPTURE_SOURCE:
            return video_url
        return self.video_capture_source

    @property
    def _detection_parser(self) -> DetectionStreamParser:
        return self._detection_binding.parser

    @property
    def _frame_parser(self) -> FrameStreamParser:
        return self._frame_binding.parser

    def _stop_streams(self) -> None:
        self.detection_supervisor.stop()
        if self.video_supervisor.is_running or self.video_supervisor.restart_pending:
            self.video_supervisor.stop()
            self._send_event(VIDEO_STOPPED_EVENT, "1")

    def _start_publisher_thread(self) -> None:
        if self.publisher_thread is not None and self.publisher_thread.is_alive():
            return

        self.stop_event.clear()
        self.publisher_thread = threading.Thread(
            target=self._publish_loop,
            name="InferencePublisherThread",
            daemon=True
        )
        self.publisher_thread.start()
        logger.info("Inference publisher thread started")

    def _drain_publish_queue(self) -> int:
        dropped = 0
        while True:
            try:
                self.publish_queue.get_nowait()
            except queue.Empty:
                return dropped
            dropped += 1

    # ─────────────────────────────────────────────────────────────────────
    # Stream callbacks (Reader Threads)
    # ─────────────────────────────────────────────────────────────────────

    def _on_detection_data(self, binding: ParserBinding, chunk: bytes) -> None:
        if binding is not self._detection_binding:
            return  # reader of a stopped session
        for event in binding.parser.feed(chunk):
            self.handle_detection_event(event)

    def _on_video_data(self, binding: ParserBinding, chunk: bytes) -> None:
        if binding is not self._frame_binding:
            return
        for frame in binding.parser.feed(chunk):
            self.handle_frame(frame)

    def _on_detection_crash(self, binding: ParserBinding, reason: str) -> None:
        # Partial messages never carry over to the next generation
        binding.renew()
        logger.warning(f"⚠️ Detection stream crashed: {reason}")

    def _on_video_crash(self, binding: ParserBinding, reason: str) -> None:
        binding.renew()
        logger.warning(f"⚠️ Video stream crashed: {reason}")
        self._send_event(VIDEO_ERROR_EVENT, reason)

    def handle_detection_event(self, event: DetectionEvent) -> Optional[PendingBatch]:
        """
        Filter, sequence and queue one decoded detection message.

        Returns:
            The queued batch, or None if nothing survived filtering

        Thread: Detection Reader Thread
        """
        self.events_received += 1

        for obj in event.objects:
            logger.info(
                f"Detected {obj.display_name} (id={obj.id}, confidence={obj.confidence})"
            )

        threshold = self.confidence_threshold
        survivors = []
        for obj in event.objects:
            if obj.display_name == NEGATIVE_CLASS or obj.confidence < threshold:
                continue
            survivors.append(SequencedDetection(
                sequence_number=self._next_sequence,
                detection=obj,
            ))
            self._next_sequence += 1

        if not survivors:
            return None

        frame_future: concurrent.futures.Future = concurrent.futures.Future()
        with self._frame_lock:
            self._last_frame = None
            self._frame_waiters.append(frame_future)

        batch = PendingBatch(
            detections=survivors,
            frame_future=frame_future,
            deadline=self._clock() + self.correlation_timeout,
            source_timestamp=event.source_timestamp,
        )

        # Telemetry is independent of publishing
        self._send_batch_telemetry(survivors)

        try:
            self.publish_queue.put_nowait(batch)
        except queue.Full:
            self.batches_dropped += 1
            self._discard_waiter(frame_future)
            logger.warning("Publish queue full, dropping detection batch")
            return None

        return batch

    def handle_frame(self, frame: FrameBuffer) -> None:
        """
        Cache the frame and hand it to every batch waiting for one.

        Thread: Video Reader Thread
        """
        self.frames_received += 1
        with self._frame_lock:
            self._last_frame = frame
        self._resolve_waiters(frame)

    @property
    def last_frame(self) -> Optional[FrameBuffer]:
        return self._last_frame

    def _resolve_waiters(self, frame: Optional[FrameBuffer]) -> None:
        with self._frame_lock:
            waiters, self._frame_waiters = self._frame_waiters, []
            for future in waiters:
                if not future.done():
                    future.set_result(frame)

    def _discard_waiter(self, future: concurrent.futures.Future) -> None:
        with self._frame_lock:
            if future in self._frame_waiters:
                self._frame_waiters.remove(future)

    # ─────────────────────────────────────────────────────────────────────
    # Correlation and publishing (Publisher Thread)
    # ─────────────────────────────────────────────────────────────────────

    def correlate(self, batch: PendingBatch) -> PublishPacket:
        """
        Wait (bounded by the batch deadline) for the batch's frame.

        A timeout yields a packet with an empty frame, never an error.
        """
        remaining = max(0.0, batch.deadline - self._clock())
        try:
            frame = batch.frame_future.result(timeout=remaining)
        except concurrent.futures.TimeoutError:
            frame = None
            self._discard_waiter(batch.frame_future)
            logger.info(
                f"No frame within {self.correlation_timeout}s, "
                f"publishing {len(batch.detections)} detections without frame"
            )

        return PublishPacket(
            schema_version=SCHEMA_VERSION,
            timestamp=Timestamp.now(),
            detections=batch.detections,
            frame=frame.data if frame is not None else b"",
            frame_captured_at=frame.captured_at if frame is not None else None,
            source_timestamp=batch.source_timestamp,
        )

    def _publish_loop(self):
        """
        Publisher thread loop: correlate queued batches and publish them.

        Thread: Publisher Thread (our thread)
        """
        logger.info("Inference publisher loop started")

        while not self.stop_event.is_set():
            try:
                batch = self.publish_queue.get(timeout=0.1)
            except queue.Empty:
                continue

            try:
                packet = self.correlate(batch)
                if self.publisher.publish_packet(packet):
                    self.packets_published += 1
                else:
                    self.packets_failed += 1
            except Exception as e:
                self.packets_failed += 1
                logger.error(f"Error publishing inference packet: {e}", exc_info=True)

        logger.info("Inference publisher loop stopped")

    # ─────────────────────────────────────────────────────────────────────
    # Telemetry (Telemetry Worker)
    # ─────────────────────────────────────────────────────────────────────

    def _send_batch_telemetry(self, survivors: List[SequencedDetection]) -> None:
        names = [det.detection.display_name for det in survivors]
        counters = {
            ALL_DETECTIONS_COUNTER: len(survivors),
            CLASS_DETECTIONS_COUNTER: sum(1 for name in names if name == self.detect_class),
        }
        self._submit_telemetry(self._deliver_batch_telemetry, counters, ",".join(names))

    def _deliver_batch_telemetry(self, counters: Dict[str, int], class_names: str) -> None:
        if not self.telemetry.send_telemetry(counters):
            logger.warning(f"Telemetry counters not sent: {counters}")
        if not self.telemetry.send_event(INFERENCE_CLASSES_EVENT, class_names):
            logger.warning(f"Telemetry event not sent: {INFERENCE_CLASSES_EVENT}")

    def _send_event(self, name: str, value: Any) -> None:
        self._submit_telemetry(self._deliver_event, name, value)

    def _deliver_event(self, name: str, value: Any) -> None:
        if not self.telemetry.send_event(name, value):
            logger.warning(f"Telemetry event not sent: {name}")

    def _submit_telemetry(self, fn, *args) -> None:
        if self.telemetry is None:
            return
        try:
            future = self._telemetry_executor.submit(fn, *args)
        except RuntimeError as e:
            # Executor already shut down
            logger.warning(f"Telemetry dropped: {e}")
            return
        future.add_done_callback(self._log_telemetry_failure)

    @staticmethod
    def _log_telemetry_failure(future: concurrent.futures.Future) -> None:
        error = future.exception()
        if error is not None:
            logger.error(f"Telemetry send failed: {error}", exc_info=error)

    # ─────────────────────────────────────────────────────────────────────
    # Settings and health (Control Plane Thread)
    # ─────────────────────────────────────────────────────────────────────

    def apply_setting(self, name: str, value: Any) -> SettingResult:
        """
        Change a runtime setting.

        Supported: confidenceThreshold (int 0-100), detectClass (non-empty
        string). Unknown names and invalid values give an error result.
        """
        if name == CONFIDENCE_THRESHOLD_SETTING:
            if isinstance(value, bool):
                return self._setting_error(name, value, "must be an integer")
            try:
                threshold = int(value)
            except (TypeError, ValueError):
                return self._setting_error(name, value, "must be an integer")
            if threshold != value and str(threshold) != str(value).strip():
                return self._setting_error(name, value, "must be an integer")
            if not 0 <= threshold <= 100:
                return self._setting_error(name, value, "must be in [0, 100]")

            self.confidence_threshold = threshold
            logger.info(f"Confidence threshold set to {threshold}")
            return SettingResult(SETTING_ACK, name, "updated", threshold)

        if name == DETECT_CLASS_SETTING:
            if not isinstance(value, str) or not value.strip():
                return self._setting_error(name, value, "must be a non-empty string")

            self.detect_class = value.strip()
            logger.info(f"Detect class set to {self.detect_class}")
            return SettingResult(SETTING_ACK, name, "updated", self.detect_class)

        return self._setting_error(name, value, "unknown setting")

    def _setting_error(self, name: str, value: Any, reason: str) -> SettingResult:
        logger.warning(f"Rejected setting {name}={value!r}: {reason}")
        return SettingResult(SETTING_ERROR, name, reason, value)

    def get_settings(self) -> Dict[str, Any]:
        return {
            CONFIDENCE_THRESHOLD_SETTING: self.confidence_threshold,
            DETECT_CLASS_SETTING: self.detect_class,
        }

    def get_health(self) -> HealthCode:
        """Worst health of the two streams."""
        return min(
            self.detection_supervisor.get_health(),
            self.video_supervisor.get_health(),
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "events_received": self.events_received,
            "frames_received": self.frames_received,
            "packets_published": self.packets_published,
            "packets_failed": self.packets_failed,
            "batches_dropped": self.batches_dropped,
            "next_sequence_number": self._next_sequence,
            "detection_restarts": self.detection_supervisor.restart_count,
            "video_restarts": self.video_supervisor.restart_count,
        }
