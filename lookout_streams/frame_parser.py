"""
FrameStreamParser - cuts JPEG frames out of an MJPEG byte stream.

ffmpeg writes `-f image2pipe` JPEGs back to back on stdout. A frame is the
byte span from a start-of-image marker (FF D8) through the next end-of-image
marker (FF D9). Frames never nest.

Known gap: an SOI split across two chunks (FF at the end of one chunk, D8 at
the start of the next) is not detected and that frame is lost.
`retain_marker_lookback=True` keeps the trailing FF byte across chunks and
closes the gap.
"""

import logging
import time
from typing import Callable, List, Optional

from lookout_mqtt.schemas import FrameBuffer

logger = logging.getLogger(__name__)

SOI = b"\xff\xd8"
EOI = b"\xff\xd9"

# Bytes skipped after SOI before looking for EOI. JPEG headers (quantization
# and Huffman tables) may contain FF D9 sequences.
DEFAULT_HEADER_OFFSET = 500
DEFAULT_MAX_FRAME_SIZE = 4 * 1024 * 1024


class FrameStreamParser:
    """
    Stateful binary parser for the video subprocess output.

    Usage:
        parser = FrameStreamParser()
        for chunk in chunks:
            for frame in parser.feed(chunk):
                coordinator.handle_frame(frame)

    Thread Safety:
        Not thread-safe. One instance per subprocess generation, fed from
        that subprocess's reader thread only.
    """

    def __init__(
        self,
        header_offset: int = DEFAULT_HEADER_OFFSET,
        max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
        retain_marker_lookback: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        if header_offset < 0:
            raise ValueError(f"header_offset must be >= 0, got {header_offset}")
        if max_frame_size <= 0:
            raise ValueError(f"max_frame_size must be > 0, got {max_frame_size}")

        self.header_offset = header_offset
        self.max_frame_size = max_frame_size
        self.retain_marker_lookback = retain_marker_lookback
        self._clock = clock

        self._pending: Optional[bytearray] = None
        self._carry = b""

        self.frames_emitted = 0
        self.frames_dropped = 0

    @property
    def in_progress(self) -> bool:
        """True while a frame has started but its end marker has not arrived."""
        return self._pending is not None

    @property
    def pending_size(self) -> int:
        return len(self._pending) if self._pending is not None else 0

    def reset(self) -> None:
        """Drop any partial frame."""
        self._pending = None
        self._carry = b""

    def feed(self, chunk: bytes) -> List[FrameBuffer]:
        """
        Consume one chunk of subprocess output.

        Returns:
            Frames completed by this chunk, in stream order
        """
        data = bytes(chunk)
        if self._carry and self._pending is None:
            data = self._carry + data
        self._carry = b""

        frames: List[FrameBuffer] = []
        pos = 0

        while pos < len(data):
            if self._pending is not None:
                end = self._find_pending_end(data)
                if end == -1:
                    self._extend_pending(data[pos:])
                    break

                self._pending += data[pos:end]
                frames.append(self._emit(bytes(self._pending)))
                self._pending = None
                pos = end
                continue

            soi = data.find(SOI, pos)
            if soi == -1:
                if self.retain_marker_lookback and data[-1:] == SOI[:1]:
                    self._carry = data[-1:]
                break

            eoi = data.find(EOI, soi + self.header_offset)
            if eoi == -1:
                self._pending = bytearray()
                self._extend_pending(data[soi:])
                break

            pos = eoi + len(EOI)
            frames.append(self._emit(data[soi:pos]))

        return frames

    def _find_pending_end(self, data: bytes) -> int:
        """
        End offset (exclusive) in data of the pending frame, or -1.

        The header offset is measured from the frame's SOI, so it still
        applies when the frame's first chunk was shorter than the offset.
        """
        size = len(self._pending)

        # EOI straddling the previous chunk and this one
        if size - 1 >= self.header_offset and self._pending[-1:] == EOI[:1] and data[:1] == EOI[1:]:
            return 1

        eoi = data.find(EOI, max(0, self.header_offset - size))
        return -1 if eoi == -1 else eoi + len(EOI)

    def _extend_pending(self, data: bytes) -> None:
        if len(self._pending) + len(data) > self.max_frame_size:
            logger.warning(
                f"⚠️ Partial frame exceeded {self.max_frame_size} bytes without "
                f"an end marker, dropping it"
            )
            self.frames_dropped += 1
            self._pending = None
            return

        self._pending += data

    def _emit(self, data: bytes) -> FrameBuffer:
        self.frames_emitted += 1
        return FrameBuffer(data=data, captured_at=self._clock())
