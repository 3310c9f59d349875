"""
DetectionStreamParser - reassembles detection messages from a gst hex dump.

The detection subprocess is `gst-launch-1.0 ... ! fakesink dump=true`, which
prints every RTP payload buffer as a hex dump:

    00000000 (0x7f3c08001230): 7b 20 22 74 69 6d 65 ...  { "timestamp": 1
    00000010 (0x7f3c08001240): 35 37 31 39 35 32 36 ...  571952645123, "o
    ...
    00000000 (0x7f3c08001500): 7b 20 22 74 69 6d 65 ...  { "timestamp": 1

Each line carries its ASCII rendering at a fixed column. A message starts at
the line holding the header marker and ends when the next buffer dump starts
(a line beginning with the zero offset).

stdout is read in arbitrary chunks, so line fragments, the header, the body
and the terminator can all straddle chunk boundaries. The incomplete trailing
line is held back until its newline arrives.
"""

import codecs
import json
import logging
from enum import Enum
from typing import List, Optional, Union

from lookout_mqtt.schemas import DetectionEvent

logger = logging.getLogger(__name__)

HEADER_MARKER = '{ "t'
TERMINATOR_PREFIX = "00000000"
PAYLOAD_COLUMN = 74
DEFAULT_MAX_MESSAGE_SIZE = 256 * 1024


class ParserState(Enum):
    SEEKING_HEADER = "seeking_header"
    ACCUMULATING = "accumulating"


class DetectionStreamParser:
    """
    Stateful text parser for the detection subprocess output.

    Usage:
        parser = DetectionStreamParser()
        for chunk in chunks:
            for event in parser.feed(chunk):
                coordinator.handle_detection_event(event)

    Thread Safety:
        Not thread-safe. One instance per subprocess generation, fed from
        that subprocess's reader thread only.
    """

    def __init__(
        self,
        header_marker: str = HEADER_MARKER,
        terminator_prefix: str = TERMINATOR_PREFIX,
        payload_column: int = PAYLOAD_COLUMN,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ):
        self.header_marker = header_marker
        self.terminator_prefix = terminator_prefix
        self.payload_column = payload_column
        self.max_message_size = max_message_size

        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._partial_line = ""
        self._fragments: List[str] = []
        self._accumulated = 0
        self._state = ParserState.SEEKING_HEADER

        self.messages_decoded = 0
        self.messages_dropped = 0

    @property
    def state(self) -> ParserState:
        return self._state

    def reset(self) -> None:
        """Discard any partial line and partial message."""
        self._decoder.reset()
        self._partial_line = ""
        self._clear_message()

    def feed(self, chunk: Union[bytes, str]) -> List[DetectionEvent]:
        """
        Consume one chunk of subprocess output.

        Args:
            chunk: Raw bytes from stdout (or already-decoded text)

        Returns:
            Detection events completed by this chunk, in stream order
        """
        text = self._decoder.decode(chunk) if isinstance(chunk, (bytes, bytearray)) else chunk

        lines = (self._partial_line + text).split("\n")
        self._partial_line = lines.pop()

        events: List[DetectionEvent] = []
        for line in lines:
            event = self._consume_line(line.rstrip("\r"))
            if event is not None:
                events.append(event)

        return events

    def _consume_line(self, line: str) -> Optional[DetectionEvent]:
        event = None

        if self._state is ParserState.ACCUMULATING:
            if not line.startswith(self.terminator_prefix):
                self._append_fragment(line[self.payload_column:])
                return None

            event = self._finish_message()
            # the terminator is the first line of the next buffer dump

        marker_index = line.find(self.header_marker)
        if marker_index != -1:
            self._state = ParserState.ACCUMULATING
            self._fragments = []
            self._accumulated = 0
            self._append_fragment(line[marker_index:])

        return event

    def _append_fragment(self, fragment: str) -> None:
        self._fragments.append(fragment)
        self._accumulated += len(fragment)

        if self._accumulated > self.max_message_size:
            logger.warning(
                f"⚠️ Detection message exceeded {self.max_message_size} chars "
                f"without a terminator, dropping it"
            )
            self.messages_dropped += 1
            self._clear_message()

    def _finish_message(self) -> Optional[DetectionEvent]:
        payload = "".join(self._fragments)
        self._clear_message()

        try:
            event = DetectionEvent.from_dict(json.loads(payload))
        except ValueError as e:
            # json.JSONDecodeError is a ValueError
            logger.warning(f"⚠️ Malformed detection payload ({e}): {payload[:200]!r}")
            self.messages_dropped += 1
            return None

        self.messages_decoded += 1
        return event

    def _clear_message(self) -> None:
        self._fragments = []
        self._accumulated = 0
        self._state = ParserState.SEEKING_HEADER
