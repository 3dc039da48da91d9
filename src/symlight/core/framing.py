"""Line framing and event decoding for OpenAI-style Server-Sent Event bodies.

``FrameBuffer`` turns arbitrarily split byte reads into complete text lines,
decoding UTF-8 incrementally so multibyte characters split across reads
survive. ``EventDecoder`` interprets each line as a stream event.
"""

import codecs
import json
import logging
from collections.abc import Callable

from symlight.models.events import ChunkEvent, DoneEvent

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
COMMENT_PREFIX = ":"

# Characters of a malformed frame echoed into the diagnostic log
MALFORMED_PREVIEW_CHARS = 120


class FrameBuffer:
    """Split a byte stream into lines, carrying a partial trailing line."""

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._carry = ""

    @property
    def pending(self) -> str:
        """The incomplete trailing line held between reads."""
        return self._carry

    def decode(self, raw: bytes) -> str:
        """Decode ``raw`` without splitting it into lines.

        A multi-byte character cut at the end of ``raw`` is held back until
        the next call completes it.

        Args:
            raw: Bytes from one body read.

        Returns:
            The text decodable so far, possibly empty.
        """
        return self._decoder.decode(raw)

    def feed_text(self, text: str) -> list[str]:
        """Append already-decoded text and return every completed line."""
        if not text:
            return []
        parts = (self._carry + text).split("\n")
        self._carry = parts.pop()
        return parts

    def feed(self, raw: bytes) -> list[str]:
        """Decode ``raw`` and return every line it completes."""
        return self.feed_text(self.decode(raw))

    def flush(self) -> str | None:
        """Return the final (possibly incomplete) line once, then clear."""
        tail = self._carry + self._decoder.decode(b"", final=True)
        self._carry = ""
        return tail if tail else None


class EventDecoder:
    """Interpret protocol lines as stream events.

    Diagnostics for metadata-only deltas and malformed frames are emitted
    at most once per decoder, so a misbehaving server cannot flood the log.
    """

    def __init__(self, log: Callable[[str], None] | None = None):
        self._log = log or logger.debug
        self.chunks = 0
        self.malformed_frames = 0
        self._logged_delta_keys = False
        self._logged_parse_error = False

    def decode(self, line: str) -> ChunkEvent | DoneEvent | None:
        """Decode one protocol line.

        Args:
            line: One line without its newline.

        Returns:
            A chunk or done event, or ``None`` when the line carries no
            event (blank, comment, metadata-only delta, malformed payload).
        """
        line = line.strip()
        if not line or line.startswith(COMMENT_PREFIX):
            return None

        if line == DONE_SENTINEL:
            return DoneEvent()

        if not line.startswith(DATA_PREFIX):
            return None

        payload = line[len(DATA_PREFIX):]
        if payload.startswith(" "):
            payload = payload[1:]
        if payload.strip() == DONE_SENTINEL:
            return DoneEvent()

        try:
            data = json.loads(payload)
        except ValueError as e:
            self._malformed(payload, e)
            return None

        delta = _first_choice(data).get("delta")
        content = delta.get("content") if isinstance(delta, dict) else None
        if isinstance(content, str):
            self.chunks += 1
            return ChunkEvent(content=content)

        # Role-only and metadata deltas are legitimate; note the first one
        if not self._logged_delta_keys:
            self._logged_delta_keys = True
            keys = ",".join(delta.keys()) if isinstance(delta, dict) else "<none>"
            self._log(f"sse delta keys: {keys}")
        return None

    def _malformed(self, payload: str, error: Exception) -> None:
        self.malformed_frames += 1
        if self._logged_parse_error:
            return
        self._logged_parse_error = True
        self._log(
            f"sse parse err: {error} json={payload[:MALFORMED_PREVIEW_CHARS]}..."
        )


def _first_choice(data: object) -> dict:
    if not isinstance(data, dict):
        return {}
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return {}
    first = choices[0]
    return first if isinstance(first, dict) else {}


def parse_completion_body(body: str) -> str | None:
    """Extract message content from a non-streaming completion object.

    Returns ``None`` unless ``body`` is a single JSON object of the shape
    ``{"choices": [{"message": {"content": "..."}}]}``.
    """
    if not body.strip().startswith("{"):
        return None
    try:
        data = json.loads(body)
    except ValueError:
        return None
    message = _first_choice(data).get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None
