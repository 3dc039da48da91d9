"""Tests for SSE line framing and event decoding."""

import json

import pytest

from symlight.core.framing import EventDecoder, FrameBuffer, parse_completion_body
from symlight.models.events import ChunkEvent, DoneEvent


def sse_frame(content: str) -> str:
    payload = {"choices": [{"delta": {"content": content}}]}
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def chunk_contents(pieces: list[bytes]) -> list[str]:
    """Feed pieces through a buffer and decoder, stopping at [DONE]."""
    frames = FrameBuffer()
    decoder = EventDecoder()
    contents = []
    for piece in pieces:
        for line in frames.feed(piece):
            event = decoder.decode(line)
            if isinstance(event, DoneEvent):
                return contents
            if isinstance(event, ChunkEvent):
                contents.append(event.content)
    tail = frames.flush()
    if tail is not None:
        event = decoder.decode(tail)
        if isinstance(event, ChunkEvent):
            contents.append(event.content)
    return contents


STREAM = (
    sse_frame("héllo ")
    + ": keep-alive\n\n"
    + sse_frame("世界 🌍")
    + sse_frame("")
    + "data: [DONE]\n\n"
).encode("utf-8")


class TestFrameBuffer:
    """Tests for FrameBuffer."""

    def test_splits_complete_lines(self):
        """Test complete lines are returned and the remainder held."""
        frames = FrameBuffer()
        assert frames.feed(b"a\nb\nc") == ["a", "b"]
        assert frames.pending == "c"

    def test_carries_partial_line_across_reads(self):
        """Test a partial line is joined with the next read."""
        frames = FrameBuffer()
        assert frames.feed(b"data: par") == []
        assert frames.feed(b"tial\n") == ["data: partial"]
        assert frames.pending == ""

    def test_multibyte_character_split_across_reads(self):
        """A character split mid-sequence decodes once both halves arrive."""
        encoded = "é\n".encode("utf-8")
        frames = FrameBuffer()
        assert frames.feed(encoded[:1]) == []
        assert frames.feed(encoded[1:]) == ["é"]

    def test_flush_returns_tail_once(self):
        """Test flush returns the trailing line once."""
        frames = FrameBuffer()
        frames.feed(b"data: tail")
        assert frames.flush() == "data: tail"
        assert frames.flush() is None

    def test_flush_empty(self):
        """Test flush returns None when nothing is pending."""
        assert FrameBuffer().flush() is None

    def test_long_line_is_held_in_full(self):
        """Test a long line spanning many reads is kept whole."""
        frames = FrameBuffer()
        long_line = b"x" * 100_000
        assert frames.feed(long_line) == []
        assert frames.feed(b"\n") == ["x" * 100_000]

    def test_every_split_offset_yields_same_chunks(self):
        """Splitting the stream at any byte offset never changes the output."""
        expected = chunk_contents([STREAM])
        assert expected == ["héllo ", "世界 🌍", ""]
        for offset in range(len(STREAM) + 1):
            assert chunk_contents([STREAM[:offset], STREAM[offset:]]) == expected

    def test_byte_at_a_time(self):
        """Test feeding one byte at a time decodes the full body."""
        pieces = [STREAM[i:i + 1] for i in range(len(STREAM))]
        assert chunk_contents(pieces) == ["héllo ", "世界 🌍", ""]


class TestEventDecoder:
    """Tests for EventDecoder."""

    def test_blank_and_comment_lines_ignored(self):
        """Test blank and comment lines carry no event."""
        decoder = EventDecoder()
        assert decoder.decode("") is None
        assert decoder.decode("   ") is None
        assert decoder.decode(": ping") is None

    @pytest.mark.parametrize("line", ["data: [DONE]", "data:[DONE]", "[DONE]", "  [DONE]  "])
    def test_done_marker(self, line):
        """Test the [DONE] marker with or without the data prefix."""
        assert isinstance(EventDecoder().decode(line), DoneEvent)

    def test_chunk_with_and_without_space(self):
        """Test the data prefix is accepted with or without a space."""
        decoder = EventDecoder()
        payload = '{"choices":[{"delta":{"content":"hi"}}]}'
        assert decoder.decode(f"data: {payload}") == ChunkEvent(content="hi")
        assert decoder.decode(f"data:{payload}") == ChunkEvent(content="hi")
        assert decoder.chunks == 2

    def test_metadata_delta_logged_once(self):
        """Test metadata-only deltas are skipped and logged once."""
        log = []
        decoder = EventDecoder(log=log.append)
        line = 'data: {"choices":[{"delta":{"role":"assistant"}}]}'
        assert decoder.decode(line) is None
        assert decoder.decode(line) is None
        assert log == ["sse delta keys: role"]

    def test_malformed_frame_logged_once(self):
        """Test malformed frames are counted and logged once."""
        log = []
        decoder = EventDecoder(log=log.append)
        assert decoder.decode("data: {not json") is None
        assert decoder.decode("data: {still not json") is None
        assert decoder.malformed_frames == 2
        assert len(log) == 1
        assert log[0].startswith("sse parse err")

    def test_malformed_frame_between_good_frames(self):
        """Test good frames around a malformed one still decode."""
        stream = (sse_frame("a") + "data: {oops\n\n" + sse_frame("b")).encode()
        assert chunk_contents([stream]) == ["a", "b"]

    def test_other_line_shapes_ignored(self):
        """Test lines of other shapes carry no event."""
        decoder = EventDecoder()
        assert decoder.decode("event: message") is None
        assert decoder.decode("id: 7") is None
        assert decoder.decode('{"choices":[{"delta":{"content":"x"}}]}') is None

    def test_non_string_content_ignored(self):
        """Test non-string content carries no event."""
        decoder = EventDecoder()
        assert decoder.decode('data: {"choices":[{"delta":{"content":null}}]}') is None
        assert decoder.decode('data: {"choices":[]}') is None
        assert decoder.decode("data: [1, 2]") is None

    def test_nothing_after_done_is_read(self):
        """Test frames after [DONE] are not decoded."""
        stream = (sse_frame("a") + "data: [DONE]\n\n" + sse_frame("late")).encode()
        assert chunk_contents([stream]) == ["a"]


class TestParseCompletionBody:
    """Tests for the non-streaming fallback parser."""

    def test_extracts_message_content(self):
        """Test message content is extracted from a completion object."""
        body = json.dumps({"choices": [{"message": {"role": "assistant", "content": "Hi"}}]})
        assert parse_completion_body(body) == "Hi"

    def test_rejects_non_object(self):
        """Test a JSON value other than an object gives None."""
        assert parse_completion_body("[1]") is None
        assert parse_completion_body("plain text") is None

    def test_rejects_invalid_json(self):
        """Test invalid JSON gives None."""
        assert parse_completion_body('{"choices": [') is None

    def test_rejects_wrong_shape(self):
        """Test an object without message content gives None."""
        assert parse_completion_body('{"choices": [{"message": {"content": 3}}]}') is None
        assert parse_completion_body('{"error": "nope"}') is None
