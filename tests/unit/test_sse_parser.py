"""
tests/unit/test_sse_parser.py — Incremental SSE parser tests
"""

import json

import pytest

from ember.sse import SSEEvent, SSEStreamParser


def _block(event: str, payload) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


# ─────────────────────────────────────────────────────────────────────────────
# Framing
# ─────────────────────────────────────────────────────────────────────────────

class TestParse:
    def test_single_complete_event(self):
        parser = SSEStreamParser()
        events = parser.parse('event: message_start\ndata: {"type":"message_start"}\n\n')
        assert events == [SSEEvent("message_start", '{"type":"message_start"}')]
        assert parser.buffered == 0

    def test_two_events_in_one_chunk(self):
        parser = SSEStreamParser()
        events = parser.parse("event: a\ndata: 1\n\nevent: b\ndata: 2\n\n")
        assert [e.event_name for e in events] == ["a", "b"]
        assert [e.data for e in events] == ["1", "2"]

    def test_partial_event_is_buffered_until_completed(self):
        parser = SSEStreamParser()
        assert parser.parse("event: content_block_delta\ndata: {\"delta\"") == []
        assert parser.buffered > 0
        events = parser.parse(': {"text": "Hi"}}\n\n')
        assert len(events) == 1
        assert parser.extract_text_delta(events[0]) == "Hi"
        assert parser.buffered == 0

    def test_lone_delimiter_yields_nothing(self):
        assert SSEStreamParser().parse("\n\n") == []

    def test_comment_and_id_lines_ignored(self):
        parser = SSEStreamParser()
        events = parser.parse(": keepalive\nid: 7\nretry: 100\nevent: ping\n\n")
        assert events == [SSEEvent("ping", None)]

    def test_comment_only_block_dropped(self):
        assert SSEStreamParser().parse(": just a comment\n\n") == []

    def test_data_only_event(self):
        events = SSEStreamParser().parse("data: hello\n\n")
        assert events == [SSEEvent(None, "hello")]

    def test_multiple_data_lines_joined_with_newline(self):
        events = SSEStreamParser().parse("event: x\ndata: one\ndata: two\n\n")
        assert events[0].data == "one\ntwo"

    def test_values_are_trimmed(self):
        events = SSEStreamParser().parse("event:   spaced  \ndata:   value  \n\n")
        assert events[0] == SSEEvent("spaced", "value")

    def test_reset_discards_partial_block(self):
        parser = SSEStreamParser()
        parser.parse("event: half")
        parser.reset()
        assert parser.buffered == 0
        assert parser.parse("\n\n") == []

    def test_chunk_boundaries_do_not_change_result(self):
        stream = (
            _block("message_start", {"type": "message_start"})
            + _block("content_block_delta", {"delta": {"type": "text_delta", "text": "Hel"}})
            + _block("content_block_delta", {"delta": {"type": "text_delta", "text": "lo"}})
            + _block("message_stop", {"type": "message_stop"})
        )
        whole = SSEStreamParser().parse(stream)

        for size in (1, 2, 3, 7, 16):
            parser = SSEStreamParser()
            pieces = [stream[i:i + size] for i in range(0, len(stream), size)]
            events = [e for piece in pieces for e in parser.parse(piece)]
            assert events == whole, f"chunk size {size}"


# ─────────────────────────────────────────────────────────────────────────────
# Extractors
# ─────────────────────────────────────────────────────────────────────────────

class TestExtractors:
    def test_text_delta(self):
        event = SSEEvent("content_block_delta", '{"delta": {"type": "text_delta", "text": "Hi"}}')
        assert SSEStreamParser.extract_text_delta(event) == "Hi"

    def test_text_delta_wrong_event_name(self):
        event = SSEEvent("message_delta", '{"delta": {"text": "Hi"}}')
        assert SSEStreamParser.extract_text_delta(event) is None

    @pytest.mark.parametrize("data", [
        None,
        "not json",
        "[1, 2]",
        '{"delta": "flat"}',
        '{"delta": {"text": 5}}',
        '{"other": {}}',
    ])
    def test_text_delta_malformed_payload(self, data):
        assert SSEStreamParser.extract_text_delta(SSEEvent("content_block_delta", data)) is None

    def test_error_message(self):
        event = SSEEvent("error", '{"type":"error","error":{"type":"overloaded_error","message":"Overloaded"}}')
        assert SSEStreamParser.extract_error(event) == "Overloaded"

    def test_error_requires_error_event(self):
        event = SSEEvent("content_block_delta", '{"error": {"message": "nope"}}')
        assert SSEStreamParser.extract_error(event) is None

    def test_error_without_message(self):
        assert SSEStreamParser.extract_error(SSEEvent("error", '{"error": {}}')) is None
        assert SSEStreamParser.extract_error(SSEEvent("error", "garbage")) is None

    def test_terminal(self):
        assert SSEStreamParser.is_terminal(SSEEvent("message_stop", None))
        assert not SSEStreamParser.is_terminal(SSEEvent("message_delta", "{}"))
        assert not SSEStreamParser.is_terminal(SSEEvent(None, "message_stop"))
