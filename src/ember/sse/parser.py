"""
sse/parser.py — Incremental Server-Sent Events parser

Turns an arbitrarily chunked text stream into complete SSE events. One event
is the text between two consecutive blank-line delimiters ("\\n\\n"); the
trailing partial block stays buffered until the next parse() call completes it.

Only `event:` and `data:` lines are interpreted. `id:`, `retry:` and comment
lines (":...") are ignored. Malformed JSON inside `data` never raises; the
extractors simply return None and the caller treats the event as inert.

The parser never bounds its own buffer. Callers that read from an untrusted
stream check `buffered` against their own cap.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional

_DELIMITER = "\n\n"

TEXT_DELTA_EVENT = "content_block_delta"
ERROR_EVENT = "error"
STOP_EVENT = "message_stop"


@dataclass(frozen=True)
class SSEEvent:
    event_name: Optional[str] = None
    data: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.event_name is None and self.data is None


class SSEStreamParser:
    """Stateful, single-stream parser. Call reset() before reusing it."""

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def buffered(self) -> int:
        """Number of characters held in the pending partial block."""
        return len(self._buffer)

    def parse(self, chunk: str) -> list[SSEEvent]:
        self._buffer += chunk

        events: list[SSEEvent] = []
        while True:
            idx = self._buffer.find(_DELIMITER)
            if idx < 0:
                break
            raw = self._buffer[:idx]
            self._buffer = self._buffer[idx + len(_DELIMITER):]

            event = self._parse_block(raw)
            if not event.is_empty:
                events.append(event)
        return events

    def reset(self) -> None:
        self._buffer = ""

    # ── Extractors (pure, no parser state) ───────────────────────────────────

    @staticmethod
    def extract_text_delta(event: SSEEvent) -> Optional[str]:
        if event.event_name != TEXT_DELTA_EVENT:
            return None
        delta = _json_field(event.data, "delta")
        text = delta.get("text") if isinstance(delta, dict) else None
        return text if isinstance(text, str) else None

    @staticmethod
    def extract_error(event: SSEEvent) -> Optional[str]:
        if event.event_name != ERROR_EVENT:
            return None
        error = _json_field(event.data, "error")
        message = error.get("message") if isinstance(error, dict) else None
        return message if isinstance(message, str) else None

    @staticmethod
    def is_terminal(event: SSEEvent) -> bool:
        return event.event_name == STOP_EVENT

    # ── Internal ─────────────────────────────────────────────────────────────

    @staticmethod
    def _parse_block(raw: str) -> SSEEvent:
        event_name: Optional[str] = None
        data_lines: list[str] = []

        for line in raw.split("\n"):
            if line.startswith("event:"):
                event_name = line[len("event:"):].strip()
            elif line.startswith("data:"):
                data_lines.append(line[len("data:"):].strip())

        data = "\n".join(data_lines) if data_lines else None
        return SSEEvent(event_name=event_name, data=data)


def _json_field(data: Optional[str], key: str) -> Any:
    if data is None:
        return None
    try:
        obj = json.loads(data)
    except ValueError:
        return None
    return obj.get(key) if isinstance(obj, dict) else None
