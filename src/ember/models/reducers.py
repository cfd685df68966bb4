"""
models/reducers.py — Pure inbox list reductions

Used by the state owner when applying gateway events. None of these mutate
their inputs.
"""

from __future__ import annotations

from typing import Iterable

from ember.models.domain import InboxMessage


def sort_inbox(messages: Iterable[InboxMessage]) -> list[InboxMessage]:
    """Urgency ascending (urgent first), then newest first."""
    by_time = sorted(messages, key=lambda m: m.timestamp, reverse=True)
    # sorted() is stable, so the timestamp order survives within each urgency.
    return sorted(by_time, key=lambda m: m.urgency.rank)


def reduce_inbox(messages: Iterable[InboxMessage]) -> list[InboxMessage]:
    """
    Collapse a full inbox snapshot to one entry per original_message_id.

    When the snapshot carries the same id more than once, the later entry
    wins: it reflects the gateway's most recent view of that message.
    """
    latest: dict[str, InboxMessage] = {}
    for message in messages:
        latest.pop(message.original_message_id, None)
        latest[message.original_message_id] = message
    return sort_inbox(latest.values())


def apply_inbox_update(
    messages: list[InboxMessage], update: InboxMessage
) -> list[InboxMessage]:
    """Replace the entry with the same original_message_id in place, or insert and re-sort."""
    for idx, existing in enumerate(messages):
        if existing.original_message_id == update.original_message_id:
            result = list(messages)
            result[idx] = update
            return result
    return sort_inbox([*messages, update])


def mark_read(messages: list[InboxMessage], original_message_id: str) -> list[InboxMessage]:
    return [
        m.model_copy(update={"is_read": True})
        if m.original_message_id == original_message_id
        else m
        for m in messages
    ]
