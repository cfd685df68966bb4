"""
models/domain.py — Ember Domain Models

Structures carried inside gateway frames (inbox messages, memories,
briefings), the chat turn type shared by both chat transports, and the
saved conversations built from those turns.

Field names on the wire are camelCase; Python attributes are snake_case.
Every model accepts either form on input and serializes with the wire
aliases (`model_dump(by_alias=True)`). Dates are ISO-8601 and must carry
a UTC offset; a naive timestamp fails validation.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, AwareDatetime, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PREVIEW_LENGTH = 120


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class MessagePlatform(str, Enum):
    IMESSAGE = "iMessage"
    SLACK = "slack"
    TEAMS = "teams"


class UrgencyLevel(str, Enum):
    """Gateway-assigned urgency, most urgent first."""
    URGENT = "urgent"
    IMPORTANT = "important"
    INFORMATIONAL = "informational"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _URGENCY_RANK[self]


_URGENCY_RANK = {
    UrgencyLevel.URGENT: 0,
    UrgencyLevel.IMPORTANT: 1,
    UrgencyLevel.INFORMATIONAL: 2,
    UrgencyLevel.LOW: 3,
}


class MemoryCategory(str, Enum):
    PREFERENCE = "preference"
    FACT = "fact"
    CORRECTION = "correction"
    CONTEXT = "context"


class MemorySource(str, Enum):
    CONVERSATION = "conversation"
    MANUAL = "manual"
    INFERRED = "inferred"


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


# ─────────────────────────────────────────────────────────────────────────────
# Inbox
# ─────────────────────────────────────────────────────────────────────────────


class TriageResult(_WireModel):
    urgency: UrgencyLevel
    reasoning: str


class InboxMessage(_WireModel):
    """A triaged message from iMessage, Slack or Teams pushed by the gateway."""
    id: str
    platform: MessagePlatform
    sender_name: str
    sender_identifier: str
    content: str
    timestamp: AwareDatetime
    conversation_context: str = ""
    triage: TriageResult
    is_read: bool = False
    original_message_id: str = Field(
        validation_alias=AliasChoices(
            "originalMessageID", "originalMessageId", "original_message_id"
        ),
        serialization_alias="originalMessageID",
    )

    @property
    def urgency(self) -> UrgencyLevel:
        return self.triage.urgency

    @property
    def preview(self) -> str:
        if len(self.content) <= PREVIEW_LENGTH:
            return self.content
        return self.content[:PREVIEW_LENGTH] + "..."


# ─────────────────────────────────────────────────────────────────────────────
# Memory
# ─────────────────────────────────────────────────────────────────────────────


class Memory(_WireModel):
    """A fact, preference, correction or context the gateway AI remembers.
    The id is gateway-assigned and opaque to the client."""
    id: str
    category: MemoryCategory
    content: str
    source: MemorySource
    created_at: AwareDatetime
    updated_at: AwareDatetime


# ─────────────────────────────────────────────────────────────────────────────
# Briefing
# ─────────────────────────────────────────────────────────────────────────────


class Briefing(_WireModel):
    id: str
    title: str
    summary: str
    date: AwareDatetime
    action_items: list[str] = Field(default_factory=list)
    source_messages: list[str] = Field(default_factory=list)
    message_count: int = 0
    urgent_count: int = 0


# ─────────────────────────────────────────────────────────────────────────────
# Chat
# ─────────────────────────────────────────────────────────────────────────────


class ChatMessage(BaseModel):
    """One conversation turn, as sent to either chat transport."""
    role: Role
    content: str

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "ChatMessage":
        return cls(role=Role.ASSISTANT, content=content)

    def to_wire(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


# ─────────────────────────────────────────────────────────────────────────────
# Conversation
# ─────────────────────────────────────────────────────────────────────────────

DEFAULT_CONVERSATION_TITLE = "New Conversation"
TITLE_LENGTH = 40
CONVERSATION_PREVIEW_LENGTH = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Conversation(_WireModel):
    """A saved chat thread. Its turns are the history for the next request."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str = DEFAULT_CONVERSATION_TITLE
    messages: list[ChatMessage] = Field(default_factory=list)
    created_at: AwareDatetime = Field(default_factory=_utcnow)
    updated_at: AwareDatetime = Field(default_factory=_utcnow)

    @property
    def last_message(self) -> Optional[ChatMessage]:
        return self.messages[-1] if self.messages else None

    @property
    def preview(self) -> str:
        last = self.last_message
        if last is None:
            return "Empty conversation"
        return last.content[:CONVERSATION_PREVIEW_LENGTH]

    def record_exchange(self, question: str, reply: str, when: Optional[datetime] = None) -> None:
        """
        Append the user turn and, when non-empty, the assistant reply.

        The first question names an untitled conversation (truncated to
        TITLE_LENGTH characters with a trailing "...").
        """
        question = question.strip()
        self.messages.append(ChatMessage.user(question))
        if reply:
            self.messages.append(ChatMessage.assistant(reply))
        if self.title == DEFAULT_CONVERSATION_TITLE and question:
            title = question[:TITLE_LENGTH]
            self.title = title + "..." if len(title) < len(question) else title
        self.updated_at = when or _utcnow()
