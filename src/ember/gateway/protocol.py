"""
gateway/protocol.py — Gateway WebSocket Frame Protocol

Typed schema for every client↔gateway frame. A frame is one flat JSON object
with a `type` discriminator; outbound commands and inbound events use
disjoint `type` vocabularies.

  encode(command)      -> JSON text, never fails for a constructed command
  decode(raw)          -> GatewayEvent or None, never raises
  decode_chat_reply(raw) -> ChatChunk | ChatDone | ChatError or None

A frame that is not valid JSON, is not an object, carries an unknown or
control `type`, or embeds a nested payload that fails validation is dropped
(decoded to None). One bad frame must not end a long-lived subscription.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, ClassVar, Optional, Union

from pydantic import TypeAdapter, ValidationError

from ember.config.settings import is_hhmm
from ember.models.domain import Briefing, ChatMessage, InboxMessage, Memory

DEFAULT_ERROR_MESSAGE = "Unknown gateway error"


# ─────────────────────────────────────────────────────────────────────────────
# Frame types
# ─────────────────────────────────────────────────────────────────────────────

class CommandType(str, Enum):
    """Client → Gateway."""

    REGISTER         = "register"
    INBOX_SUBSCRIBE  = "inbox_subscribe"
    INBOX_REFRESH    = "inbox_refresh"
    INBOX_READ       = "inbox_read"
    INBOX_CONFIG     = "inbox_config"
    DEVICE_TOKEN     = "device_token"
    MEMORY_SYNC      = "memory_sync"
    MEMORY_DELETE    = "memory_delete"
    BRIEFING_CONFIG  = "briefing_config"
    CHAT             = "chat"


class FrameType(str, Enum):
    """Gateway → Client."""

    INBOX_MESSAGES          = "inbox_messages"
    INBOX_UPDATE            = "inbox_update"
    INBOX_READ_CONFIRMED    = "inbox_read_confirmed"
    MEMORY_LIST             = "memory_list"
    MEMORY_CREATED          = "memory_created"
    MEMORY_UPDATED          = "memory_updated"
    MEMORY_DELETED          = "memory_deleted"
    BRIEFING                = "briefing"
    DEVICE_TOKEN_CONFIRMED  = "device_token_confirmed"
    ERROR                   = "error"

    # Control frames, informational only
    PONG                    = "pong"
    REGISTERED              = "registered"
    ACK                     = "ack"

    # Chat replies
    CHUNK                   = "chunk"
    DONE                    = "done"


CONTROL_FRAMES = frozenset({FrameType.PONG.value, FrameType.REGISTERED.value, FrameType.ACK.value})


# ─────────────────────────────────────────────────────────────────────────────
# Outbound commands
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class _Command:
    type: ClassVar[CommandType]

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type.value}

    def to_json(self) -> str:
        return json.dumps(self.to_payload())


@dataclass(frozen=True)
class RegisterCommand(_Command):
    client: str
    version: str
    capabilities: tuple[str, ...]
    type: ClassVar[CommandType] = CommandType.REGISTER

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "client": self.client,
            "version": self.version,
            "capabilities": list(self.capabilities),
        }


@dataclass(frozen=True)
class InboxSubscribeCommand(_Command):
    type: ClassVar[CommandType] = CommandType.INBOX_SUBSCRIBE


@dataclass(frozen=True)
class InboxRefreshCommand(_Command):
    type: ClassVar[CommandType] = CommandType.INBOX_REFRESH


@dataclass(frozen=True)
class InboxReadCommand(_Command):
    message_id: str
    type: ClassVar[CommandType] = CommandType.INBOX_READ

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type.value, "messageId": self.message_id}


@dataclass(frozen=True)
class InboxConfigCommand(_Command):
    vips: tuple[str, ...] = ()
    topics: tuple[str, ...] = ()
    type: ClassVar[CommandType] = CommandType.INBOX_CONFIG

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type.value, "vips": list(self.vips), "topics": list(self.topics)}


@dataclass(frozen=True)
class DeviceTokenCommand(_Command):
    token: str
    platform: str = "ios"
    type: ClassVar[CommandType] = CommandType.DEVICE_TOKEN

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type.value, "token": self.token, "platform": self.platform}


@dataclass(frozen=True)
class MemorySyncCommand(_Command):
    type: ClassVar[CommandType] = CommandType.MEMORY_SYNC


@dataclass(frozen=True)
class MemoryDeleteCommand(_Command):
    memory_id: str
    type: ClassVar[CommandType] = CommandType.MEMORY_DELETE

    def to_payload(self) -> dict[str, Any]:
        return {"type": self.type.value, "memoryId": self.memory_id}


@dataclass(frozen=True)
class BriefingConfigCommand(_Command):
    enabled: bool
    time: str
    timezone: str
    sources: tuple[str, ...] = ()
    type: ClassVar[CommandType] = CommandType.BRIEFING_CONFIG

    def __post_init__(self) -> None:
        if not is_hhmm(self.time):
            raise ValueError(f"briefing time must be HH:mm (24h), got {self.time!r}")

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "enabled": self.enabled,
            "time": self.time,
            "timezone": self.timezone,
            "sources": list(self.sources),
        }


@dataclass(frozen=True)
class ChatCommand(_Command):
    request_id: int
    messages: tuple[ChatMessage, ...]
    model: str
    stream: bool = True
    type: ClassVar[CommandType] = CommandType.CHAT

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "requestId": self.request_id,
            "messages": [m.to_wire() for m in self.messages],
            "model": self.model,
            "stream": self.stream,
        }


OutboundCommand = Union[
    RegisterCommand,
    InboxSubscribeCommand,
    InboxRefreshCommand,
    InboxReadCommand,
    InboxConfigCommand,
    DeviceTokenCommand,
    MemorySyncCommand,
    MemoryDeleteCommand,
    BriefingConfigCommand,
    ChatCommand,
]


def encode(command: _Command) -> str:
    """Serialize a command to one JSON text frame."""
    return command.to_json()


# ─────────────────────────────────────────────────────────────────────────────
# Inbound events
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Connected:
    pass


@dataclass(frozen=True)
class Disconnected:
    reason: str = ""


@dataclass(frozen=True)
class InboxMessages:
    messages: tuple[InboxMessage, ...]


@dataclass(frozen=True)
class InboxUpdate:
    message: InboxMessage


@dataclass(frozen=True)
class ReadConfirmed:
    message_id: str


@dataclass(frozen=True)
class MemoryList:
    memories: tuple[Memory, ...]


@dataclass(frozen=True)
class MemoryCreated:
    memory: Memory


@dataclass(frozen=True)
class MemoryUpdated:
    memory: Memory


@dataclass(frozen=True)
class MemoryDeleted:
    memory_id: str


@dataclass(frozen=True)
class BriefingReceived:
    briefing: Briefing


@dataclass(frozen=True)
class DeviceTokenConfirmed:
    pass


@dataclass(frozen=True)
class GatewayErrorEvent:
    message: str = DEFAULT_ERROR_MESSAGE


GatewayEvent = Union[
    Connected,
    Disconnected,
    InboxMessages,
    InboxUpdate,
    ReadConfirmed,
    MemoryList,
    MemoryCreated,
    MemoryUpdated,
    MemoryDeleted,
    BriefingReceived,
    DeviceTokenConfirmed,
    GatewayErrorEvent,
]


# ─────────────────────────────────────────────────────────────────────────────
# Decoding
# ─────────────────────────────────────────────────────────────────────────────

_inbox_list = TypeAdapter(list[InboxMessage])
_memory_list = TypeAdapter(list[Memory])


class _Drop(Exception):
    """Internal signal: the frame is well-formed JSON but unusable."""


def _require_str(frame: dict[str, Any], key: str) -> str:
    value = frame.get(key)
    if not isinstance(value, str):
        raise _Drop(key)
    return value


def _error_message(frame: dict[str, Any]) -> str:
    message = frame.get("message")
    return message if isinstance(message, str) else DEFAULT_ERROR_MESSAGE


_DECODERS: dict[str, Callable[[dict[str, Any]], GatewayEvent]] = {
    FrameType.INBOX_MESSAGES.value: lambda f: InboxMessages(
        tuple(_inbox_list.validate_python(f.get("messages")))
    ),
    FrameType.INBOX_UPDATE.value: lambda f: InboxUpdate(
        InboxMessage.model_validate(f.get("message"))
    ),
    FrameType.INBOX_READ_CONFIRMED.value: lambda f: ReadConfirmed(_require_str(f, "messageId")),
    FrameType.MEMORY_LIST.value: lambda f: MemoryList(
        tuple(_memory_list.validate_python(f.get("memories")))
    ),
    FrameType.MEMORY_CREATED.value: lambda f: MemoryCreated(Memory.model_validate(f.get("memory"))),
    FrameType.MEMORY_UPDATED.value: lambda f: MemoryUpdated(Memory.model_validate(f.get("memory"))),
    FrameType.MEMORY_DELETED.value: lambda f: MemoryDeleted(_require_str(f, "memoryId")),
    FrameType.BRIEFING.value: lambda f: BriefingReceived(Briefing.model_validate(f.get("briefing"))),
    FrameType.DEVICE_TOKEN_CONFIRMED.value: lambda f: DeviceTokenConfirmed(),
    FrameType.ERROR.value: lambda f: GatewayErrorEvent(_error_message(f)),
}


def parse_frame(raw: Union[str, bytes]) -> Optional[dict[str, Any]]:
    """Parse raw frame text/bytes into a JSON object with a string `type`, or None."""
    try:
        obj = json.loads(raw)
    except (ValueError, TypeError):
        return None
    if not isinstance(obj, dict) or not isinstance(obj.get("type"), str):
        return None
    return obj


def decode(raw: Union[str, bytes]) -> Optional[GatewayEvent]:
    """Decode one inbound gateway frame. Returns None for anything unusable."""
    frame = parse_frame(raw)
    if frame is None:
        return None
    decoder = _DECODERS.get(frame["type"])
    if decoder is None:
        return None
    try:
        return decoder(frame)
    except (ValidationError, _Drop):
        return None


# ─────────────────────────────────────────────────────────────────────────────
# Chat replies
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ChatChunk:
    content: str
    request_id: Optional[int] = None


@dataclass(frozen=True)
class ChatDone:
    request_id: Optional[int] = None


@dataclass(frozen=True)
class ChatError:
    message: str = DEFAULT_ERROR_MESSAGE
    request_id: Optional[int] = None


ChatReply = Union[ChatChunk, ChatDone, ChatError]


def _request_id(frame: dict[str, Any]) -> Optional[int]:
    value = frame.get("requestId")
    # bool is an int subclass; a boolean is not a request id.
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def decode_chat_reply(raw: Union[str, bytes]) -> Optional[ChatReply]:
    """Decode a chat reply frame. Control, unknown and content-less frames give None."""
    frame = parse_frame(raw)
    if frame is None:
        return None
    kind = frame["type"]
    rid = _request_id(frame)
    if kind == FrameType.CHUNK.value:
        content = frame.get("content")
        return ChatChunk(content, rid) if isinstance(content, str) else None
    if kind == FrameType.DONE.value:
        return ChatDone(rid)
    if kind == FrameType.ERROR.value:
        return ChatError(_error_message(frame), rid)
    return None
