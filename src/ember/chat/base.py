"""
chat/base.py — Abstract streaming chat client

Both chat transports (gateway WebSocket, direct HTTPS SSE) subclass
StreamingChatClient and implement _stream_tokens(). The outward contract is
shared:

    stream = client.send_message("hi", history, model)
    async for token in stream:
        ...

send_message() returns a ChatStream: lazy, finite, single-consumption and
not restartable. The stream itself is the cancellation handle
(stream.cancel()). cancel_current_request() is kept for callers that only
hold the client; it cancels the most recent stream that has not finished.

Error taxonomy on the stream:
    MissingCredentialError   no usable API key
    InvalidEndpointError     bad gateway URL
    TransportError           network failure (the I/O error is __cause__)
    ServerResponseError      non-2xx HTTP status (status code + body)
    StreamingError           the server sent an explicit error unit
    ChatCancelledError       cancelled by the caller
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator, Iterable, Optional

from ember.exceptions import ChatCancelledError
from ember.models.domain import ChatMessage
from ember.streams import EventStream

ChatStream = EventStream[str]


def build_messages(content: str, history: Iterable[ChatMessage]) -> list[ChatMessage]:
    """History in order, with `content` appended as the final user turn."""
    return [*history, ChatMessage.user(content)]


class StreamingChatClient(ABC):
    """Drives one request → token-stream exchange per send_message() call."""

    provider_name: str = "unknown"

    def __init__(self, default_model: str) -> None:
        self.default_model = default_model
        self._current: Optional[ChatStream] = None

    def send_message(
        self,
        content: str,
        history: Iterable[ChatMessage] = (),
        model: Optional[str] = None,
    ) -> ChatStream:
        messages = build_messages(content, history)
        chosen = model or self.default_model
        stream: ChatStream = EventStream(
            lambda: self._stream_tokens(messages, chosen),
            cancel_error=ChatCancelledError,
            name=f"chat.{self.provider_key}",
            on_close=self._release,
        )
        self._current = stream
        return stream

    def cancel_current_request(self) -> None:
        stream = self._current
        if stream is not None and not stream.done:
            stream.cancel()

    def _release(self, stream: ChatStream) -> None:
        # Only the stream occupying the slot may clear it.
        if self._current is stream:
            self._current = None

    @property
    def provider_key(self) -> str:
        return type(self).__name__.lower()

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """True when the client has what it needs to attempt a request."""
        ...

    @abstractmethod
    def _stream_tokens(self, messages: list[ChatMessage], model: str) -> AsyncIterator[str]:
        """Async generator yielding text deltas for one exchange."""
        ...

    async def aclose(self) -> None:
        """Release transport resources held by the client."""
        self.cancel_current_request()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} provider={self.provider_name!r}>"
