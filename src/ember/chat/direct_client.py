"""
chat/direct_client.py — Chat straight to the Anthropic Messages API

Streaming POST over httpx. The response body is Server-Sent Events, fed
through SSEStreamParser:

  content_block_delta  → yield delta.text
  error                → StreamingError(error.message)
  message_stop         → end of stream
  anything else        → ignored

A body that ends without message_stop also ends the stream cleanly.

System turns are lifted out of the message list into the top-level
`system` field (the first one wins), as the Messages API requires.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Optional

import httpx

from ember.chat.base import StreamingChatClient
from ember.config.settings import ChatConfig
from ember.exceptions import (
    MissingCredentialError,
    ServerResponseError,
    StreamingError,
    TransportError,
)
from ember.models.domain import ChatMessage, Role
from ember.observability.logger import get_logger
from ember.sse.parser import SSEStreamParser
from ember.storage.secrets import ANTHROPIC_API_KEY, SecretStore

log = get_logger(__name__)

UNKNOWN_SERVER_ERROR = "Unknown server error"


def build_request_body(messages: list[ChatMessage], model: str, max_tokens: int) -> dict[str, Any]:
    system: Optional[str] = None
    api_messages: list[dict[str, str]] = []
    for msg in messages:
        if msg.role is Role.SYSTEM:
            if system is None:
                system = msg.content
            continue
        api_messages.append(msg.to_wire())

    body: dict[str, Any] = {
        "model": model,
        "max_tokens": max_tokens,
        "messages": api_messages,
        "stream": True,
    }
    if system is not None:
        body["system"] = system
    return body


async def read_error_body(response: httpx.Response, limit: int) -> str:
    """Read at most `limit` characters of an error response body."""
    body = ""
    async for text in response.aiter_text():
        body += text
        if len(body) >= limit:
            break
    body = body[:limit].strip()
    return body or UNKNOWN_SERVER_ERROR


class DirectChatClient(StreamingChatClient):
    provider_name = "Claude"

    def __init__(
        self,
        secrets: SecretStore,
        config: Optional[ChatConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config or ChatConfig()
        super().__init__(self._config.model)
        self._secrets = secrets
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def is_available(self) -> bool:
        key = self._secrets.get(ANTHROPIC_API_KEY)
        return bool(key and key.strip())

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.request_timeout_seconds, connect=10.0)
            )
        return self._client

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": self._config.anthropic_version,
            "content-type": "application/json",
        }

    async def _stream_tokens(self, messages: list[ChatMessage], model: str) -> AsyncIterator[str]:
        api_key = self._secrets.get(ANTHROPIC_API_KEY)
        if not api_key or not api_key.strip():
            raise MissingCredentialError()

        body = build_request_body(messages, model, self._config.max_tokens)
        parser = SSEStreamParser()
        log.debug("chat.direct.request", model=model, turns=len(body["messages"]))

        try:
            async with self._http().stream(
                "POST", self._config.api_url, headers=self._headers(api_key), json=body
            ) as response:
                if not response.is_success:
                    detail = await read_error_body(response, self._config.max_error_body_chars)
                    log.warning("chat.direct.server_error", status_code=response.status_code)
                    raise ServerResponseError(response.status_code, detail)

                async for text in response.aiter_text():
                    for event in parser.parse(text):
                        error = parser.extract_error(event)
                        if error is not None:
                            raise StreamingError(error)
                        delta = parser.extract_text_delta(event)
                        if delta is not None:
                            yield delta
                        if parser.is_terminal(event):
                            log.debug("chat.direct.done", model=model)
                            return
                    if parser.buffered > self._config.max_sse_buffer_chars:
                        raise StreamingError(
                            f"SSE event exceeded {self._config.max_sse_buffer_chars} characters"
                        )
        except httpx.HTTPError as exc:
            log.warning("chat.direct.transport_error", error=str(exc), error_type=type(exc).__name__)
            raise TransportError(str(exc) or type(exc).__name__, underlying=exc) from exc

    async def aclose(self) -> None:
        await super().aclose()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
