"""
chat/gateway_client.py — Chat over the gateway WebSocket

Uses its own GatewayConnection (never the inbox session's), registered with
the chat capability set. One `chat` frame per request, then `chunk` frames
until `done` or `error`.

Replies that echo a requestId belonging to another request are skipped.
Replies without a requestId are attributed to the exchange in progress, and
exchanges on one connection read it one at a time. An exchange that ends
without `done` or `error` (cancelled, dropped) closes its connection; the
next request opens and registers a new one.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, Iterable, Optional

from ember.chat.base import StreamingChatClient
from ember.config.settings import GatewayConfig
from ember.exceptions import StreamingError
from ember.gateway.connection import Connector, GatewayConnection
from ember.gateway.protocol import (
    ChatChunk,
    ChatCommand,
    ChatDone,
    ChatError,
    RegisterCommand,
    decode_chat_reply,
    encode,
)
from ember.models.domain import ChatMessage
from ember.observability.logger import get_logger

log = get_logger(__name__)


class GatewayChatClient(StreamingChatClient):
    """
    Gateway-backed chat. Concurrent send_message() calls are serialized: a
    second request waits until the first reaches `done` or `error` (or is
    cancelled). Untagged replies belong to whichever exchange is reading
    the connection.
    """

    provider_name = "Ember Gateway"

    def __init__(
        self,
        connection_factory: Callable[[], GatewayConnection],
        *,
        default_model: str,
        client_id: str = "ember-python",
        client_version: str = "1.0",
        capabilities: Iterable[str] = ("streaming",),
    ) -> None:
        super().__init__(default_model)
        self._factory = connection_factory
        self._client_id = client_id
        self._client_version = client_version
        self._capabilities = tuple(capabilities)

        self._connection: Optional[GatewayConnection] = None
        self._registered = False
        self._ready_lock = asyncio.Lock()
        self._exchange_lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: GatewayConfig,
        default_model: str,
        connector: Optional[Connector] = None,
    ) -> "GatewayChatClient":
        return cls(
            lambda: GatewayConnection.from_config(config, connector),
            default_model=default_model,
            client_id=config.client_id,
            client_version=config.client_version,
            capabilities=config.chat_capabilities,
        )

    @property
    def is_available(self) -> bool:
        conn = self._connection
        return conn is not None and conn.is_open and self._registered

    @property
    def connection(self) -> Optional[GatewayConnection]:
        return self._connection

    async def _ensure_ready(self) -> GatewayConnection:
        async with self._ready_lock:
            conn = self._connection
            if conn is None or conn.is_closed:
                conn = self._factory()
                self._connection = conn
                self._registered = False

            await conn.connect()
            conn.start_keep_alive()
            if not self._registered:
                await conn.send(
                    encode(
                        RegisterCommand(
                            client=self._client_id,
                            version=self._client_version,
                            capabilities=self._capabilities,
                        )
                    )
                )
                self._registered = True
                log.info("chat.gateway.registered", capabilities=list(self._capabilities))
            return conn

    async def _stream_tokens(self, messages: list[ChatMessage], model: str) -> AsyncIterator[str]:
        async with self._exchange_lock:
            conn = await self._ensure_ready()
            request_id = conn.next_request_id()
            await conn.send(
                encode(ChatCommand(request_id=request_id, messages=tuple(messages), model=model))
            )
            log.debug("chat.gateway.sent", request_id=request_id, model=model, turns=len(messages))

            settled = False
            try:
                while True:
                    reply = decode_chat_reply(await conn.receive())
                    if reply is None:
                        continue
                    if reply.request_id is not None and reply.request_id != request_id:
                        log.debug(
                            "chat.gateway.foreign_reply",
                            request_id=request_id,
                            reply_request_id=reply.request_id,
                        )
                        continue
                    if isinstance(reply, ChatChunk):
                        yield reply.content
                    elif isinstance(reply, ChatDone):
                        settled = True
                        log.debug("chat.gateway.done", request_id=request_id)
                        return
                    elif isinstance(reply, ChatError):
                        settled = True
                        log.warning("chat.gateway.error", request_id=request_id, message=reply.message)
                        raise StreamingError(reply.message)
            finally:
                if not settled:
                    await self._discard(conn, request_id)

    async def _discard(self, conn: GatewayConnection, request_id: int) -> None:
        """Drop a connection whose exchange ended before `done` or `error`.

        Its remaining replies may carry no requestId, so the next exchange
        starts on a fresh connection instead of reading them.
        """
        if self._connection is conn:
            self._connection = None
            self._registered = False
        log.info("chat.gateway.connection_discarded", request_id=request_id)
        await conn.close()

    async def aclose(self) -> None:
        await super().aclose()
        conn, self._connection = self._connection, None
        self._registered = False
        if conn is not None:
            await conn.close()
