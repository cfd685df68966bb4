"""
chat/ — Streaming chat clients

    client = build_chat_client(settings)
    async for token in client.send_message("What's urgent today?"):
        print(token, end="")
"""

from __future__ import annotations

from typing import Optional

import httpx

from ember.chat.base import ChatStream, StreamingChatClient, build_messages
from ember.chat.direct_client import DirectChatClient
from ember.chat.gateway_client import GatewayChatClient
from ember.config.settings import Settings
from ember.gateway.connection import Connector
from ember.storage.secrets import EnvSecretStore, SecretStore


def build_chat_client(
    settings: Settings,
    secrets: Optional[SecretStore] = None,
    *,
    connector: Optional[Connector] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> StreamingChatClient:
    """Build the chat client selected by `chat.provider`."""
    provider = settings.chat.provider
    if provider == "gateway":
        return GatewayChatClient.from_config(
            settings.gateway, default_model=settings.chat.model, connector=connector
        )
    if provider == "claude":
        return DirectChatClient(
            secrets or EnvSecretStore.from_settings(settings),
            settings.chat,
            http_client=http_client,
        )
    raise ValueError(f"Unknown chat provider: {provider!r}")


__all__ = [
    "ChatStream",
    "DirectChatClient",
    "GatewayChatClient",
    "StreamingChatClient",
    "build_chat_client",
    "build_messages",
]
