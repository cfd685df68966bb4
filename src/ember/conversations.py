"""
conversations.py — Saved chat conversations

ConversationManager owns the conversation list and writes it through a
Store after every change. The list is kept most recently updated first.

    manager = ConversationManager.from_settings(settings)
    await manager.load()
    conversation = await manager.get_or_create("work")
    history = conversation.messages
    ...
    conversation.record_exchange(question, reply)
    await manager.save(conversation)
"""

from __future__ import annotations

from typing import Optional

from ember.config.settings import Settings
from ember.models.domain import Conversation
from ember.observability.logger import get_logger
from ember.storage.json_store import JsonFileStore, Store

log = get_logger(__name__)


class ConversationManager:
    def __init__(self, store: Store[Conversation]) -> None:
        self._store = store
        self.conversations: list[Conversation] = []

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConversationManager":
        return cls(JsonFileStore(settings.data_dir / "conversations.json", Conversation))

    async def load(self) -> list[Conversation]:
        self.conversations = _newest_first(await self._store.load())
        log.debug("conversations.loaded", count=len(self.conversations))
        return self.conversations

    def get(self, conversation_id: str) -> Optional[Conversation]:
        return next((c for c in self.conversations if c.id == conversation_id), None)

    async def create(self, conversation_id: Optional[str] = None) -> Conversation:
        conversation = Conversation(id=conversation_id) if conversation_id else Conversation()
        self.conversations.insert(0, conversation)
        await self._persist()
        log.info("conversations.created", conversation_id=conversation.id)
        return conversation

    async def get_or_create(self, conversation_id: str) -> Conversation:
        return self.get(conversation_id) or await self.create(conversation_id)

    async def save(self, conversation: Conversation) -> None:
        """Replace the stored copy (or insert a new one) and persist."""
        rest = [c for c in self.conversations if c.id != conversation.id]
        self.conversations = _newest_first([conversation, *rest])
        await self._persist()

    async def delete(self, conversation_id: str) -> bool:
        before = len(self.conversations)
        self.conversations = [c for c in self.conversations if c.id != conversation_id]
        if len(self.conversations) == before:
            return False
        await self._persist()
        log.info("conversations.deleted", conversation_id=conversation_id)
        return True

    async def _persist(self) -> None:
        await self._store.save(self.conversations)


def _newest_first(conversations: list[Conversation]) -> list[Conversation]:
    return sorted(conversations, key=lambda c: c.updated_at, reverse=True)
