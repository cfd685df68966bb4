"""
state.py — Client-side gateway state

GatewayState is the consumer of a GatewaySession's event stream. It applies
each event to the local inbox, memory and briefing lists and writes the
result through the persistence ports.

    state = GatewayState.from_settings(settings)
    await state.load_cached()
    async for event in session.subscribe():
        await state.apply(event)
"""

from __future__ import annotations

from typing import Optional

from ember.config.settings import Settings
from ember.gateway.protocol import (
    BriefingReceived,
    Connected,
    DeviceTokenConfirmed,
    Disconnected,
    GatewayEvent,
    InboxMessages,
    InboxUpdate,
    MemoryCreated,
    MemoryDeleted,
    MemoryList,
    MemoryUpdated,
    ReadConfirmed,
)
from ember.gateway.session import GatewaySession
from ember.models.domain import Briefing, InboxMessage, Memory, UrgencyLevel
from ember.models.reducers import apply_inbox_update, mark_read, reduce_inbox
from ember.observability.logger import get_logger
from ember.storage.json_store import BriefingFileStore, JsonFileStore, Store

log = get_logger(__name__)


class GatewayState:
    def __init__(
        self,
        inbox_store: Store[InboxMessage],
        memory_store: Store[Memory],
        briefing_store: Store[Briefing],
    ) -> None:
        self._inbox_store = inbox_store
        self._memory_store = memory_store
        self._briefing_store = briefing_store

        self.inbox: list[InboxMessage] = []
        self.memories: list[Memory] = []
        self.briefings: list[Briefing] = []
        self.connected = False
        self.device_token_confirmed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayState":
        data_dir = settings.data_dir
        return cls(
            JsonFileStore(data_dir / "inbox.json", InboxMessage),
            JsonFileStore(data_dir / "memories.json", Memory),
            BriefingFileStore(
                data_dir / "briefings.json",
                retention_days=settings.storage.briefing_retention_days,
            ),
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Derived views
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def unread_urgent_count(self) -> int:
        return sum(1 for m in self.inbox if m.urgency is UrgencyLevel.URGENT and not m.is_read)

    @property
    def latest_briefing(self) -> Optional[Briefing]:
        return self.briefings[0] if self.briefings else None

    # ─────────────────────────────────────────────────────────────────────────
    # Cache
    # ─────────────────────────────────────────────────────────────────────────

    async def load_cached(self) -> None:
        """Seed empty lists from the on-disk cache while the live stream warms up."""
        if not self.inbox:
            self.inbox = await self._inbox_store.load()
        if not self.memories:
            self.memories = await self._memory_store.load()
        if not self.briefings:
            cached = await self._briefing_store.load()
            self.briefings = sorted(cached, key=lambda b: b.date, reverse=True)
        log.debug(
            "state.cache_loaded",
            inbox=len(self.inbox),
            memories=len(self.memories),
            briefings=len(self.briefings),
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Event application
    # ─────────────────────────────────────────────────────────────────────────

    async def apply(self, event: GatewayEvent) -> None:
        if isinstance(event, Connected):
            self.connected = True
        elif isinstance(event, Disconnected):
            self.connected = False

        elif isinstance(event, InboxMessages):
            self.inbox = reduce_inbox(event.messages)
            await self._inbox_store.save(self.inbox)
        elif isinstance(event, InboxUpdate):
            self.inbox = apply_inbox_update(self.inbox, event.message)
            await self._inbox_store.save(self.inbox)
        elif isinstance(event, ReadConfirmed):
            self.inbox = mark_read(self.inbox, event.message_id)
            await self._inbox_store.save(self.inbox)

        elif isinstance(event, MemoryList):
            self.memories = sorted(event.memories, key=lambda m: m.updated_at, reverse=True)
            await self._memory_store.save(self.memories)
        elif isinstance(event, MemoryCreated):
            self.memories = [event.memory, *self.memories]
            await self._memory_store.save(self.memories)
        elif isinstance(event, MemoryUpdated):
            self.memories = _replace_or_prepend(self.memories, event.memory)
            await self._memory_store.save(self.memories)
        elif isinstance(event, MemoryDeleted):
            self.memories = [m for m in self.memories if m.id != event.memory_id]
            await self._memory_store.save(self.memories)

        elif isinstance(event, BriefingReceived):
            self.briefings = [event.briefing, *self.briefings]
            await self._briefing_store.save(self.briefings)

        elif isinstance(event, DeviceTokenConfirmed):
            self.device_token_confirmed = True

    # ─────────────────────────────────────────────────────────────────────────
    # Local actions mirrored to the gateway
    # ─────────────────────────────────────────────────────────────────────────

    async def mark_message_read(self, message_id: str, session: GatewaySession) -> None:
        """Mark read locally, then tell the gateway. Confirmation arrives as ReadConfirmed."""
        self.inbox = mark_read(self.inbox, message_id)
        await self._inbox_store.save(self.inbox)
        await session.mark_as_read(message_id)

    async def optimistic_delete_memory(self, memory_id: str, session: GatewaySession) -> None:
        """Remove locally before the gateway confirms with MemoryDeleted."""
        self.memories = [m for m in self.memories if m.id != memory_id]
        await self._memory_store.save(self.memories)
        await session.delete_memory(memory_id)


def _replace_or_prepend(memories: list[Memory], memory: Memory) -> list[Memory]:
    for idx, existing in enumerate(memories):
        if existing.id == memory.id:
            result = list(memories)
            result[idx] = memory
            return result
    return [memory, *memories]
