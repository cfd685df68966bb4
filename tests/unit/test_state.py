"""
tests/unit/test_state.py — GatewayState event application
"""

from datetime import datetime, timedelta, timezone

import pytest

from ember.config.settings import Settings
from ember.gateway.protocol import (
    BriefingReceived,
    Connected,
    DeviceTokenConfirmed,
    Disconnected,
    InboxMessages,
    InboxUpdate,
    MemoryCreated,
    MemoryDeleted,
    MemoryList,
    MemoryUpdated,
    ReadConfirmed,
)
from ember.models.domain import Briefing, InboxMessage, Memory
from ember.state import GatewayState
from ember.storage import BriefingFileStore, JsonFileStore

_T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


class InMemoryStore:
    def __init__(self, items=None):
        self.items = list(items or [])
        self.saves = 0

    async def load(self):
        return list(self.items)

    async def save(self, items):
        self.saves += 1
        self.items = list(items)


class FakeSession:
    def __init__(self):
        self.read = []
        self.deleted = []

    async def mark_as_read(self, message_id):
        self.read.append(message_id)

    async def delete_memory(self, memory_id):
        self.deleted.append(memory_id)


def msg(mid: str, urgency: str = "low", t: int = 0) -> InboxMessage:
    return InboxMessage(
        id=f"{mid}-{t}",
        platform="slack",
        sender_name="Ari",
        sender_identifier="U1",
        content=f"{mid}@{t}",
        timestamp=_T0 + timedelta(minutes=t),
        triage={"urgency": urgency, "reasoning": ""},
        original_message_id=mid,
    )


def mem(mid: str, minutes: int = 0, content: str = "x") -> Memory:
    when = _T0 + timedelta(minutes=minutes)
    return Memory(
        id=mid, category="fact", content=content, source="conversation",
        created_at=when, updated_at=when,
    )


@pytest.fixture
def state():
    return GatewayState(InMemoryStore(), InMemoryStore(), InMemoryStore())


# ─────────────────────────────────────────────────────────────────────────────
# Inbox
# ─────────────────────────────────────────────────────────────────────────────

class TestInboxEvents:
    @pytest.mark.asyncio
    async def test_connection_flag(self, state):
        await state.apply(Connected())
        assert state.connected
        await state.apply(Disconnected("gone"))
        assert not state.connected

    @pytest.mark.asyncio
    async def test_snapshot_is_reduced_and_persisted(self, state):
        await state.apply(InboxMessages((msg("a", "urgent", 10), msg("b", "low", 20), msg("a", "urgent", 15))))
        assert [m.original_message_id for m in state.inbox] == ["a", "b"]
        assert state.inbox[0].content == "a@15"
        assert state._inbox_store.items == state.inbox

    @pytest.mark.asyncio
    async def test_update_and_read_confirmed(self, state):
        await state.apply(InboxMessages((msg("a", "low", 1),)))
        await state.apply(InboxUpdate(msg("b", "urgent", 2)))
        assert [m.original_message_id for m in state.inbox] == ["b", "a"]
        assert state.unread_urgent_count == 1

        await state.apply(ReadConfirmed("b"))
        assert state.inbox[0].is_read
        assert state.unread_urgent_count == 0

    @pytest.mark.asyncio
    async def test_mark_message_read_is_local_first(self, state):
        session = FakeSession()
        await state.apply(InboxMessages((msg("a"),)))
        await state.mark_message_read("a", session)
        assert state.inbox[0].is_read
        assert session.read == ["a"]


# ─────────────────────────────────────────────────────────────────────────────
# Memory / briefing / push
# ─────────────────────────────────────────────────────────────────────────────

class TestMemoryEvents:
    @pytest.mark.asyncio
    async def test_list_sorted_newest_first(self, state):
        await state.apply(MemoryList((mem("old", 1), mem("new", 5))))
        assert [m.id for m in state.memories] == ["new", "old"]

    @pytest.mark.asyncio
    async def test_created_updated_deleted(self, state):
        await state.apply(MemoryList((mem("m1"),)))
        await state.apply(MemoryCreated(mem("m2")))
        assert [m.id for m in state.memories] == ["m2", "m1"]

        await state.apply(MemoryUpdated(mem("m1", content="edited")))
        assert [m.content for m in state.memories] == ["x", "edited"]

        await state.apply(MemoryUpdated(mem("m3")))
        assert [m.id for m in state.memories] == ["m3", "m2", "m1"]

        await state.apply(MemoryDeleted("m2"))
        assert [m.id for m in state.memories] == ["m3", "m1"]
        assert state._memory_store.items == state.memories

    @pytest.mark.asyncio
    async def test_optimistic_delete(self, state):
        session = FakeSession()
        await state.apply(MemoryList((mem("m1"), mem("m2"))))
        await state.optimistic_delete_memory("m1", session)
        assert [m.id for m in state.memories] == ["m2"]
        assert session.deleted == ["m1"]
        await state.apply(MemoryDeleted("m1"))
        assert [m.id for m in state.memories] == ["m2"]


class TestBriefingAndPush:
    @pytest.mark.asyncio
    async def test_briefing_prepended(self, state):
        first = Briefing(id="b1", title="Mon", summary="", date=_T0)
        second = Briefing(id="b2", title="Tue", summary="", date=_T0 + timedelta(days=1))
        await state.apply(BriefingReceived(first))
        await state.apply(BriefingReceived(second))
        assert state.latest_briefing is second
        assert state._briefing_store.saves == 2

    @pytest.mark.asyncio
    async def test_device_token_confirmed(self, state):
        assert not state.device_token_confirmed
        await state.apply(DeviceTokenConfirmed())
        assert state.device_token_confirmed


# ─────────────────────────────────────────────────────────────────────────────
# Cache
# ─────────────────────────────────────────────────────────────────────────────

class TestCache:
    @pytest.mark.asyncio
    async def test_load_cached_fills_empty_lists(self):
        older = Briefing(id="b1", title="", summary="", date=_T0)
        newer = Briefing(id="b2", title="", summary="", date=_T0 + timedelta(days=1))
        state = GatewayState(
            InMemoryStore([msg("a")]),
            InMemoryStore([mem("m1")]),
            InMemoryStore([older, newer]),
        )
        await state.load_cached()
        assert [m.original_message_id for m in state.inbox] == ["a"]
        assert [m.id for m in state.memories] == ["m1"]
        assert [b.id for b in state.briefings] == ["b2", "b1"]

    @pytest.mark.asyncio
    async def test_load_cached_does_not_clobber_live_data(self):
        state = GatewayState(InMemoryStore([msg("cached")]), InMemoryStore(), InMemoryStore())
        await state.apply(InboxMessages((msg("live"),)))
        await state.load_cached()
        assert [m.original_message_id for m in state.inbox] == ["live"]

    @pytest.mark.asyncio
    async def test_from_settings_uses_data_dir(self, tmp_path):
        settings = Settings(storage={"data_dir": str(tmp_path)})
        state = GatewayState.from_settings(settings)
        assert isinstance(state._inbox_store, JsonFileStore)
        assert isinstance(state._briefing_store, BriefingFileStore)

        await state.apply(MemoryCreated(mem("m1")))
        assert (tmp_path / "memories.json").exists()

        reloaded = GatewayState.from_settings(settings)
        await reloaded.load_cached()
        assert [m.id for m in reloaded.memories] == ["m1"]
