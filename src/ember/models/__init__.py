from ember.models.domain import (
    Briefing,
    ChatMessage,
    Conversation,
    InboxMessage,
    Memory,
    MemoryCategory,
    MemorySource,
    MessagePlatform,
    Role,
    TriageResult,
    UrgencyLevel,
)
from ember.models.reducers import apply_inbox_update, mark_read, reduce_inbox, sort_inbox

__all__ = [
    "Briefing",
    "ChatMessage",
    "Conversation",
    "InboxMessage",
    "Memory",
    "MemoryCategory",
    "MemorySource",
    "MessagePlatform",
    "Role",
    "TriageResult",
    "UrgencyLevel",
    "apply_inbox_update",
    "mark_read",
    "reduce_inbox",
    "sort_inbox",
]
