"""
interfaces/console.py — rich rendering of gateway events for the terminal
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

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
from ember.models.domain import Conversation, InboxMessage, Memory, UrgencyLevel

_URGENCY_STYLE = {
    UrgencyLevel.URGENT: "bold red",
    UrgencyLevel.IMPORTANT: "yellow",
    UrgencyLevel.INFORMATIONAL: "cyan",
    UrgencyLevel.LOW: "dim",
}


def inbox_table(messages: list[InboxMessage]) -> Table:
    table = Table(title="Inbox", show_lines=False, expand=True)
    table.add_column("Urgency", no_wrap=True)
    table.add_column("From", no_wrap=True)
    table.add_column("Via", no_wrap=True)
    table.add_column("Preview")
    table.add_column("ID", style="dim", no_wrap=True)
    for m in messages:
        style = _URGENCY_STYLE[m.urgency]
        sender = escape(m.sender_name) if m.is_read else f"[bold]{escape(m.sender_name)}[/]"
        table.add_row(
            f"[{style}]{m.urgency.value}[/]",
            sender,
            m.platform.value,
            escape(m.preview),
            escape(m.original_message_id),
        )
    return table


def memory_table(memories: list[Memory]) -> Table:
    table = Table(title="Memories", expand=True)
    table.add_column("Category", no_wrap=True)
    table.add_column("Content")
    table.add_column("Updated", no_wrap=True)
    table.add_column("ID", style="dim", no_wrap=True)
    for mem in memories:
        table.add_row(
            mem.category.value,
            escape(mem.content),
            mem.updated_at.strftime("%Y-%m-%d %H:%M"),
            escape(mem.id),
        )
    return table


def conversation_table(conversations: list[Conversation]) -> Table:
    table = Table(title="Conversations", expand=True)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title", no_wrap=True)
    table.add_column("Turns", justify="right", no_wrap=True)
    table.add_column("Updated", no_wrap=True)
    table.add_column("Last message")
    for c in conversations:
        table.add_row(
            escape(c.id),
            escape(c.title),
            str(len(c.messages)),
            c.updated_at.strftime("%Y-%m-%d %H:%M"),
            escape(c.preview),
        )
    return table


def render_event(console: Console, event: GatewayEvent, inbox: list[InboxMessage]) -> None:
    """Print one event. `inbox` is the already-reduced inbox after the event."""
    if isinstance(event, Connected):
        console.print("[green]● Connected to gateway[/]")
    elif isinstance(event, Disconnected):
        console.print(f"[red]● Disconnected[/] [dim]{escape(event.reason)}[/]")
    elif isinstance(event, InboxMessages):
        console.print(inbox_table(inbox))
    elif isinstance(event, InboxUpdate):
        m = event.message
        style = _URGENCY_STYLE[m.urgency]
        console.print(f"[{style}]▲ {m.urgency.value}[/] {escape(m.sender_name)}: {escape(m.preview)}")
    elif isinstance(event, ReadConfirmed):
        console.print(f"[dim]✓ read {escape(event.message_id)}[/]")
    elif isinstance(event, MemoryList):
        console.print(memory_table(list(event.memories)))
    elif isinstance(event, (MemoryCreated, MemoryUpdated)):
        verb = "created" if isinstance(event, MemoryCreated) else "updated"
        console.print(f"[magenta]◆ memory {verb}[/] {escape(event.memory.content)}")
    elif isinstance(event, MemoryDeleted):
        console.print(f"[dim]◆ memory deleted {escape(event.memory_id)}[/]")
    elif isinstance(event, BriefingReceived):
        b = event.briefing
        body = escape(b.summary)
        if b.action_items:
            body += "\n\n" + "\n".join(f"• {escape(item)}" for item in b.action_items)
        console.print(Panel(body, title=escape(b.title), subtitle=f"{b.message_count} messages, {b.urgent_count} urgent"))
    elif isinstance(event, DeviceTokenConfirmed):
        console.print("[dim]✓ push token registered[/]")
