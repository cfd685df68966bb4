"""
main.py — Ember Entry Point

Usage:
    ember chat "What's urgent today?"       # stream a reply (Ctrl+C cancels)
    ember inbox                             # live inbox until Ctrl+C
    ember refresh                           # ask the gateway to re-poll sources
    ember mark-read <message-id>
    ember memory-sync
    ember memory-delete <memory-id>
    ember chat --conversation work "and tomorrow?"  # continue a saved thread
    ember conversations
    ember conversation-delete <conversation-id>
    ember --log-level DEBUG inbox
    ember --config path/to/config.yaml chat "hi"
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional

from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from ember.chat import build_chat_client
from ember.config.settings import ConfigError, Settings, load_settings
from ember.conversations import ConversationManager
from ember.exceptions import ChatCancelledError, EmberError, SubscriptionCancelledError
from ember.gateway.session import GatewaySession
from ember.interfaces.console import conversation_table, render_event
from ember.models.domain import ChatMessage, Conversation
from ember.observability.logger import get_logger, setup_logging
from ember.state import GatewayState

console = Console()
err_console = Console(stderr=True)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ember",
        description="Ember — gateway inbox, memory and briefings, with streaming chat",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $EMBER_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--provider",
        choices=["gateway", "claude"],
        default=None,
        help="Override chat.provider for this run",
    )
    parser.add_argument("--model", default=None, help="Override chat.model for this run")

    sub = parser.add_subparsers(dest="command", required=True)
    chat = sub.add_parser("chat", help="Ask a question and stream the reply")
    chat.add_argument("question", nargs="+")
    chat.add_argument("--system", default=None, help="Optional system prompt")
    chat.add_argument(
        "--conversation",
        default=None,
        metavar="ID",
        help="Continue (or start) a saved conversation and record this exchange in it",
    )
    sub.add_parser("inbox", help="Subscribe and print gateway events until Ctrl+C")
    sub.add_parser("refresh", help="Ask the gateway to re-poll all sources")
    mark = sub.add_parser("mark-read", help="Mark an inbox message as read")
    mark.add_argument("message_id")
    sub.add_parser("memory-sync", help="Request a full memory list")
    delete = sub.add_parser("memory-delete", help="Delete a memory")
    delete.add_argument("memory_id")
    sub.add_parser("conversations", help="List saved conversations")
    forget = sub.add_parser("conversation-delete", help="Delete a saved conversation")
    forget.add_argument("conversation_id")
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace) -> Settings:
    """
    Load config, apply CLI overrides, validate fully, and set up logging.
    Exits with code 1 (after printing a clear message) on any config problem.
    """
    try:
        settings = load_settings(args.config)
        if args.provider:
            settings.chat.provider = args.provider
        if args.model:
            settings.chat.model = args.model
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        err_console.print(
            f"\n[red]Config validation failed:[/]\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            markup=True,
            highlight=False,
        )
        sys.exit(1)
    except (OSError, ValueError) as exc:
        err_console.print(f"\n[red]Failed to load config:[/] {type(exc).__name__}: {escape(str(exc))}\n")
        sys.exit(1)

    try:
        # Only chat needs the direct API key.
        settings.validate_all(require_chat_credentials=args.command == "chat")
    except ConfigError as exc:
        err_console.print(str(exc), markup=False, highlight=False)
        sys.exit(1)

    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )
    return settings


# ─────────────────────────────────────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────────────────────────────────────

async def _run_chat(
    settings: Settings,
    question: str,
    system: Optional[str],
    conversation_id: Optional[str] = None,
) -> int:
    log = get_logger("ember.main")
    history = [ChatMessage.system(system)] if system else []
    conversations: Optional[ConversationManager] = None
    conversation: Optional[Conversation] = None
    if conversation_id:
        conversations = ConversationManager.from_settings(settings)
        await conversations.load()
        conversation = await conversations.get_or_create(conversation_id)
        history.extend(conversation.messages)

    client = build_chat_client(settings)
    stream = client.send_message(question, history)
    log.info(
        "chat.started",
        provider=client.provider_name,
        model=client.default_model,
        conversation_id=conversation_id,
    )
    reply: list[str] = []
    try:
        async with stream:
            async for token in stream:
                reply.append(token)
                console.print(token, end="", markup=False, highlight=False, soft_wrap=True)
        console.print()
        return 0
    except ChatCancelledError:
        console.print("\n[dim]Cancelled.[/]")
        return 130
    finally:
        await client.aclose()
        # A partial reply is kept, as is the question when nothing came back.
        if conversations is not None and conversation is not None:
            conversation.record_exchange(question, "".join(reply))
            await conversations.save(conversation)


async def _run_conversations(settings: Settings, args: argparse.Namespace) -> int:
    conversations = ConversationManager.from_settings(settings)
    await conversations.load()
    if args.command == "conversation-delete":
        if not await conversations.delete(args.conversation_id):
            err_console.print(f"[red]No conversation {escape(args.conversation_id)}[/]")
            return 1
        console.print(f"[green]✓[/] deleted {escape(args.conversation_id)}")
        return 0
    console.print(conversation_table(conversations.conversations))
    return 0


async def _run_inbox(settings: Settings) -> int:
    log = get_logger("ember.main")
    session = GatewaySession.from_config(settings.gateway)
    state = GatewayState.from_settings(settings)
    await state.load_cached()

    stream = session.subscribe()
    pushed = False
    try:
        async with stream:
            async for event in stream:
                await state.apply(event)
                render_event(console, event, state.inbox)
                if not pushed:
                    pushed = True
                    await session.push_config(settings)
                    log.info("inbox.config_pushed")
    except SubscriptionCancelledError:
        pass
    finally:
        await session.unsubscribe()
    return 0


async def _run_command(settings: Settings, args: argparse.Namespace) -> int:
    session = GatewaySession.from_config(settings.gateway)
    state = GatewayState.from_settings(settings)
    try:
        if args.command == "refresh":
            await session.request_refresh()
        elif args.command == "mark-read":
            await state.load_cached()
            await state.mark_message_read(args.message_id, session)
        elif args.command == "memory-sync":
            await session.request_memory_sync()
        elif args.command == "memory-delete":
            await state.load_cached()
            await state.optimistic_delete_memory(args.memory_id, session)
    finally:
        await session.unsubscribe()
    console.print(f"[green]✓[/] {args.command} sent")
    return 0


async def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    settings = bootstrap(args)
    log = get_logger("ember.main")
    log.info("ember.starting", command=args.command, provider=settings.chat.provider)

    try:
        if args.command == "chat":
            return await _run_chat(settings, " ".join(args.question), args.system, args.conversation)
        if args.command in ("conversations", "conversation-delete"):
            return await _run_conversations(settings, args)
        if args.command == "inbox":
            return await _run_inbox(settings)
        return await _run_command(settings, args)
    except EmberError as exc:
        log.error("ember.failed", error=str(exc), error_type=type(exc).__name__)
        err_console.print(f"[red]{escape(exc.description)}[/]", highlight=False)
        return 1


def run() -> None:
    load_dotenv()
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        # asyncio.run cancels the main task, whose finally blocks close streams.
        err_console.print("[dim]Interrupted.[/]")
        sys.exit(130)


if __name__ == "__main__":
    run()
