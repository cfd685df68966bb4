"""
gateway/session.py — Gateway protocol session

The protocol state machine above one GatewayConnection: registration
handshake, the inbox subscription loop, and fire-and-forget commands.

State machine:
    UNREGISTERED → REGISTERED → SUBSCRIBED → UNSUBSCRIBING → CLOSED

  - A connection drop from any state but CLOSED returns to UNREGISTERED and
    emits a Disconnected event. The session never reconnects on its own;
    the owner calls subscribe() again when it wants to.
  - Within one subscribe(): register is written before inbox_subscribe,
    which is written before the receive loop consumes any frame.
  - Only one subscription is live at a time. subscribe() tears the previous
    one down before the new one touches the connection.
  - Cancelling a subscription stream stops receiving but leaves the
    connection open and registered. unsubscribe() is what closes it.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import AsyncIterator, Callable, Iterable, Optional

from ember.config.settings import DEFAULT_CAPABILITIES, GatewayConfig, Settings
from ember.exceptions import GatewayServerError, SubscriptionCancelledError, TransportError
from ember.gateway.connection import Connector, GatewayConnection
from ember.gateway.protocol import (
    BriefingConfigCommand,
    Connected,
    DeviceTokenCommand,
    Disconnected,
    GatewayErrorEvent,
    GatewayEvent,
    InboxConfigCommand,
    InboxReadCommand,
    InboxRefreshCommand,
    InboxSubscribeCommand,
    MemoryDeleteCommand,
    MemorySyncCommand,
    OutboundCommand,
    RegisterCommand,
    decode,
    encode,
)
from ember.observability.logger import bind_connection, get_logger
from ember.streams import EventStream

log = get_logger(__name__)


class SessionState(str, Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBING = "unsubscribing"
    CLOSED = "closed"


ConnectionFactory = Callable[[], GatewayConnection]


class GatewaySession:
    """
    Owns exactly one GatewayConnection at a time. A CLOSED connection is
    replaced with a fresh one from `connection_factory` on next use.
    """

    def __init__(
        self,
        connection_factory: ConnectionFactory,
        *,
        client_id: str = "ember-python",
        client_version: str = "1.0",
        capabilities: Iterable[str] = DEFAULT_CAPABILITIES,
    ) -> None:
        self._factory = connection_factory
        self._client_id = client_id
        self._client_version = client_version
        self._capabilities = tuple(capabilities)

        self._connection: Optional[GatewayConnection] = None
        self._state = SessionState.UNREGISTERED
        self._stream: Optional[EventStream[GatewayEvent]] = None
        self._ready_lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls, config: GatewayConfig, connector: Optional[Connector] = None
    ) -> "GatewaySession":
        return cls(
            lambda: GatewayConnection.from_config(config, connector),
            client_id=config.client_id,
            client_version=config.client_version,
            capabilities=config.capabilities,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Properties
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def connection(self) -> Optional[GatewayConnection]:
        return self._connection

    @property
    def is_subscribed(self) -> bool:
        return self._state is SessionState.SUBSCRIBED

    # ─────────────────────────────────────────────────────────────────────────
    # Connection + registration
    # ─────────────────────────────────────────────────────────────────────────

    async def _ensure_ready(self) -> GatewayConnection:
        """Open (or replace) the connection, start keepalive, register once."""
        async with self._ready_lock:
            conn = self._connection
            if conn is None or conn.is_closed:
                conn = self._factory()
                self._connection = conn
                self._state = SessionState.UNREGISTERED

            await conn.connect()
            conn.start_keep_alive()

            if self._state in (SessionState.UNREGISTERED, SessionState.CLOSED):
                await self._write(
                    conn,
                    RegisterCommand(
                        client=self._client_id,
                        version=self._client_version,
                        capabilities=self._capabilities,
                    ),
                )
                self._state = SessionState.REGISTERED
                log.info(
                    "gateway.session.registered",
                    client=self._client_id,
                    capabilities=list(self._capabilities),
                )
            return conn

    async def _write(self, conn: GatewayConnection, command: OutboundCommand) -> None:
        try:
            await conn.send(encode(command))
        except TransportError:
            self._state = SessionState.UNREGISTERED
            raise
        log.debug("gateway.command.sent", type=command.type.value)

    # ─────────────────────────────────────────────────────────────────────────
    # Subscription
    # ─────────────────────────────────────────────────────────────────────────

    def subscribe(self) -> EventStream[GatewayEvent]:
        """
        Start a new inbox subscription, replacing any active one.

        The stream yields Connected first, then one event per decoded frame.
        It ends with:
          GatewayServerError        the gateway sent an `error` frame
          ConnectionDroppedError    after a Disconnected event, on a drop
          SubscriptionCancelledError when cancelled by the consumer
        """
        prior = self._stream
        if prior is not None:
            prior.cancel()

        stream: EventStream[GatewayEvent] = EventStream(
            lambda: self._subscription(prior),
            cancel_error=SubscriptionCancelledError,
            name="gateway.subscription",
        )
        self._stream = stream
        return stream

    async def _subscription(
        self, prior: Optional[EventStream[GatewayEvent]]
    ) -> AsyncIterator[GatewayEvent]:
        if prior is not None:
            await prior.wait_closed()

        conn = await self._ensure_ready()
        bind_connection(conn.url, self._client_id)
        await self._write(conn, InboxSubscribeCommand())
        self._state = SessionState.SUBSCRIBED
        log.info("gateway.subscription.started")
        yield Connected()

        try:
            while True:
                try:
                    raw = await conn.receive()
                except TransportError as exc:
                    if self._state is not SessionState.UNSUBSCRIBING:
                        self._state = SessionState.UNREGISTERED
                    log.warning("gateway.subscription.disconnected", error=str(exc))
                    yield Disconnected(reason=str(exc))
                    raise

                event = decode(raw)
                if event is None:
                    log.debug("gateway.frame.dropped", size=len(raw))
                    continue
                if isinstance(event, GatewayErrorEvent):
                    log.warning("gateway.subscription.error_frame", message=event.message)
                    raise GatewayServerError(event.message)
                yield event
        finally:
            if self._state is SessionState.SUBSCRIBED:
                self._state = SessionState.REGISTERED
            log.info("gateway.subscription.ended", state=self._state.value)

    async def unsubscribe(self) -> None:
        """Stop the receive loop (if any) and close the connection. Idempotent."""
        stream, self._stream = self._stream, None
        conn, self._connection = self._connection, None
        if stream is None and conn is None:
            self._state = SessionState.CLOSED
            return

        self._state = SessionState.UNSUBSCRIBING
        if stream is not None:
            await stream.aclose()
        if conn is not None:
            await conn.close()
        self._state = SessionState.CLOSED
        log.info("gateway.session.closed")

    # ─────────────────────────────────────────────────────────────────────────
    # Commands (fire-and-forget)
    # ─────────────────────────────────────────────────────────────────────────

    async def send(self, command: OutboundCommand) -> None:
        """Ensure the connection is open and registered, then write `command`."""
        conn = await self._ensure_ready()
        await self._write(conn, command)

    async def request_refresh(self) -> None:
        await self.send(InboxRefreshCommand())

    async def mark_as_read(self, message_id: str) -> None:
        await self.send(InboxReadCommand(message_id=message_id))

    async def send_config(self, vips: Iterable[str], topics: Iterable[str]) -> None:
        await self.send(InboxConfigCommand(vips=tuple(vips), topics=tuple(topics)))

    async def send_device_token(self, token: str, platform: str = "ios") -> None:
        await self.send(DeviceTokenCommand(token=token, platform=platform))

    async def request_memory_sync(self) -> None:
        await self.send(MemorySyncCommand())

    async def delete_memory(self, memory_id: str) -> None:
        await self.send(MemoryDeleteCommand(memory_id=memory_id))

    async def send_briefing_config(
        self, enabled: bool, time: str, timezone: str, sources: Iterable[str]
    ) -> None:
        await self.send(
            BriefingConfigCommand(
                enabled=enabled, time=time, timezone=timezone, sources=tuple(sources)
            )
        )

    async def push_config(self, settings: Settings) -> None:
        """
        Start-up config push, in order: inbox config, memory sync (if memory
        is enabled), briefing config (if briefings are enabled), device token
        (if one is known).
        """
        await self.send_config(settings.inbox.vips, settings.inbox.topics)
        if settings.memory.enabled:
            await self.request_memory_sync()
        if settings.briefing.enabled:
            await self.send_briefing_config(
                enabled=True,
                time=settings.briefing.time,
                timezone=settings.briefing.timezone,
                sources=settings.briefing.sources,
            )
        if settings.push.device_token:
            await self.send_device_token(settings.push.device_token, settings.push.platform)
