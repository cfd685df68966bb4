"""
gateway/connection.py — One duplex WebSocket connection to the gateway

Owns the transport and nothing about the protocol spoken over it.

State machine:
    IDLE → CONNECTING → OPEN → (DRAINING) → CLOSED

A CLOSED connection never reopens. Any send/receive failure, a failed
keepalive ping, or close() moves it to CLOSED; the owner builds a new
GatewayConnection to reconnect.

Concurrency:
  - connect() may be called defensively before every send; concurrent
    callers share a single underlying attempt.
  - Writes (send, ping) are serialized by a write lock. State transitions
    that span an await are guarded by a state lock.
  - Cancelling a pending receive() does not close the connection.

The transport is produced by an injected connector so tests can run
against an in-memory fake. The default connector uses the `websockets`
client with its own pings disabled; keepalive is driven from here.
"""

from __future__ import annotations

import asyncio
import itertools
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

import websockets
from websockets.exceptions import WebSocketException

from ember.config.settings import GatewayConfig, is_websocket_url
from ember.exceptions import (
    ConnectionClosedError,
    ConnectionDroppedError,
    InvalidEndpointError,
    NotOpenError,
    TransportError,
)
from ember.observability.logger import get_logger

log = get_logger(__name__)

Frame = Union[str, bytes]

# I/O failures raised by the transport on open, read, write or ping.
_IO_ERRORS = (WebSocketException, OSError, asyncio.TimeoutError)


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    DRAINING = "draining"
    CLOSED = "closed"


class Transport(Protocol):
    """The subset of a websockets client connection this module relies on."""

    async def send(self, message: Frame) -> None: ...

    async def recv(self) -> Frame: ...

    async def ping(self) -> Awaitable[Any]: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[Transport]]


def websocket_connector(
    max_size: int = 2**20,
    open_timeout: float = 10.0,
) -> Connector:
    """Build the default connector backed by `websockets.connect`."""

    async def _connect(url: str) -> Transport:
        return await websockets.connect(
            url,
            max_size=max_size,
            open_timeout=open_timeout,
            ping_interval=None,
        )

    return _connect


class GatewayConnection:
    """
    Manages exactly one logical connection to `url`.

    Usage:
        conn = GatewayConnection("wss://gateway.example")
        await conn.connect()
        conn.start_keep_alive()
        await conn.send('{"type":"inbox_subscribe"}')
        frame = await conn.receive()
        await conn.close()
    """

    def __init__(
        self,
        url: str,
        *,
        connector: Optional[Connector] = None,
        keepalive_interval: float = 30.0,
        pong_timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._connector = connector or websocket_connector()
        self._keepalive_interval = keepalive_interval
        self._pong_timeout = pong_timeout

        self._state = ConnectionState.IDLE
        self._transport: Optional[Transport] = None
        self._connect_task: Optional[asyncio.Task[None]] = None
        self._keepalive_task: Optional[asyncio.Task[None]] = None
        self._close_requested = False

        self._state_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._request_ids = itertools.count(1)
        self._log = log.bind(gateway_url=url)

    @classmethod
    def from_config(
        cls, config: GatewayConfig, connector: Optional[Connector] = None
    ) -> "GatewayConnection":
        return cls(
            config.url,
            connector=connector
            or websocket_connector(
                max_size=config.max_frame_bytes,
                open_timeout=config.open_timeout_seconds,
            ),
            keepalive_interval=config.keepalive_interval_seconds,
            pong_timeout=config.pong_timeout_seconds,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Properties
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def is_closed(self) -> bool:
        return self._state is ConnectionState.CLOSED

    def next_request_id(self) -> int:
        """Monotonically increasing id for outbound chat requests on this connection."""
        return next(self._request_ids)

    # ─────────────────────────────────────────────────────────────────────────
    # Connect
    # ─────────────────────────────────────────────────────────────────────────

    async def connect(self) -> None:
        """
        Open the transport. No-op when already OPEN.

        Raises:
            InvalidEndpointError:  the URL is not ws:// or wss:// with a host.
            ConnectionClosedError: this connection has already been closed.
            TransportError:        the transport could not be opened.
        """
        async with self._state_lock:
            if self._state is ConnectionState.OPEN:
                return
            if self._state is ConnectionState.CLOSED:
                raise ConnectionClosedError()
            if self._connect_task is None:
                if not is_websocket_url(self._url):
                    raise InvalidEndpointError(self._url)
                self._state = ConnectionState.CONNECTING
                self._connect_task = asyncio.get_running_loop().create_task(
                    self._open(), name="ember.gateway.connect"
                )
                self._connect_task.add_done_callback(_consume_exception)
            task = self._connect_task

        # Shielded so one cancelled caller does not abort the shared attempt.
        await asyncio.shield(task)

    async def _open(self) -> None:
        self._log.debug("gateway.connection.opening")
        try:
            transport = await self._connector(self._url)
        except _IO_ERRORS as exc:
            self._fail_connect()
            self._log.warning("gateway.connection.failed", error=str(exc))
            raise TransportError(
                f"Could not connect to {self._url}: {exc}", underlying=exc
            ) from exc
        except BaseException:
            self._fail_connect()
            raise

        async with self._state_lock:
            self._connect_task = None
            if self._state is not ConnectionState.CONNECTING:
                # close() ran while the handshake was in flight.
                await _close_quietly(transport)
                raise ConnectionClosedError()
            self._transport = transport
            self._state = ConnectionState.OPEN
        self._log.info("gateway.connection.opened")

    def _fail_connect(self) -> None:
        self._state = ConnectionState.CLOSED
        self._connect_task = None

    # ─────────────────────────────────────────────────────────────────────────
    # Send / receive
    # ─────────────────────────────────────────────────────────────────────────

    async def send(self, frame: Frame) -> None:
        """
        Write one frame. Fails with NotOpenError, without any I/O, unless OPEN.
        A write failure closes the connection and raises TransportError.
        """
        async with self._write_lock:
            transport = self._transport
            if self._state is not ConnectionState.OPEN or transport is None:
                raise NotOpenError()
            try:
                await transport.send(frame)
            except _IO_ERRORS as exc:
                await self._abort("send_failed", exc)
                raise TransportError(f"Failed to send frame: {exc}", underlying=exc) from exc

    async def receive(self) -> Frame:
        """
        Suspend until one frame arrives.

        A drop closes the connection and raises ConnectionDroppedError. If the
        connection was closed locally while waiting, raises ConnectionClosedError.
        """
        transport = self._transport
        if self._state is not ConnectionState.OPEN or transport is None:
            raise NotOpenError()
        try:
            return await transport.recv()
        except _IO_ERRORS as exc:
            if self._close_requested:
                raise ConnectionClosedError() from exc
            await self._abort("receive_failed", exc)
            raise ConnectionDroppedError(
                f"Connection to gateway dropped: {exc}", underlying=exc
            ) from exc

    # ─────────────────────────────────────────────────────────────────────────
    # Keepalive
    # ─────────────────────────────────────────────────────────────────────────

    def start_keep_alive(self, interval: Optional[float] = None) -> None:
        """Start the periodic ping task. Idempotent while one is running."""
        if self._keepalive_task is not None and not self._keepalive_task.done():
            return
        if self._state is not ConnectionState.OPEN:
            raise NotOpenError("Cannot start keepalive on a connection that is not open")
        period = interval if interval is not None else self._keepalive_interval
        self._keepalive_task = asyncio.get_running_loop().create_task(
            self._keep_alive(period), name="ember.gateway.keepalive"
        )

    async def _keep_alive(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            transport = self._transport
            if self._state is not ConnectionState.OPEN or transport is None:
                return
            try:
                async with self._write_lock:
                    pong_waiter = await transport.ping()
                await asyncio.wait_for(pong_waiter, timeout=self._pong_timeout)
            except _IO_ERRORS as exc:
                self._log.warning("gateway.keepalive.failed", error=str(exc) or type(exc).__name__)
                await self._abort("keepalive_failed", exc)
                return
            self._log.debug("gateway.keepalive.pong")

    # ─────────────────────────────────────────────────────────────────────────
    # Teardown
    # ─────────────────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Close and release the transport. Idempotent, valid from any state."""
        if self._state is ConnectionState.CLOSED:
            return
        self._close_requested = True
        if self._state is ConnectionState.OPEN:
            self._state = ConnectionState.DRAINING
        await self._abort("closed_by_client")

    async def _abort(self, reason: str, exc: Optional[BaseException] = None) -> None:
        """Move to CLOSED, stop keepalive, and close the transport."""
        if self._state is ConnectionState.CLOSED:
            return
        self._state = ConnectionState.CLOSED
        transport, self._transport = self._transport, None

        keepalive = self._keepalive_task
        if keepalive is not None and keepalive is not asyncio.current_task():
            keepalive.cancel()
        self._keepalive_task = None

        if exc is None:
            self._log.info("gateway.connection.closed", reason=reason)
        else:
            self._log.warning("gateway.connection.closed", reason=reason, error=str(exc))

        if transport is not None:
            # Closing the transport also wakes any receive() still pending.
            await _close_quietly(transport)


async def _close_quietly(transport: Transport) -> None:
    try:
        await transport.close()
    except _IO_ERRORS as exc:
        log.debug("gateway.connection.close_error", error=str(exc))


def _consume_exception(task: asyncio.Task) -> None:
    # The shared connect task may outlive every awaiting caller.
    if not task.cancelled():
        task.exception()
