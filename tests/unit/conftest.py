"""
tests/unit/conftest.py — In-memory transport fakes

FakeTransport stands in for a websockets client connection. Frames queued
with push() come back from recv(); close() wakes any pending recv() with a
connection error, the way a real socket does.
"""
import asyncio
import json
from typing import Optional

import pytest


class FakeTransport:
    def __init__(self):
        self.sent: list = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.close_calls = 0
        self.pings = 0
        self.answer_pings = True
        self.send_error: Optional[BaseException] = None

    # ── Transport protocol ────────────────────────────────────────────────────

    async def send(self, message):
        if self.send_error is not None:
            raise self.send_error
        if self.closed:
            raise ConnectionResetError("transport closed")
        self.sent.append(message)

    async def recv(self):
        item = await self.incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def ping(self):
        self.pings += 1
        waiter = asyncio.get_running_loop().create_future()
        if self.answer_pings:
            waiter.set_result(0.0)
        return waiter

    async def close(self):
        self.close_calls += 1
        if not self.closed:
            self.closed = True
            self.incoming.put_nowait(ConnectionResetError("transport closed"))

    # ── Test helpers ──────────────────────────────────────────────────────────

    def push(self, frame):
        """Queue an inbound frame. Dicts are JSON-encoded."""
        if isinstance(frame, dict):
            frame = json.dumps(frame)
        self.incoming.put_nowait(frame)

    def drop(self, error: Optional[BaseException] = None):
        """Simulate the peer going away."""
        self.incoming.put_nowait(error or ConnectionResetError("peer went away"))

    def sent_frames(self) -> list[dict]:
        return [json.loads(m) for m in self.sent]

    def sent_types(self) -> list[str]:
        return [f["type"] for f in self.sent_frames()]


class FakeConnector:
    """
    Connector that hands out FakeTransports. Pre-seed `transports` to script
    frames before the code under test opens the connection.
    """

    def __init__(self, *transports: FakeTransport):
        self.pending = list(transports)
        self.opened: list[FakeTransport] = []
        self.calls = 0
        self.error: Optional[BaseException] = None
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, url):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        transport = self.pending.pop(0) if self.pending else FakeTransport()
        self.opened.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.opened[-1]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def connector(transport):
    return FakeConnector(transport)


@pytest.fixture
def new_transport():
    """Factory for extra transports, e.g. the one a reconnect will open."""
    return FakeTransport
