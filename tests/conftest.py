"""Shared fixtures: an in-memory WebSocket standing in for a DevTools target."""

import asyncio
import json
from typing import Any, Callable

import pytest

from antigravity_relay.cdp.connection import CdpConnection
from antigravity_relay.config import Settings


class FakeWebSocket:
    """Queue-backed socket. ``feed`` pushes inbound frames, ``sent`` records outbound ones.

    An optional ``responder`` is called with every decoded outbound message and
    may return a reply dict (or list of dicts) to feed back.
    """

    def __init__(self, responder: Callable[[dict], Any] | None = None) -> None:
        self.sent: list[dict] = []
        self.responder = responder
        self.closed = False
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, data: str) -> None:
        message = json.loads(data)
        self.sent.append(message)
        if self.responder is not None:
            reply = self.responder(message)
            for item in reply if isinstance(reply, list) else [reply]:
                if item is not None:
                    self.feed(item)

    def feed(self, payload: dict | str) -> None:
        self._inbox.put_nowait(payload if isinstance(payload, str) else json.dumps(payload))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item

    @property
    def methods(self) -> list[str]:
        return [m["method"] for m in self.sent]


async def _drain(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def drain():
    """Let the receive loop process whatever has been fed."""
    return _drain


@pytest.fixture
def make_ws():
    return FakeWebSocket


@pytest.fixture
def ws():
    return FakeWebSocket()


@pytest.fixture
async def connection(ws):
    conn = CdpConnection(ws, "ws://127.0.0.1:9222/devtools/page/1", call_timeout=1.0)
    conn.start()
    yield conn
    await conn.close()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        telegram_bot_token="test-token",
        telegram_allowed_chat_ids=[111],
        poll_interval=0,
        initial_delay=0,
        approval_grace=0,
        clear_interval=0,
        cdp_settle_delay=0,
    )
