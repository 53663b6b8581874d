"""CDP WebSocket connection with request/response correlation."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import websockets
import websockets.exceptions

from ..errors import CdpTimeoutError, ConnectError, ConnectionClosedError, RemoteError
from .contexts import ContextRegistry, ExecutionContext

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    """An in-flight call awaiting its response."""

    request_id: int
    method: str
    future: asyncio.Future[Any]


class CdpConnection:
    """A single WebSocket session to a debuggable target.

    Every call gets a fresh id and a future; the receive loop resolves the
    future when the matching response arrives. A pending entry is removed
    exactly once, by whichever of response, timeout or close comes first, so
    a duplicate response can never resolve a call twice.
    """

    CALL_TIMEOUT = 30.0
    SETTLE_DELAY = 1.0

    def __init__(
        self,
        ws: Any,
        url: str,
        on_close: Callable[[CdpConnection], None] | None = None,
        call_timeout: float | None = None,
    ) -> None:
        self._ws = ws
        self._url = url
        self._on_close = on_close
        self._call_timeout = call_timeout if call_timeout is not None else self.CALL_TIMEOUT
        self._next_id = 1
        self._pending: dict[int, PendingRequest] = {}
        self._contexts = ContextRegistry()
        self._closed = False
        self._recv_task: asyncio.Task[None] | None = None

    @classmethod
    async def open(
        cls,
        url: str,
        on_close: Callable[[CdpConnection], None] | None = None,
        call_timeout: float | None = None,
        settle_delay: float | None = None,
    ) -> CdpConnection:
        """Connect to *url*, run the runtime initialization sequence and return the connection."""
        try:
            ws = await websockets.connect(url, max_size=None, ping_interval=None)
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            raise ConnectError(f"Cannot open {url}: {e}") from e

        conn = cls(ws, url, on_close=on_close, call_timeout=call_timeout)
        conn.start()
        try:
            await conn.initialize(cls.SETTLE_DELAY if settle_delay is None else settle_delay)
        except Exception:
            await conn.close()
            raise
        return conn

    @property
    def url(self) -> str:
        return self._url

    @property
    def contexts(self) -> ContextRegistry:
        return self._contexts

    @property
    def is_open(self) -> bool:
        return not self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def start(self) -> None:
        """Start the background receive loop."""
        if self._recv_task is None:
            self._recv_task = asyncio.create_task(self._recv_loop())

    async def initialize(self, settle_delay: float) -> None:
        """Enable runtime notifications with a disable/enable reset, then let events settle."""
        await self.call("Runtime.enable")
        await self.call("Runtime.disable")
        await self.call("Runtime.enable")
        await asyncio.sleep(settle_delay)
        logger.info(f"CDP initialized with {len(self._contexts)} contexts ({self._url})")

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send a protocol command and wait for its result."""
        if self._closed:
            raise ConnectionClosedError(f"Connection to {self._url} is closed")

        request_id = self._next_id
        self._next_id += 1
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = PendingRequest(request_id, method, future)
        budget = self._call_timeout if timeout is None else timeout

        try:
            await self._ws.send(
                json.dumps({"id": request_id, "method": method, "params": params or {}})
            )
            return await asyncio.wait_for(future, timeout=budget)
        except asyncio.TimeoutError:
            raise CdpTimeoutError(method, budget) from None
        except websockets.exceptions.ConnectionClosed as e:
            raise ConnectionClosedError(f"Connection closed during {method}") from e
        finally:
            self._pending.pop(request_id, None)

    async def close(self) -> None:
        """Close the socket; pending calls fail with ConnectionClosedError."""
        if self._recv_task is not None and not self._recv_task.done():
            self._recv_task.cancel()
            try:
                await self._recv_task
            except asyncio.CancelledError:
                pass
        try:
            await self._ws.close()
        except Exception:
            logger.debug("Error closing CDP socket", exc_info=True)
        self._handle_close()

    async def _recv_loop(self) -> None:
        try:
            async for raw in self._ws:
                self._dispatch_message(raw)
        except websockets.exceptions.ConnectionClosed:
            pass
        except Exception:
            logger.exception("CDP receive loop failed")
        finally:
            self._handle_close()

    def _dispatch_message(self, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("payload is not an object")
            if "id" in data:
                self._resolve(data)
            method = data.get("method")
            if method:
                self._handle_event(method, data.get("params") or {})
        except (ValueError, KeyError, TypeError) as e:
            logger.debug(f"Dropping malformed CDP message: {e}")

    def _resolve(self, data: dict[str, Any]) -> None:
        pending = self._pending.pop(data["id"], None)
        if pending is None or pending.future.done():
            return
        if "error" in data:
            pending.future.set_exception(RemoteError(pending.method, data["error"]))
        else:
            pending.future.set_result(data.get("result") or {})

    def _handle_event(self, method: str, params: dict[str, Any]) -> None:
        if method == "Runtime.executionContextCreated":
            self._contexts.add(ExecutionContext.from_payload(params["context"]))
        elif method == "Runtime.executionContextDestroyed":
            self._contexts.remove(int(params["executionContextId"]))
        elif method == "Runtime.executionContextsCleared":
            self._contexts.clear()

    def _handle_close(self) -> None:
        if self._closed:
            return
        self._closed = True

        pending = list(self._pending.values())
        self._pending.clear()
        for request in pending:
            if not request.future.done():
                request.future.set_exception(
                    ConnectionClosedError(f"Connection closed before {request.method} completed")
                )
        logger.warning(f"CDP WebSocket disconnected ({len(pending)} pending calls failed)")

        if self._on_close is not None:
            try:
                self._on_close(self)
            except Exception:
                logger.exception("Error in CDP close callback")
