"""Command dispatcher — run an adapter script across execution contexts."""

from __future__ import annotations

import base64
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..cdp.connection import CdpConnection
from ..cdp.contexts import ExecutionContext
from ..errors import CdpTimeoutError, RemoteError

logger = logging.getLogger(__name__)

ContextPredicate = Callable[[ExecutionContext], bool]


def result_ok(value: Any) -> bool:
    """Default success test: a JSON object with a truthy ``ok``."""
    return isinstance(value, dict) and bool(value.get("ok"))


@dataclass(frozen=True)
class Adapter:
    """A target-UI specific script plus how to judge its result.

    The dispatcher knows nothing about the markup a script inspects; swapping
    the UI only means building different adapters.
    """

    name: str
    script: str
    await_promise: bool = False
    timeout: float | None = None
    succeeded: Callable[[Any], bool] = field(default=result_ok, compare=False)


@dataclass(frozen=True)
class DispatchResult:
    value: Any
    context: ExecutionContext
    fallback: bool = False

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class DispatchFailure:
    """No context produced a successful result."""

    adapter: str
    attempted: int
    last_value: Any = None

    @property
    def ok(self) -> bool:
        return False

    @property
    def reason(self) -> str:
        return f"{self.adapter} failed. Tried {self.attempted} contexts."

    @property
    def detail(self) -> str | None:
        """The ``reason`` reported by the last context that answered, if any."""
        if isinstance(self.last_value, dict) and self.last_value.get("reason"):
            return str(self.last_value["reason"])
        return None


class Dispatcher:
    """Evaluates adapters against the contexts of one connection."""

    def __init__(self, connection: CdpConnection) -> None:
        self._conn = connection

    @property
    def connection(self) -> CdpConnection:
        return self._conn

    async def evaluate(self, adapter: Adapter, context: ExecutionContext) -> Any:
        """Evaluate *adapter* in *context* and return the by-value result.

        A script that throws yields None.
        """
        params: dict[str, Any] = {
            "expression": adapter.script,
            "returnByValue": True,
            "contextId": context.id,
        }
        if adapter.await_promise:
            params["awaitPromise"] = True

        response = await self._conn.call("Runtime.evaluate", params, timeout=adapter.timeout)
        if response.get("exceptionDetails"):
            logger.debug(f"{adapter.name} threw in context {context.id}")
            return None
        return (response.get("result") or {}).get("value")

    async def dispatch(
        self,
        adapter: Adapter,
        priority: ContextPredicate | None = None,
    ) -> DispatchResult | DispatchFailure:
        """Try priority contexts first, then the rest; first success wins.

        RemoteError and CdpTimeoutError count as "this context did not
        succeed". ConnectionClosedError propagates, the handle is dead.
        """
        contexts = self._conn.contexts.snapshot()
        if priority is not None:
            preferred = [c for c in contexts if priority(c)]
            rest = [c for c in contexts if not priority(c)]
            logger.debug(
                f"Dispatching {adapter.name}. Priority contexts: {len(preferred)}, Total: {len(contexts)}"
            )
        else:
            preferred, rest = contexts, []

        attempted = 0
        last_value = None
        for group, fallback in ((preferred, False), (rest, True)):
            for context in group:
                attempted += 1
                try:
                    value = await self.evaluate(adapter, context)
                except (RemoteError, CdpTimeoutError) as e:
                    logger.debug(f"{adapter.name} failed in context {context.id}: {e}")
                    continue
                if adapter.succeeded(value):
                    return DispatchResult(value=value, context=context, fallback=fallback)
                if value is not None:
                    last_value = value

        return DispatchFailure(adapter=adapter.name, attempted=attempted, last_value=last_value)

    async def capture_screenshot(self, image_format: str = "png") -> bytes:
        """Capture the target surface. A single call, not fanned out over contexts."""
        result = await self._conn.call("Page.captureScreenshot", {"format": image_format})
        return base64.b64decode(result["data"])
