"""High-level IDE operations built on the dispatcher."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..cdp.connection import CdpConnection
from ..cdp.contexts import ExecutionContext
from ..errors import CdpTimeoutError, RemoteError
from . import scripts
from .dispatcher import Adapter, Dispatcher, DispatchResult

logger = logging.getLogger(__name__)
interaction_log = logging.getLogger("antigravity_relay.interaction")


@dataclass
class ActionResult:
    """Outcome of a mutating UI action."""

    ok: bool
    value: str | None = None
    method: str | None = None
    reason: str | None = None


@dataclass
class AssistantResponse:
    text: str
    images: list[str] = field(default_factory=list)


def is_agent_context(context: ExecutionContext) -> bool:
    """Contexts that host the agent panel get the first try at injection."""
    return context.matches(scripts.PANEL_KEYWORD) or bool(
        context.name and "Extension" in context.name
    )


class TargetActions:
    """Reads and drives the agent panel of one connected IDE window."""

    def __init__(self, connection: CdpConnection, click_timeout: float = 5.0) -> None:
        self._dispatcher = Dispatcher(connection)
        self._click_timeout = click_timeout

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    @property
    def connection(self) -> CdpConnection:
        return self._dispatcher.connection

    async def send_prompt(self, text: str) -> ActionResult:
        """Type *text* into the chat input and submit it."""
        result = await self._dispatcher.dispatch(
            scripts.inject_message(text), priority=is_agent_context
        )
        if not isinstance(result, DispatchResult):
            interaction_log.info(f"INJECT failed: {result.reason}")
            return ActionResult(ok=False, reason=f"Injection failed. Tried {result.attempted} contexts.")

        where = "Fallback Context" if result.fallback else "Context"
        interaction_log.info(f"INJECT Sent: {text} ({where}: {result.context.id})")
        return ActionResult(ok=True, method=result.value.get("method"))

    async def is_generating(self) -> bool:
        result = await self._dispatcher.dispatch(scripts.is_generating())
        return result.ok

    async def approval_prompt(self) -> str | None:
        """Text of the pending approval prompt, or None when nothing awaits a decision."""
        result = await self._dispatcher.dispatch(scripts.approval_prompt())
        if isinstance(result, DispatchResult):
            return str(result.value.get("message") or "")
        return None

    async def resolve_approval(self, allow: bool) -> bool:
        """Click the approve (or reject) control of the pending prompt."""
        result = await self._dispatcher.dispatch(
            scripts.click_approval(allow, timeout=self._click_timeout)
        )
        interaction_log.info(
            f"CLICK Approval / Rejection clicked: {allow} ({'success' if result.ok else 'failed'})"
        )
        return result.ok

    async def last_response(self) -> AssistantResponse | None:
        result = await self._dispatcher.dispatch(scripts.last_response())
        if not isinstance(result, DispatchResult):
            return None
        return AssistantResponse(
            text=result.value.get("text") or "",
            images=list(result.value.get("images") or []),
        )

    async def screenshot(self) -> bytes | None:
        try:
            return await self._dispatcher.capture_screenshot()
        except (RemoteError, CdpTimeoutError, KeyError, ValueError) as e:
            logger.warning(f"Screenshot failed: {e}")
            return None

    async def stop_generation(self) -> bool:
        result = await self._dispatcher.dispatch(scripts.stop_generation())
        if result.ok:
            interaction_log.info("STOP Generation stopped by user.")
        return result.ok

    async def new_chat(self) -> bool:
        result = await self._dispatcher.dispatch(scripts.new_chat())
        if isinstance(result, DispatchResult):
            interaction_log.info(f"NEWCHAT New chat started. Method: {result.value.get('method')}")
        return result.ok

    async def current_title(self) -> str | None:
        return await self._read_value(scripts.current_title())

    async def current_model(self) -> str | None:
        return await self._read_value(scripts.current_model())

    async def current_mode(self) -> str | None:
        return await self._read_value(scripts.current_mode())

    async def list_models(self) -> list[str]:
        result = await self._dispatcher.dispatch(scripts.list_models())
        if isinstance(result, DispatchResult):
            return [str(m) for m in result.value.get("models") or []]
        return []

    async def switch_model(self, name: str) -> ActionResult:
        result = await self._switch(scripts.switch_model(name))
        if result.ok:
            interaction_log.info(f"MODEL Switched to: {result.value}")
        return result

    async def switch_mode(self, mode: str) -> ActionResult:
        result = await self._switch(scripts.switch_mode(mode))
        if result.ok:
            interaction_log.info(f"MODE Switched to: {result.value}")
        return result

    async def _read_value(self, adapter: Adapter) -> str | None:
        result = await self._dispatcher.dispatch(adapter)
        if isinstance(result, DispatchResult):
            return str(result.value.get("value"))
        return None

    async def _switch(self, adapter: Adapter) -> ActionResult:
        result = await self._dispatcher.dispatch(adapter)
        if isinstance(result, DispatchResult):
            return ActionResult(ok=True, value=result.value.get("value"))
        return ActionResult(ok=False, reason=result.detail or "CDP error")
