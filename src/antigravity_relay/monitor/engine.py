"""Response monitor — follow a generation to completion and relay approvals."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING

from .approvals import APPROVE_ACTION, REJECT_ACTION, ApprovalBridge, Decision, approval_key

if TYPE_CHECKING:
    from ..automation.actions import TargetActions
    from ..core.channel import Channel

logger = logging.getLogger(__name__)
interaction_log = logging.getLogger("antigravity_relay.interaction")

RESPONSE_MARKER = "🤖 *AI Response:*"
APPROVAL_HEADER = "⚠️ *Approval Required*"
APPROVAL_BUTTONS = [
    (APPROVE_ACTION, "✅ Approve / Run"),
    (REJECT_ACTION, "❌ Reject / Cancel"),
]


class MonitorState(str, Enum):
    IDLE = "idle"
    BUSY = "busy"
    APPROVAL_PENDING = "approval_pending"


def chunk_text(text: str, size: int = 3900) -> list[str]:
    """Split *text* into consecutive pieces of at most *size* characters."""
    if not text:
        return [text]
    return [text[i : i + size] for i in range(0, len(text), size)]


def format_approval(prompt: str) -> str:
    return f"{APPROVAL_HEADER}\n```\n{prompt}\n```"


class ResponseMonitor:
    """Polls the IDE while the agent works and reports back to the chat.

    Only one cycle runs at a time; ``start`` while busy is rejected. The cycle
    ends when the agent has been idle for ``idle_threshold`` consecutive
    ticks, when ``stop`` is requested, or on any error.
    """

    def __init__(
        self,
        channel: Channel,
        approvals: ApprovalBridge,
        poll_interval: float = 2.0,
        initial_delay: float = 3.0,
        approval_grace: float = 3.0,
        approval_timeout: float = 60.0,
        idle_threshold: int = 3,
        clear_attempts: int = 15,
        clear_interval: float = 0.5,
        chunk_size: int = 3900,
    ) -> None:
        self._channel = channel
        self._approvals = approvals
        self._poll_interval = poll_interval
        self._initial_delay = initial_delay
        self._approval_grace = approval_grace
        self._approval_timeout = approval_timeout
        self._idle_threshold = idle_threshold
        self._clear_attempts = clear_attempts
        self._clear_interval = clear_interval
        self._chunk_size = chunk_size

        self._state = MonitorState.IDLE
        self._busy = False
        self._idle_count = 0
        self._last_prompt: str | None = None
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._cycle = 0

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    def start(self, chat_id: str, reply_to: str | None, actions: TargetActions) -> bool:
        """Launch a monitoring cycle in the background. False if one is already running."""
        if self._busy:
            logger.info("Monitor already active, not starting another cycle")
            return False
        self._busy = True
        self._stop_event.clear()
        self._cycle += 1
        self._task = asyncio.create_task(self._run(self._cycle, chat_id, reply_to, actions))
        return True

    async def run(self, chat_id: str, reply_to: str | None, actions: TargetActions) -> bool:
        """Run a monitoring cycle to completion in the caller's task."""
        if self._busy:
            return False
        self._busy = True
        self._stop_event.clear()
        self._cycle += 1
        await self._run(self._cycle, chat_id, reply_to, actions)
        return True

    def stop(self) -> None:
        """Ask the running cycle to end before its next tick."""
        if self._busy:
            self._stop_event.set()

    async def _run(
        self, cycle: int, chat_id: str, reply_to: str | None, actions: TargetActions
    ) -> None:
        self._state = MonitorState.BUSY
        self._idle_count = 0
        self._last_prompt = None
        logger.info(f"Monitoring generation for chat {chat_id}")

        try:
            if await self._wait(self._initial_delay):
                return
            while True:
                if await self._wait(self._poll_interval):
                    logger.info("Monitoring stopped on request")
                    return
                if await self._tick(chat_id, reply_to, actions):
                    return
        except Exception:
            logger.exception("Poll error, aborting monitoring cycle")
        finally:
            # A newer cycle may have started while this one delivered its response
            if cycle == self._cycle:
                self._busy = False
                self._state = MonitorState.IDLE
                self._idle_count = 0

    async def _wait(self, delay: float) -> bool:
        """Sleep for *delay*; True if a stop was requested meanwhile."""
        if self._stop_event.is_set():
            return True
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _tick(self, chat_id: str, reply_to: str | None, actions: TargetActions) -> bool:
        """One polling step. Returns True when the cycle is finished."""
        prompt = await actions.approval_prompt()
        if prompt is not None:
            if prompt != self._last_prompt:
                await self._handle_approval(chat_id, reply_to, actions)
            return False
        self._last_prompt = None

        if await actions.is_generating():
            self._idle_count = 0
            self._state = MonitorState.BUSY
            return False

        self._idle_count += 1
        if self._idle_count < self._idle_threshold:
            return False

        self._busy = False
        self._state = MonitorState.IDLE
        response = await actions.last_response()
        if response is not None and response.text:
            await self._deliver(chat_id, reply_to, response.text)
        logger.info(f"Generation finished for chat {chat_id}")
        return True

    async def _handle_approval(
        self, chat_id: str, reply_to: str | None, actions: TargetActions
    ) -> None:
        # Re-check after the grace period so a flickering prompt is not reported
        await asyncio.sleep(self._approval_grace)
        prompt = await actions.approval_prompt()
        if prompt is None:
            logger.info("Approval prompt disappeared during grace period")
            return
        if prompt == self._last_prompt:
            return

        self._last_prompt = prompt
        self._state = MonitorState.APPROVAL_PENDING
        text = format_approval(prompt)
        message_id = await self._channel.send_message(
            chat_id, text, reply_to=reply_to, buttons=APPROVAL_BUTTONS
        )
        if message_id is None:
            logger.warning("Could not post approval request, continuing to poll")
            self._last_prompt = None
            self._state = MonitorState.BUSY
            return
        interaction_log.info(f"APPROVAL Request sent: {prompt[:50]}...")

        pending = self._approvals.register(
            approval_key(chat_id, message_id),
            timeout=self._approval_timeout,
            chat_id=chat_id,
            connection=actions.connection,
        )
        decision = await pending.wait()

        if decision is None:
            # Memo stays set: the same prompt is not re-posted until it clears
            await self._edit_quietly(chat_id, message_id, "⚠️ Approval timed out.")
            self._state = MonitorState.BUSY
            return

        allow = decision is Decision.APPROVE
        try:
            await actions.resolve_approval(allow)
        except Exception:
            logger.exception("Approval click failed")
        outcome = "✅ *Approved*" if allow else "❌ *Rejected*"
        await self._edit_quietly(chat_id, message_id, f"{text}\n\n{outcome}")
        interaction_log.info(f"ACTION User {'Approved' if allow else 'Rejected'} the request.")

        for _ in range(self._clear_attempts):
            if await actions.approval_prompt() is None:
                break
            await asyncio.sleep(self._clear_interval)

        self._last_prompt = None
        self._state = MonitorState.BUSY

    async def _deliver(self, chat_id: str, reply_to: str | None, text: str) -> None:
        chunks = chunk_text(text, self._chunk_size)
        await self._channel.send_message(chat_id, f"{RESPONSE_MARKER}\n{chunks[0]}", reply_to=reply_to)
        for chunk in chunks[1:]:
            await self._channel.send_message(chat_id, chunk, reply_to=reply_to)

    async def _edit_quietly(self, chat_id: str, message_id: str, text: str) -> None:
        try:
            await self._channel.edit_message(chat_id, message_id, text)
        except Exception:
            logger.warning(f"Failed to update approval message {message_id}", exc_info=True)
