"""Approval bridge — correlate approval notifications with external decisions."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

APPROVE_ACTION = "approve_action"
REJECT_ACTION = "reject_action"


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


ACTION_DECISIONS: dict[str, Decision] = {
    APPROVE_ACTION: Decision.APPROVE,
    REJECT_ACTION: Decision.REJECT,
}


def approval_key(chat_id: str, message_id: str) -> str:
    """Correlation id of an approval notification."""
    return f"{chat_id}:{message_id}"


@dataclass
class PendingApproval:
    """An approval prompt waiting for a decision or its deadline."""

    correlation_id: str
    chat_id: str | None
    deadline: float
    connection: Any = None
    future: asyncio.Future[Decision | None] = field(
        default_factory=lambda: asyncio.get_running_loop().create_future()
    )

    @property
    def resolved(self) -> bool:
        return self.future.done()

    async def wait(self) -> Decision | None:
        """Wait for the decision; None means the deadline passed first."""
        return await asyncio.shield(self.future)


class ApprovalBridge:
    """Registry of pending approvals keyed by correlation id.

    Each entry is resolved exactly once: by ``resolve`` from the inbound
    decision channel or by its deadline task, whichever pops it first.
    """

    def __init__(self, default_timeout: float = 60.0) -> None:
        self._default_timeout = default_timeout
        self._pending: dict[str, PendingApproval] = {}
        self._timeout_tasks: dict[str, asyncio.Task[None]] = {}

    def register(
        self,
        correlation_id: str,
        timeout: float | None = None,
        chat_id: str | None = None,
        connection: Any = None,
    ) -> PendingApproval:
        """Track a new approval and start its deadline timer."""
        if correlation_id in self._pending:
            raise ValueError(f"Approval {correlation_id} is already pending")

        timeout = self._default_timeout if timeout is None else timeout
        approval = PendingApproval(
            correlation_id=correlation_id,
            chat_id=chat_id,
            deadline=time.time() + timeout,
            connection=connection,
        )
        self._pending[correlation_id] = approval
        self._timeout_tasks[correlation_id] = asyncio.create_task(
            self._handle_timeout(correlation_id, timeout)
        )
        logger.info(f"Registered approval {correlation_id} (timeout={timeout}s)")
        return approval

    def resolve(self, correlation_id: str, decision: Decision) -> bool:
        """Deliver a decision. Returns False for unknown or already resolved ids."""
        approval = self._pending.pop(correlation_id, None)
        if approval is None:
            logger.debug(f"Ignoring decision for unknown approval {correlation_id}")
            return False

        task = self._timeout_tasks.pop(correlation_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

        if approval.future.done():
            return False
        approval.future.set_result(decision)
        logger.info(f"Approval {correlation_id} resolved: {decision.value}")
        return True

    def resolve_action(self, action_id: str, correlation_id: str) -> bool:
        """Resolve from a button's stable action id."""
        decision = ACTION_DECISIONS.get(action_id)
        if decision is None:
            logger.warning(f"Unknown approval action: {action_id}")
            return False
        return self.resolve(correlation_id, decision)

    def get(self, correlation_id: str) -> PendingApproval | None:
        return self._pending.get(correlation_id)

    @property
    def pending_ids(self) -> list[str]:
        return list(self._pending.keys())

    def cancel_all(self) -> None:
        """Abandon every pending approval (shutdown)."""
        for correlation_id in list(self._pending):
            self._expire(correlation_id)

    async def _handle_timeout(self, correlation_id: str, timeout: float) -> None:
        await asyncio.sleep(timeout)
        self._timeout_tasks.pop(correlation_id, None)
        if self._expire(correlation_id):
            logger.warning(f"Approval {correlation_id} timed out after {timeout}s")

    def _expire(self, correlation_id: str) -> bool:
        approval = self._pending.pop(correlation_id, None)
        task = self._timeout_tasks.pop(correlation_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        if approval is None or approval.future.done():
            return False
        approval.future.set_result(None)
        return True
