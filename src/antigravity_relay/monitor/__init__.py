"""Generation monitoring and the approval bridge."""

from .approvals import (
    APPROVE_ACTION,
    REJECT_ACTION,
    ApprovalBridge,
    Decision,
    PendingApproval,
    approval_key,
)
from .engine import MonitorState, ResponseMonitor, chunk_text

__all__ = [
    "APPROVE_ACTION",
    "REJECT_ACTION",
    "ApprovalBridge",
    "Decision",
    "MonitorState",
    "PendingApproval",
    "ResponseMonitor",
    "approval_key",
    "chunk_text",
]
