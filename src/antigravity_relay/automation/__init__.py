"""Adapter-script dispatch and the IDE operations built on it."""

from .actions import ActionResult, AssistantResponse, TargetActions, is_agent_context
from .dispatcher import Adapter, DispatchFailure, DispatchResult, Dispatcher

__all__ = [
    "ActionResult",
    "Adapter",
    "AssistantResponse",
    "DispatchFailure",
    "DispatchResult",
    "Dispatcher",
    "TargetActions",
    "is_agent_context",
]
