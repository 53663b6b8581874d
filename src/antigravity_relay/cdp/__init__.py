"""Chrome DevTools Protocol transport, context tracking and target discovery."""

from .connection import CdpConnection, PendingRequest
from .contexts import ContextRegistry, ExecutionContext
from .discovery import DiscoveredTarget, TargetInfo, TargetMatcher, discover_target
from .manager import CdpManager

__all__ = [
    "CdpConnection",
    "CdpManager",
    "ContextRegistry",
    "DiscoveredTarget",
    "ExecutionContext",
    "PendingRequest",
    "TargetInfo",
    "TargetMatcher",
    "discover_target",
]
