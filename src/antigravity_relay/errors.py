"""Error taxonomy for the CDP relay."""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base class for all relay errors."""


class DiscoveryError(RelayError):
    """No candidate endpoint exposed a matching debuggable target."""


class ConnectError(RelayError):
    """The WebSocket to the debug target could not be opened."""


class ConnectionClosedError(RelayError):
    """The connection closed while a request was pending (or before it was sent)."""


class CdpTimeoutError(RelayError, TimeoutError):
    """A protocol call did not receive a response within its budget."""

    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(f"{method} timed out after {timeout}s")
        self.method = method
        self.timeout = timeout


class RemoteError(RelayError):
    """The target answered a call with a protocol-level error payload."""

    def __init__(self, method: str, payload: Any) -> None:
        self.method = method
        self.payload = payload
        if isinstance(payload, dict):
            self.code = payload.get("code")
            message = payload.get("message") or str(payload)
        else:
            self.code = None
            message = str(payload)
        super().__init__(f"{method} failed: {message}")
