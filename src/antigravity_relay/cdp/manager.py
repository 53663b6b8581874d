"""CDP connection manager — discover, connect, and reconnect on demand."""

from __future__ import annotations

import asyncio
import logging

from ..config import Settings
from ..errors import RelayError
from .connection import CdpConnection
from .discovery import TargetMatcher, discover_target

logger = logging.getLogger(__name__)


class CdpManager:
    """Owns the process's single CDP connection.

    ``ensure()`` hands out the live connection, or runs discovery and
    connects when there is none (first use, or after the socket closed).
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._matcher = TargetMatcher(
            url_keywords=list(settings.target_url_keywords),
            title_keywords=list(settings.target_title_keywords),
            url_exclude=list(settings.target_url_exclude),
            launcher_title=settings.launcher_title,
        )
        self._connection: CdpConnection | None = None
        self._lock = asyncio.Lock()

    @property
    def connection(self) -> CdpConnection | None:
        if self._connection is not None and self._connection.is_open:
            return self._connection
        return None

    async def ensure(self) -> CdpConnection | None:
        """Return a live connection, or None if the target cannot be reached."""
        if self.connection is not None:
            return self._connection

        async with self._lock:
            if self.connection is not None:
                return self._connection
            try:
                found = await discover_target(
                    ports=self._settings.cdp_ports,
                    host=self._settings.cdp_host,
                    matcher=self._matcher,
                    timeout=self._settings.discovery_timeout,
                )
                self._connection = await CdpConnection.open(
                    found.ws_url,
                    on_close=self._on_close,
                    call_timeout=self._settings.cdp_call_timeout,
                    settle_delay=self._settings.cdp_settle_delay,
                )
            except RelayError as e:
                logger.warning(f"CDP unavailable: {e}")
                return None

            logger.info(f"Connected to CDP target: {found.ws_url}")
            return self._connection

    async def close(self) -> None:
        conn, self._connection = self._connection, None
        if conn is not None:
            await conn.close()

    def _on_close(self, conn: CdpConnection) -> None:
        if self._connection is conn:
            self._connection = None
