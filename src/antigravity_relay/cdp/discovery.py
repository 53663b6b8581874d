"""Target discovery — probe local DevTools endpoints for the IDE page."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from ..errors import DiscoveryError

logger = logging.getLogger(__name__)

DEFAULT_PORTS = (9222, 9000, 9001, 9002, 9003)


@dataclass(frozen=True)
class TargetInfo:
    """One entry of a ``/json/list`` response."""

    type: str
    title: str
    url: str
    ws_url: str | None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> TargetInfo:
        return cls(
            type=str(payload.get("type") or ""),
            title=str(payload.get("title") or ""),
            url=str(payload.get("url") or ""),
            ws_url=payload.get("webSocketDebuggerUrl") or None,
        )


@dataclass(frozen=True)
class DiscoveredTarget:
    port: int
    target: TargetInfo
    ws_url: str


@dataclass
class TargetMatcher:
    """Keyword policy used to pick the IDE workbench among the listed targets."""

    url_keywords: list[str] = field(default_factory=lambda: ["workbench"])
    title_keywords: list[str] = field(default_factory=lambda: ["Antigravity", "Cascade"])
    url_exclude: list[str] = field(default_factory=lambda: ["workbench-jetski-agent"])
    launcher_title: str = "Launchpad"

    def keyword_match(self, target: TargetInfo) -> bool:
        return any(k in target.url for k in self.url_keywords) or any(
            k in target.title for k in self.title_keywords
        )

    def is_launcher(self, target: TargetInfo) -> bool:
        return bool(self.launcher_title) and self.launcher_title in target.title

    def select(self, targets: Iterable[TargetInfo]) -> TargetInfo | None:
        """Apply the three preference tiers and return the best target, if any."""
        candidates = [t for t in targets if t.ws_url]

        tiers = (
            lambda t: (
                t.type == "page"
                and not self.is_launcher(t)
                and not any(x in t.url for x in self.url_exclude)
                and self.keyword_match(t)
            ),
            lambda t: self.keyword_match(t) and not self.is_launcher(t),
            lambda t: self.keyword_match(t) or self.is_launcher(t),
        )
        for tier in tiers:
            for target in candidates:
                if tier(target):
                    return target
        return None


async def fetch_targets(
    session: aiohttp.ClientSession, host: str, port: int
) -> list[TargetInfo]:
    """GET ``/json/list`` on one endpoint."""
    async with session.get(f"http://{host}:{port}/json/list") as resp:
        resp.raise_for_status()
        payload = await resp.json(content_type=None)
    if not isinstance(payload, list):
        raise ValueError(f"unexpected /json/list payload: {type(payload).__name__}")
    return [TargetInfo.from_payload(item) for item in payload if isinstance(item, dict)]


async def discover_target(
    ports: Iterable[int] = DEFAULT_PORTS,
    host: str = "127.0.0.1",
    matcher: TargetMatcher | None = None,
    timeout: float = 2.0,
) -> DiscoveredTarget:
    """Return the first endpoint, in port order, exposing a matching target.

    Raises:
        DiscoveryError: if no endpoint yields a match.
    """
    matcher = matcher or TargetMatcher()
    ports = list(ports)

    async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
        for port in ports:
            try:
                targets = await fetch_targets(session, host, port)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                logger.debug(f"Port {port} check failed: {e}")
                continue

            logger.debug(f"Checking port {port}, found {len(targets)} targets")
            for t in targets:
                logger.debug(f" - {t.type}: {t.title or t.url} ({t.ws_url})")

            target = matcher.select(targets)
            if target is not None:
                logger.info(f"Selected CDP target on port {port}: {target.title} ({target.url})")
                return DiscoveredTarget(port=port, target=target, ws_url=target.ws_url)

    raise DiscoveryError(f"No debuggable target found on ports {ports}")
