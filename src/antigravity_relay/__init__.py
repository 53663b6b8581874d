"""Antigravity Relay — drive the Antigravity IDE agent from a chat."""

import asyncio
import logging
import signal
import sys
from pathlib import Path

from .config import Settings
from .core.relay import COMMANDS, Relay
from .channels.telegram.channel import TelegramChannel
from .watcher import WorkspaceWatcher

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Settings) -> None:
    """Console logging plus the append-only interaction log."""
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)

    if settings.interaction_log:
        handler = logging.FileHandler(settings.interaction_log, encoding="utf-8")
        handler.setFormatter(logging.Formatter("[%(asctime)s] %(message)s"))
        interaction = logging.getLogger("antigravity_relay.interaction")
        interaction.setLevel(logging.INFO)
        interaction.addHandler(handler)


async def run_relay(settings: Settings | None = None) -> None:
    """Run the relay service."""
    settings = settings or Settings()
    configure_logging(settings)

    if not settings.telegram_bot_token:
        logger.error("RELAY_TELEGRAM_BOT_TOKEN is not set")
        sys.exit(1)

    workspace: Path | None = None
    if settings.watch_dir:
        workspace = Path(settings.watch_dir).expanduser()
        if not workspace.is_dir():
            logger.error(f"WATCH_DIR '{workspace}' does not exist")
            sys.exit(1)

    channel = TelegramChannel(
        bot_token=settings.telegram_bot_token,
        allowed_chat_ids=settings.telegram_allowed_chat_ids,
        upload_dir=workspace / settings.upload_subdir if workspace else None,
        commands=list(COMMANDS),
    )
    relay = Relay(settings, channel)

    watcher = None
    if workspace:
        watcher = WorkspaceWatcher(
            workspace,
            relay.notify_file_event,
            ignore_names=[Path(settings.interaction_log).name, settings.upload_subdir],
        )
    else:
        logger.info("File watching is disabled")

    # Start channel, then try to reach the IDE
    await relay.start()
    if watcher:
        watcher.start()

    # Wait for shutdown signal
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await stop_event.wait()
    finally:
        if watcher:
            watcher.stop()
        await relay.stop()


def main() -> None:
    """CLI entry point."""
    asyncio.run(run_relay())
