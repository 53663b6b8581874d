"""Telegram channel implementation."""

from __future__ import annotations

import logging
from pathlib import Path

from ...core.channel import CommandCallback, DecisionCallback, MessageCallback
from ...monitor.approvals import APPROVE_ACTION, REJECT_ACTION
from .bot import TelegramBot

logger = logging.getLogger(__name__)

# Telegram only accepts emoji from a fixed reaction set
REACTIONS = {
    "success": "👌",
    "failure": "👎",
    "attachment": "✍",
}


class TelegramChannel:
    """Telegram communication channel implementing the Channel protocol."""

    def __init__(
        self,
        bot_token: str,
        allowed_chat_ids: list[int] | None = None,
        upload_dir: Path | None = None,
        commands: list[str] | None = None,
    ) -> None:
        self._bot = TelegramBot(
            bot_token=bot_token,
            allowed_chat_ids=allowed_chat_ids or [],
            upload_dir=upload_dir,
            commands=commands,
            decision_actions=[APPROVE_ACTION, REJECT_ACTION],
        )
        self._message_callback: MessageCallback | None = None
        self._command_callback: CommandCallback | None = None
        self._decision_callback: DecisionCallback | None = None

    @property
    def name(self) -> str:
        return "telegram"

    async def start(self) -> None:
        """Start the Telegram bot."""
        # Wire up callbacks
        if self._message_callback:
            self._bot.on_message(self._wrap_message)
        if self._command_callback:
            self._bot.on_command(self._wrap_command)
        if self._decision_callback:
            self._bot.on_decision(self._wrap_decision)
        await self._bot.start()

    async def stop(self) -> None:
        """Stop the Telegram bot."""
        await self._bot.stop()

    async def send_message(
        self,
        chat_id: str,
        text: str,
        reply_to: str | None = None,
        buttons: list[tuple[str, str]] | None = None,
    ) -> str | None:
        """Send message via Telegram."""
        message_id = await self._bot.send_message(
            int(chat_id),
            text,
            reply_to=int(reply_to) if reply_to else None,
            buttons=buttons,
        )
        return str(message_id) if message_id is not None else None

    async def edit_message(self, chat_id: str, message_id: str, text: str) -> None:
        await self._bot.edit_message(int(chat_id), int(message_id), text)

    async def add_reaction(self, chat_id: str, message_id: str, symbol: str) -> None:
        emoji = REACTIONS.get(symbol, symbol)
        await self._bot.set_reaction(int(chat_id), int(message_id), emoji)

    async def send_photo(self, chat_id: str, image: bytes, caption: str | None = None) -> None:
        """Send a photo via Telegram."""
        await self._bot.send_photo(int(chat_id), image, caption)

    async def send_document(self, chat_id: str, path: Path, caption: str | None = None) -> None:
        """Upload a file via Telegram."""
        await self._bot.send_document(int(chat_id), path, caption)

    def on_message(self, callback: MessageCallback) -> None:
        """Register callback for incoming messages."""
        self._message_callback = callback

    def on_command(self, callback: CommandCallback) -> None:
        self._command_callback = callback

    def on_decision(self, callback: DecisionCallback) -> None:
        self._decision_callback = callback

    async def _wrap_message(
        self, chat_id: int, message_id: int, text: str, attachments: list[Path]
    ) -> None:
        """Wrap the internal bot callback to match Channel protocol signature."""
        if self._message_callback:
            await self._message_callback(str(chat_id), str(message_id), text, attachments)

    async def _wrap_command(self, name: str, chat_id: int, args: str) -> str | None:
        if self._command_callback:
            return await self._command_callback(name, str(chat_id), args)
        return None

    async def _wrap_decision(self, action_id: str, chat_id: int, message_id: int) -> None:
        if self._decision_callback:
            await self._decision_callback(action_id, str(chat_id), str(message_id))
