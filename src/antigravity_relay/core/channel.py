"""Channel protocol — interface that chat channels must implement."""

from __future__ import annotations

from pathlib import Path
from typing import Awaitable, Callable, Protocol

# (chat_id, message_id, text, attachment paths)
MessageCallback = Callable[[str, str, str, list[Path]], Awaitable[None]]
# (command name, chat_id, argument text) -> reply text
CommandCallback = Callable[[str, str, str], Awaitable[str | None]]
# (action id, chat_id, message_id)
DecisionCallback = Callable[[str, str, str], Awaitable[None]]


class Channel(Protocol):
    """Interface for communication channels (Telegram, Slack, etc.)."""

    @property
    def name(self) -> str:
        """Channel identifier (e.g., 'telegram')."""
        ...

    async def start(self) -> None:
        """Start the channel (connect, start polling, etc.)."""
        ...

    async def stop(self) -> None:
        """Graceful shutdown."""
        ...

    async def send_message(
        self,
        chat_id: str,
        text: str,
        reply_to: str | None = None,
        buttons: list[tuple[str, str]] | None = None,
    ) -> str | None:
        """Send a message, optionally with (action_id, label) buttons. Returns its message id."""
        ...

    async def edit_message(self, chat_id: str, message_id: str, text: str) -> None:
        """Replace the text of a sent message and drop its buttons."""
        ...

    async def add_reaction(self, chat_id: str, message_id: str, symbol: str) -> None:
        """React to an inbound message."""
        ...

    async def send_photo(self, chat_id: str, image: bytes, caption: str | None = None) -> None:
        """Send an image."""
        ...

    async def send_document(self, chat_id: str, path: Path, caption: str | None = None) -> None:
        """Upload a local file."""
        ...

    def on_message(self, callback: MessageCallback) -> None:
        """Register callback for incoming prompts."""
        ...

    def on_command(self, callback: CommandCallback) -> None:
        """Register callback for slash commands."""
        ...

    def on_decision(self, callback: DecisionCallback) -> None:
        """Register callback for approval button presses."""
        ...
