"""Telegram bot for relay user communication."""

import io
import logging
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

from telegram import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    Message,
    ReplyParameters,
    Update,
)
from telegramify_markdown import convert as md_to_telegram
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

logger = logging.getLogger(__name__)

# Telegram message limit is 4096 characters
MAX_MESSAGE_LENGTH = 4096


class TelegramBot:
    """Telegram bot relaying prompts, commands and approval decisions."""

    def __init__(
        self,
        bot_token: str,
        allowed_chat_ids: list[int],
        upload_dir: Path | None = None,
        commands: list[str] | None = None,
        decision_actions: list[str] | None = None,
    ) -> None:
        self._bot_token = bot_token
        self._allowed_chat_ids = set(allowed_chat_ids)
        self._upload_dir = upload_dir
        self._commands = list(commands or [])
        self._decision_actions = set(decision_actions or [])
        self._app: Application | None = None
        self._bot_username: str | None = None
        self._running = False

        # Callbacks
        self._message_callback: Callable[[int, int, str, list[Path]], Awaitable[None]] | None = None
        self._command_callback: Callable[[str, int, str], Awaitable[str | None]] | None = None
        self._decision_callback: Callable[[str, int, int], Awaitable[None]] | None = None

    def on_message(
        self,
        callback: Callable[[int, int, str, list[Path]], Awaitable[None]],
    ) -> None:
        """
        Set callback for when a new prompt is received.

        The callback receives (chat_id, message_id, text, attachment_paths).
        """
        self._message_callback = callback

    def on_command(self, callback: Callable[[str, int, str], Awaitable[str | None]]) -> None:
        """Set callback for slash commands: (name, chat_id, args) -> reply text."""
        self._command_callback = callback

    def on_decision(self, callback: Callable[[str, int, int], Awaitable[None]]) -> None:
        """Set callback for button presses: (action_id, chat_id, message_id)."""
        self._decision_callback = callback

    async def start(self) -> None:
        """Start the Telegram bot in polling mode."""
        if self._running:
            return

        self._app = Application.builder().token(self._bot_token).build()

        if self._commands:
            self._app.add_handler(CommandHandler(self._commands, self._handle_command))

        # Approve / reject buttons under approval notifications
        self._app.add_handler(CallbackQueryHandler(self._handle_callback_query))

        # Prompts, with or without attachments
        self._app.add_handler(
            MessageHandler(
                (filters.TEXT | filters.PHOTO | filters.Document.ALL) & ~filters.COMMAND,
                self._handle_mention,
            )
        )

        # Initialize and start polling
        await self._app.initialize()
        # Clear any stale polling sessions from previous runs
        await self._app.bot.delete_webhook(drop_pending_updates=True)
        await self._app.start()
        if self._app.updater:
            await self._app.updater.start_polling(drop_pending_updates=True)

        # Cache bot username for mention detection
        bot_info = await self._app.bot.get_me()
        self._bot_username = bot_info.username

        self._running = True
        logger.info(f"Telegram bot started (@{self._bot_username})")

    async def stop(self) -> None:
        """Stop the Telegram bot gracefully."""
        if not self._running or not self._app:
            return

        if self._app.updater:
            await self._app.updater.stop()
        await self._app.stop()
        await self._app.shutdown()

        self._running = False
        logger.info("Telegram bot stopped")

    def _can_send(self, chat_id: int) -> bool:
        if not self._app or not self._running:
            logger.warning("Telegram bot not running, cannot send")
            return False
        if chat_id not in self._allowed_chat_ids:
            logger.warning(f"Chat {chat_id} not in allowed list")
            return False
        return True

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_to: int | None = None,
        buttons: list[tuple[str, str]] | None = None,
    ) -> int | None:
        """Send a message to a chat. Returns message_id if successful.

        Markdown in the text is converted to Telegram entities via
        ``telegramify-markdown`` so formatting renders correctly without
        needing a ``parse_mode``. ``buttons`` are ``(callback_data, label)``
        pairs laid out on a single keyboard row.
        """
        if not self._can_send(chat_id):
            return None

        if len(text) > MAX_MESSAGE_LENGTH - 96:
            text = text[: MAX_MESSAGE_LENGTH - 96] + "..."

        keyboard = None
        if buttons:
            keyboard = InlineKeyboardMarkup(
                [[InlineKeyboardButton(label, callback_data=data) for data, label in buttons]]
            )
        reply_parameters = (
            ReplyParameters(message_id=reply_to, allow_sending_without_reply=True)
            if reply_to
            else None
        )

        tg_text, entity_dicts = _convert(text)
        try:
            msg = await self._app.bot.send_message(
                chat_id=chat_id,
                text=tg_text,
                entities=entity_dicts,
                reply_markup=keyboard,
                reply_parameters=reply_parameters,
            )
            return msg.message_id
        except Exception:
            # Retry as plain text if entity send failed
            logger.warning("Failed to send message with entities, retrying as plain text")
            try:
                msg = await self._app.bot.send_message(
                    chat_id=chat_id,
                    text=text,
                    reply_markup=keyboard,
                    reply_parameters=reply_parameters,
                )
                return msg.message_id
            except Exception:
                logger.exception(f"Failed to send plain text message to chat {chat_id}")
                return None

    async def edit_message(self, chat_id: int, message_id: int, text: str) -> None:
        """Replace a message's text; the inline keyboard is removed."""
        if not self._can_send(chat_id):
            return

        tg_text, entity_dicts = _convert(text)
        try:
            await self._app.bot.edit_message_text(
                chat_id=chat_id,
                message_id=message_id,
                text=tg_text,
                entities=entity_dicts,
            )
        except Exception:
            logger.warning("Failed to edit message with entities, retrying as plain text")
            await self._app.bot.edit_message_text(
                chat_id=chat_id,
                message_id=message_id,
                text=text,
            )

    async def set_reaction(self, chat_id: int, message_id: int, emoji: str) -> None:
        if not self._can_send(chat_id):
            return
        try:
            await self._app.bot.set_message_reaction(
                chat_id=chat_id,
                message_id=message_id,
                reaction=emoji,
            )
        except Exception as e:
            logger.debug(f"Failed to react {emoji} to message {message_id}: {e}")

    async def send_photo(
        self,
        chat_id: int,
        image: bytes,
        caption: str | None = None,
    ) -> None:
        """Send a photo to a chat from raw image bytes."""
        if not self._can_send(chat_id):
            return

        try:
            await self._app.bot.send_photo(
                chat_id=chat_id,
                photo=io.BytesIO(image),
                caption=caption,
            )
        except Exception:
            logger.exception(f"Failed to send photo to chat {chat_id}")

    async def send_document(
        self,
        chat_id: int,
        path: Path,
        caption: str | None = None,
    ) -> None:
        """Upload a local file to a chat."""
        if not self._can_send(chat_id):
            return

        tg_caption, entity_dicts = _convert(caption) if caption else (None, None)
        with path.open("rb") as fh:
            await self._app.bot.send_document(
                chat_id=chat_id,
                document=fh,
                filename=path.name,
                caption=tg_caption,
                caption_entities=entity_dicts,
            )

    async def _handle_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle /commands registered by the relay."""
        message = update.message
        if not message or not message.text:
            return

        chat_id = message.chat_id
        if chat_id not in self._allowed_chat_ids:
            return

        if not self._command_callback:
            await message.reply_text("Commands are not configured.")
            return

        # "/model@my_bot 2" -> ("model", "2")
        head, _, args = message.text.partition(" ")
        name = head.lstrip("/").split("@", 1)[0].lower()

        try:
            reply = await self._command_callback(name, chat_id, args.strip())
        except Exception:
            logger.exception(f"Error handling /{name}")
            await message.reply_text("Error processing command.")
            return

        if reply:
            await self.send_message(chat_id, reply, reply_to=message.message_id)

    async def _handle_callback_query(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle inline keyboard button presses."""
        query = update.callback_query
        if not query or not query.data or not query.message:
            return

        # Ensure we have a proper Message (not InaccessibleMessage)
        if not isinstance(query.message, Message):
            return

        chat_id = query.message.chat_id
        if chat_id not in self._allowed_chat_ids:
            await query.answer("Not authorized")
            return

        if query.data not in self._decision_actions or not self._decision_callback:
            await query.answer("Invalid response")
            return

        await query.answer()
        try:
            await self._decision_callback(query.data, chat_id, query.message.message_id)
        except Exception:
            logger.exception("Error handling approval decision")

    async def _handle_mention(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle prompts addressed to the bot."""
        message = update.message
        if not message:
            return

        chat_id = message.chat_id
        text = message.text or message.caption or ""
        has_files = bool(message.photo or message.document)

        if chat_id not in self._allowed_chat_ids:
            return

        if not self._bot_username:
            return

        if not text and not has_files:
            return

        # In private chats, treat the entire message as the prompt.
        # In group chats, require an explicit @mention.
        mention = f"@{self._bot_username}"
        prompt = None

        if message.chat.type == "private":
            prompt = text.strip()
        elif mention.lower() in text.lower():
            mention_idx = text.lower().find(mention.lower())
            prompt = (text[:mention_idx] + text[mention_idx + len(mention) :]).strip()

        if prompt is None:
            return  # Bot not mentioned in group chat, ignore

        if not prompt and not has_files:
            await message.reply_text(
                f"Please provide a prompt after mentioning me.\n"
                f"Example: {mention} Refactor the login handler"
            )
            return

        if not self._message_callback:
            await message.reply_text("Prompt processing is not configured.")
            return

        try:
            attachments = await self._download_attachments(message) if has_files else []
            await self._message_callback(chat_id, message.message_id, prompt, attachments)
        except Exception:
            logger.exception("Error handling Telegram message")
            await message.reply_text("Error processing message.")

    async def _download_attachments(self, message: Message) -> list[Path]:
        """Save photos and documents into the workspace upload folder."""
        if self._upload_dir is None:
            logger.info("No workspace configured, ignoring attachments")
            return []

        self._upload_dir.mkdir(parents=True, exist_ok=True)
        stamp = int(time.time() * 1000)
        saved: list[Path] = []

        if message.document:
            name = message.document.file_name or f"{message.document.file_unique_id}.bin"
            tg_file = await message.document.get_file()
            target = self._upload_dir / f"{stamp}_{Path(name).name}"
            await tg_file.download_to_drive(target)
            saved.append(target)

        if message.photo:
            # Largest size is last
            photo = message.photo[-1]
            tg_file = await photo.get_file()
            target = self._upload_dir / f"{stamp}_{photo.file_unique_id}.jpg"
            await tg_file.download_to_drive(target)
            saved.append(target)

        for path in saved:
            logger.info(f"Downloaded attachment to {path}")
        return saved


def _convert(text: str) -> tuple[str, list[dict] | None]:
    """Convert standard markdown to Telegram (text, entities)."""
    try:
        tg_text, entities = md_to_telegram(text)
        return tg_text, [e.to_dict() for e in entities] if entities else None
    except Exception:
        logger.warning("Failed to convert markdown, sending as plain text")
        return text, None
