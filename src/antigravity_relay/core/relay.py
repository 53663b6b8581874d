"""Relay — wires a chat channel to the IDE automation engine."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from ..automation.actions import TargetActions
from ..cdp.manager import CdpManager
from ..config import Settings
from ..errors import RelayError
from ..monitor.approvals import ApprovalBridge, approval_key
from ..monitor.engine import ResponseMonitor
from .channel import Channel

logger = logging.getLogger(__name__)

CDP_NOT_FOUND = "❌ CDP not found. Is Antigravity running?"
MONITOR_SHUTDOWN_TIMEOUT = 5.0
MODES = ("planning", "fast")
COMMANDS = ("help", "screenshot", "stop", "newchat", "title", "status", "model", "mode")

HELP_TEXT = (
    "📖 *Antigravity Relay commands*\n\n"
    "💬 *Prompt* — send any message (mention the bot in groups)\n"
    "📎 *Attachments* — files are saved to the workspace and their paths sent along\n\n"
    "🖼️ /screenshot — capture the IDE window\n"
    "⏹️ /stop — stop the current generation\n"
    "🆕 /newchat — start a new conversation\n"
    "📊 /status — show current model and mode\n"
    "📝 /title — show the conversation title\n"
    "🤖 /model — list models\n"
    "🤖 /model <number> — switch model\n"
    "📋 /mode — show current mode\n"
    "📋 /mode <planning|fast> — switch mode"
)


class Relay:
    """Owns the CDP connection, the response monitor and the approval bridge.

    Inbound chat events arrive through the callbacks registered on the
    channel; all replies go back out through the same channel.
    """

    def __init__(
        self,
        settings: Settings,
        channel: Channel,
        cdp: CdpManager | None = None,
        approvals: ApprovalBridge | None = None,
        monitor: ResponseMonitor | None = None,
    ) -> None:
        self._settings = settings
        self._channel = channel
        self._cdp = cdp or CdpManager(settings)
        self._approvals = approvals or ApprovalBridge(default_timeout=settings.approval_timeout)
        self._monitor = monitor or ResponseMonitor(
            channel,
            self._approvals,
            poll_interval=settings.poll_interval,
            initial_delay=settings.initial_delay,
            approval_grace=settings.approval_grace,
            approval_timeout=settings.approval_timeout,
            idle_threshold=settings.idle_threshold,
            clear_attempts=settings.clear_attempts,
            clear_interval=settings.clear_interval,
            chunk_size=settings.chunk_size,
        )
        self._last_active_chat: str | None = None
        self._commands = {
            "help": self._cmd_help,
            "screenshot": self._cmd_screenshot,
            "stop": self._cmd_stop,
            "newchat": self._cmd_newchat,
            "title": self._cmd_title,
            "status": self._cmd_status,
            "model": self._cmd_model,
            "mode": self._cmd_mode,
        }

    @property
    def channel(self) -> Channel:
        return self._channel

    @property
    def cdp(self) -> CdpManager:
        return self._cdp

    @property
    def approvals(self) -> ApprovalBridge:
        return self._approvals

    @property
    def monitor(self) -> ResponseMonitor:
        return self._monitor

    @property
    def last_active_chat(self) -> str | None:
        return self._last_active_chat

    async def start(self) -> None:
        """Register channel callbacks, start the channel and try an early connect."""
        self._channel.on_message(self.handle_message)
        self._channel.on_command(self.handle_command)
        self._channel.on_decision(self.handle_decision)
        await self._channel.start()

        if await self._cdp.ensure():
            logger.info("Auto-connected to Antigravity on startup")
        else:
            logger.warning("Could not auto-connect to Antigravity on startup")

    async def stop(self) -> None:
        self._monitor.stop()
        self._approvals.cancel_all()
        # A cycle woken from an approval wait edits its message through the channel
        task = self._monitor.task
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(task, timeout=MONITOR_SHUTDOWN_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning("Monitoring cycle did not finish in time, cancelled")
        try:
            await self._channel.stop()
        except Exception:
            logger.exception(f"Error stopping channel {self._channel.name}")
        await self._cdp.close()

    async def actions(self) -> TargetActions | None:
        conn = await self._cdp.ensure()
        if conn is None:
            return None
        return TargetActions(conn, click_timeout=self._settings.click_timeout)

    async def handle_message(
        self,
        chat_id: str,
        message_id: str,
        text: str,
        attachments: list[Path] | None = None,
    ) -> None:
        """Forward a chat message to the agent and follow the generation."""
        self._last_active_chat = chat_id
        prompt = (text or "").strip()

        if attachments:
            lines = "\n".join(f"[Attachment: {p.name}] path: {p}" for p in attachments)
            prompt = f"{prompt}\n\n{lines}" if prompt else lines
            await self._react(chat_id, message_id, "attachment")

        if not prompt or prompt.startswith("/"):
            return

        actions = await self.actions()
        if actions is None:
            await self._channel.send_message(chat_id, CDP_NOT_FOUND)
            return

        try:
            result = await actions.send_prompt(prompt)
        except RelayError as e:
            logger.warning(f"Prompt injection failed: {e}")
            await self._react(chat_id, message_id, "failure")
            await self._channel.send_message(chat_id, f"Error: {e}")
            return

        if result.ok:
            await self._react(chat_id, message_id, "success")
            self._monitor.start(chat_id, message_id, actions)
        else:
            await self._react(chat_id, message_id, "failure")
            if result.reason:
                await self._channel.send_message(chat_id, f"Error: {result.reason}")

    async def handle_decision(self, action_id: str, chat_id: str, message_id: str) -> None:
        """Resolve the approval posted as *message_id* from a button press."""
        if not self._approvals.resolve_action(action_id, approval_key(chat_id, message_id)):
            logger.info(f"No pending approval for message {message_id} in chat {chat_id}")

    async def handle_command(self, name: str, chat_id: str, args: str) -> str | None:
        """Run a slash command and return the reply text (None if already answered)."""
        handler = self._commands.get(name)
        if handler is None:
            return f"⚠️ Unknown command: /{name}"
        if name == "help":
            return await handler(chat_id, args)

        actions = await self.actions()
        if actions is None:
            return CDP_NOT_FOUND
        try:
            return await handler(chat_id, args.strip(), actions)
        except RelayError as e:
            logger.warning(f"/{name} failed: {e}")
            return f"❌ /{name} failed: {e}"

    async def notify_file_event(self, kind: str, path: Path) -> None:
        """Report a workspace file change to the last active chat."""
        chat_id = self._last_active_chat
        if chat_id is None:
            return
        try:
            if kind == "deleted":
                await self._channel.send_message(chat_id, f"🗑️ *File Deleted:* `{path.name}`")
            elif kind in ("created", "modified"):
                if path.stat().st_size > self._settings.max_upload_bytes:
                    logger.info(f"Skipping upload of {path.name}: too large")
                    return
                label = "Created" if kind == "created" else "Updated"
                await self._channel.send_document(
                    chat_id, path, caption=f"📁 *File {label}:* `{path.name}`"
                )
        except Exception as e:
            logger.error(f"Error sending file event for {path}: {e}")

    async def _react(self, chat_id: str, message_id: str, symbol: str) -> None:
        try:
            await self._channel.add_reaction(chat_id, message_id, symbol)
        except Exception:
            logger.debug(f"Reaction {symbol} failed", exc_info=True)

    # -- commands ---------------------------------------------------------

    async def _cmd_help(self, chat_id: str, args: str) -> str:
        return HELP_TEXT

    async def _cmd_screenshot(self, chat_id: str, args: str, actions: TargetActions) -> str | None:
        image = await actions.screenshot()
        if image is None:
            return "❌ Failed to capture screenshot."
        await self._channel.send_photo(chat_id, image, caption="🖼️ Screenshot")
        return None

    async def _cmd_stop(self, chat_id: str, args: str, actions: TargetActions) -> str:
        if await actions.stop_generation():
            self._monitor.stop()
            return "⏹️ Generation stopped."
        return "⚠️ Nothing is being generated right now."

    async def _cmd_newchat(self, chat_id: str, args: str, actions: TargetActions) -> str:
        if await actions.new_chat():
            self._monitor.stop()
            return "🆕 Started a new chat."
        return "⚠️ New chat button not found."

    async def _cmd_title(self, chat_id: str, args: str, actions: TargetActions) -> str:
        title = await actions.current_title()
        return f"📝 *Chat title:* {title or 'unknown'}"

    async def _cmd_status(self, chat_id: str, args: str, actions: TargetActions) -> str:
        model = await actions.current_model()
        mode = await actions.current_mode()
        return f"🤖 *Model:* {model or 'unknown'}\n📋 *Mode:* {mode or 'unknown'}"

    async def _cmd_model(self, chat_id: str, args: str, actions: TargetActions) -> str:
        if not args:
            current = await actions.current_model()
            models = await actions.list_models()
            if not models:
                return "⚠️ Could not read the model list."
            listing = "\n".join(
                f"{'▶' if m == current else '　'} *{i}.* {m}" for i, m in enumerate(models, 1)
            )
            return (
                f"🤖 *Current model:* {current or 'unknown'}\n\n{listing}\n\n"
                "_Switch with /model <number>_"
            )

        try:
            index = int(args)
        except ValueError:
            index = 0
        if index < 1:
            return "⚠️ The model number must be 1 or greater."
        models = await actions.list_models()
        if index > len(models):
            return f"⚠️ Choose a number between 1 and {len(models)}."
        result = await actions.switch_model(models[index - 1])
        if result.ok:
            return f"✅ Switched to *{result.value}*"
        return f"⚠️ Switch failed: {result.reason}"

    async def _cmd_mode(self, chat_id: str, args: str, actions: TargetActions) -> str:
        mode = args.lower()
        if not mode:
            current = await actions.current_mode()
            return f"📋 *Current mode:* {current or 'unknown'}\n\n_Switch with /mode <planning|fast>_"
        if mode not in MODES:
            return "⚠️ Specify planning or fast."
        result = await actions.switch_mode(mode)
        if result.ok:
            return f"✅ Mode switched to *{result.value}*"
        return f"⚠️ Mode switch failed: {result.reason}"
