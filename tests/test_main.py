"""Tests for service wiring in the package entry point."""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from antigravity_relay import configure_logging, run_relay
from antigravity_relay.config import Settings


@pytest.fixture
def interaction_logger():
    logger = logging.getLogger("antigravity_relay.interaction")
    before = list(logger.handlers)
    yield logger
    for handler in logger.handlers[len(before):]:
        handler.close()
        logger.removeHandler(handler)


class TestConfigureLogging:
    def test_interaction_log_file(self, tmp_path, interaction_logger):
        log_file = tmp_path / "relay_interaction.log"
        settings = Settings(_env_file=None, interaction_log=str(log_file))

        configure_logging(settings)
        interaction_logger.info("INJECT Sent: hello")
        for handler in interaction_logger.handlers:
            handler.flush()

        assert "INJECT Sent: hello" in log_file.read_text(encoding="utf-8")


class TestRunRelay:
    async def test_missing_token_exits(self, tmp_path, interaction_logger):
        settings = Settings(_env_file=None, interaction_log=str(tmp_path / "i.log"))

        with pytest.raises(SystemExit):
            await run_relay(settings)

    async def test_missing_watch_dir_exits(self, tmp_path, interaction_logger):
        settings = Settings(
            _env_file=None,
            telegram_bot_token="t",
            watch_dir=str(tmp_path / "nope"),
            interaction_log=str(tmp_path / "i.log"),
        )

        with pytest.raises(SystemExit):
            await run_relay(settings)

    async def test_wiring(self, tmp_path, interaction_logger):
        settings = Settings(
            _env_file=None,
            telegram_bot_token="t",
            telegram_allowed_chat_ids=[111],
            watch_dir=str(tmp_path),
            interaction_log=str(tmp_path / "i.log"),
        )
        relay = MagicMock()
        relay.start = AsyncMock()
        relay.stop = AsyncMock()
        watcher = MagicMock()
        stop_event = MagicMock()
        stop_event.wait = AsyncMock()

        with (
            patch("antigravity_relay.TelegramChannel") as channel_cls,
            patch("antigravity_relay.Relay", return_value=relay),
            patch("antigravity_relay.WorkspaceWatcher", return_value=watcher) as watcher_cls,
            patch("antigravity_relay.asyncio.Event", return_value=stop_event),
        ):
            await run_relay(settings)

        kwargs = channel_cls.call_args.kwargs
        assert kwargs["upload_dir"] == tmp_path / "telegram_uploads"
        assert "model" in kwargs["commands"]
        assert watcher_cls.call_args.kwargs["ignore_names"] == ["i.log", "telegram_uploads"]
        relay.start.assert_awaited_once()
        watcher.start.assert_called_once()
        watcher.stop.assert_called_once()
        relay.stop.assert_awaited_once()
