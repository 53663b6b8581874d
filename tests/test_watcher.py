"""Tests for the WorkspaceWatcher."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from watchdog.events import (
    DirCreatedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from antigravity_relay.watcher import WorkspaceWatcher, _WorkspaceEventHandler


async def _wait_for(predicate, timeout=1.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
async def watcher(tmp_path):
    w = WorkspaceWatcher(tmp_path, AsyncMock(), ignore_names=["relay_interaction.log", "telegram_uploads"])
    w._loop = asyncio.get_running_loop()
    return w


@pytest.fixture
def handler(watcher):
    with patch("antigravity_relay.watcher.DEBOUNCE_SECONDS", 0.01):
        yield _WorkspaceEventHandler(watcher)


class TestIgnored:
    def test_ignored_directories(self, watcher, tmp_path):
        assert watcher.is_ignored(tmp_path / "node_modules" / "react" / "index.js")
        assert watcher.is_ignored(tmp_path / ".git" / "HEAD")
        assert watcher.is_ignored(tmp_path / "telegram_uploads" / "1_a.png")

    def test_ignored_names(self, watcher, tmp_path):
        assert watcher.is_ignored(tmp_path / "relay_interaction.log")

    def test_regular_file(self, watcher, tmp_path):
        assert not watcher.is_ignored(tmp_path / "src" / "main.py")
        assert not watcher.is_ignored(tmp_path / ".gitignore")


class TestHandler:
    async def test_created(self, handler, watcher, tmp_path):
        path = tmp_path / "a.txt"

        handler.on_created(FileCreatedEvent(str(path)))
        await _wait_for(lambda: watcher._callback.await_count == 1)

        watcher._callback.assert_awaited_once_with("created", path)

    async def test_burst_collapses_to_created(self, handler, watcher, tmp_path):
        """A create followed by writes is reported once, as a creation."""
        path = tmp_path / "a.txt"

        handler.on_created(FileCreatedEvent(str(path)))
        handler.on_modified(FileModifiedEvent(str(path)))
        handler.on_modified(FileModifiedEvent(str(path)))
        await _wait_for(lambda: watcher._callback.await_count >= 1)
        await asyncio.sleep(0.05)

        watcher._callback.assert_awaited_once_with("created", path)

    async def test_modified_and_deleted(self, handler, watcher, tmp_path):
        edited, removed = tmp_path / "a.txt", tmp_path / "b.txt"

        handler.on_modified(FileModifiedEvent(str(edited)))
        handler.on_deleted(FileDeletedEvent(str(removed)))
        await _wait_for(lambda: watcher._callback.await_count == 2)

        calls = {c.args for c in watcher._callback.await_args_list}
        assert calls == {("modified", edited), ("deleted", removed)}

    async def test_moved(self, handler, watcher, tmp_path):
        old, new = tmp_path / "old.txt", tmp_path / "new.txt"

        handler.on_moved(FileMovedEvent(str(old), str(new)))
        await _wait_for(lambda: watcher._callback.await_count == 2)

        calls = {c.args for c in watcher._callback.await_args_list}
        assert calls == {("deleted", old), ("created", new)}

    async def test_directories_and_ignored_paths_are_skipped(self, handler, watcher, tmp_path):
        handler.on_created(DirCreatedEvent(str(tmp_path / "build")))
        handler.on_created(FileCreatedEvent(str(tmp_path / ".git" / "index")))
        await asyncio.sleep(0.05)

        watcher._callback.assert_not_awaited()

    async def test_cancel_drops_pending_events(self, handler, watcher, tmp_path):
        handler.on_created(FileCreatedEvent(str(tmp_path / "a.txt")))
        handler.cancel()
        await asyncio.sleep(0.05)

        watcher._callback.assert_not_awaited()


class TestWorkspaceWatcher:
    async def test_dispatch_from_thread(self, watcher, tmp_path):
        path = tmp_path / "a.txt"

        await asyncio.to_thread(watcher.dispatch, "created", path)
        await _wait_for(lambda: watcher._callback.await_count == 1)

        watcher._callback.assert_awaited_once_with("created", path)

    async def test_callback_error_is_logged(self, watcher, tmp_path):
        watcher._callback.side_effect = RuntimeError("upload failed")

        watcher.dispatch("created", tmp_path / "a.txt")
        await _wait_for(lambda: watcher._callback.await_count == 1)
        await asyncio.sleep(0.01)

    async def test_start_and_stop(self, tmp_path):
        observer = MagicMock()
        w = WorkspaceWatcher(tmp_path, AsyncMock())

        with patch("antigravity_relay.watcher.Observer", return_value=observer):
            w.start()
            w.start()

        observer.schedule.assert_called_once()
        assert observer.schedule.call_args.args[1] == str(tmp_path)
        assert observer.schedule.call_args.kwargs["recursive"] is True
        observer.start.assert_called_once()
        assert w.running

        w.stop()

        observer.stop.assert_called_once()
        assert not w.running

    def test_dispatch_without_loop_is_noop(self, tmp_path):
        w = WorkspaceWatcher(Path(tmp_path), AsyncMock())
        w.dispatch("created", tmp_path / "a.txt")
        w._callback.assert_not_called()
