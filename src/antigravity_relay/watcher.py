"""Workspace watcher — report file changes in the watched folder to the chat."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 0.5
IGNORED_PARTS = ("node_modules", ".git")

FileEventCallback = Callable[[str, Path], Awaitable[None]]


class _WorkspaceEventHandler(FileSystemEventHandler):
    """Debounces watchdog events per path and forwards them to the event loop."""

    def __init__(self, watcher: WorkspaceWatcher) -> None:
        super().__init__()
        self._watcher = watcher
        self._timers: dict[str, tuple[threading.Timer, str]] = {}
        self._lock = threading.Lock()

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._debounce("created", event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._debounce("modified", event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._debounce("deleted", event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._debounce("deleted", event.src_path)
            self._debounce("created", event.dest_path)

    def _debounce(self, kind: str, src_path: str | bytes) -> None:
        """Collapse a burst (create + modify from one write) into its first kind."""
        path = Path(src_path.decode() if isinstance(src_path, bytes) else src_path)
        if self._watcher.is_ignored(path):
            return

        key = str(path)
        with self._lock:
            existing = self._timers.get(key)
            if existing:
                timer, previous = existing
                timer.cancel()
                # A write right after creation is still a creation
                if kind == "modified" and previous == "created":
                    kind = "created"
            timer = threading.Timer(DEBOUNCE_SECONDS, self._fire, args=[kind, path])
            timer.daemon = True
            self._timers[key] = (timer, kind)
            timer.start()

    def _fire(self, kind: str, path: Path) -> None:
        with self._lock:
            self._timers.pop(str(path), None)
        self._watcher.dispatch(kind, path)

    def cancel(self) -> None:
        with self._lock:
            for timer, _ in self._timers.values():
                timer.cancel()
            self._timers.clear()


class WorkspaceWatcher:
    """Watches ``root`` recursively and forwards created/modified/deleted files.

    Watchdog delivers events on its own thread; the callback is scheduled on
    the asyncio loop that called ``start``.
    """

    def __init__(
        self,
        root: Path,
        callback: FileEventCallback,
        ignore_names: list[str] | None = None,
    ) -> None:
        self._root = root
        self._callback = callback
        self._ignore_names = set(ignore_names or [])
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: Observer | None = None
        self._handler: _WorkspaceEventHandler | None = None

    @property
    def root(self) -> Path:
        return self._root

    @property
    def running(self) -> bool:
        return self._observer is not None

    def is_ignored(self, path: Path) -> bool:
        return any(part in IGNORED_PARTS or part in self._ignore_names for part in path.parts)

    def start(self) -> None:
        if self._observer is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._handler = _WorkspaceEventHandler(self)
        self._observer = Observer()
        self._observer.schedule(self._handler, str(self._root), recursive=True)
        self._observer.daemon = True
        self._observer.start()
        logger.info(f"Watching directory: {self._root}")

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=2)
        self._observer = None
        if self._handler:
            self._handler.cancel()
            self._handler = None
        logger.info("Workspace watcher stopped")

    def dispatch(self, kind: str, path: Path) -> None:
        """Hand an event to the loop. Safe to call from any thread."""
        if self._loop is None or self._loop.is_closed():
            return
        future = asyncio.run_coroutine_threadsafe(self._callback(kind, path), self._loop)
        future.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error(f"Error handling file event: {exc}")
