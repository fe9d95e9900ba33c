"""
Directory watcher.

Turns raw filesystem notifications for one folder into "new file ready"
events. Bursts of notifications are coalesced into one directory rescan, the
rescan is diffed against the known file set, and every new name gets a
debounced readiness check before it is handed to the consumer.

All mutable watcher state lives on a dedicated thread running an asyncio event
loop; public methods hop onto that loop and wait for the answer.
"""

import asyncio
import logging
import os
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, FrozenSet, Optional, Set, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .constants import DEBOUNCE_INTERVAL, EVENT_WINDOW_INTERVAL

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NewFileEvent:
    """A file that appeared in the watched folder and can be read."""
    path: Path
    detected_at: datetime = field(default_factory=datetime.now)


class WatcherEventHandler(FileSystemEventHandler):
    """Forwards every relevant raw event to the watcher's loop."""

    # Reads (including our own readiness checks) never add files
    IGNORED_EVENT_TYPES = ("opened", "closed_no_write")

    def __init__(self, watcher: "DirectoryWatcher"):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent):
        if event.event_type in self.IGNORED_EVENT_TYPES:
            return
        self.watcher.notify_change()


class DirectoryWatcher:
    """Watches one directory (non-recursively) for newly added files."""

    def __init__(
        self,
        events: Optional[queue.Queue] = None,
        event_window: float = EVENT_WINDOW_INTERVAL,
        debounce: float = DEBOUNCE_INTERVAL,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        self.events: queue.Queue = events if events is not None else queue.Queue()
        self.event_window = event_window
        self.debounce = debounce
        self._observer_factory = observer_factory
        self._handler = WatcherEventHandler(self)

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._thread_lock = threading.Lock()

        # Loop-confined state
        self._directory: Optional[Path] = None
        self._observer = None
        self._known_files: Set[str] = set()
        self._pending: Dict[str, asyncio.TimerHandle] = {}
        self._rescan_handle: Optional[asyncio.TimerHandle] = None

    # --- Public API ---

    def start_watching(self, directory: Union[str, Path]) -> bool:
        """Start watching ``directory``; returns False if it can't be watched."""
        return self._sync(self._start, Path(directory))

    def stop_watching(self) -> None:
        """Stop the observer and cancel every pending timer."""
        if self._loop is None:
            return
        self._sync(self._stop)

    @property
    def is_watching(self) -> bool:
        if self._loop is None:
            return False
        return self._sync(lambda: self._observer is not None)

    @property
    def watched_directory(self) -> Optional[Path]:
        if self._loop is None:
            return None
        return self._sync(lambda: self._directory)

    def known_files(self) -> FrozenSet[str]:
        """Snapshot of the file names the watcher already knows about."""
        if self._loop is None:
            return frozenset()
        return self._sync(lambda: frozenset(self._known_files))

    def refresh_known_files(self) -> None:
        """Re-snapshot the folder so current files are not reported as new."""
        if self._loop is None:
            return
        self._sync(self._refresh)

    def notify_change(self) -> None:
        """Called from the observer thread for each raw filesystem event."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._schedule_rescan)
        except RuntimeError:
            logger.debug("Watcher loop is shutting down - dropping filesystem event")

    def close(self) -> None:
        """Stop watching and shut down the watcher thread."""
        self.stop_watching()
        with self._thread_lock:
            loop, thread = self._loop, self._thread
            self._loop, self._thread = None, None
        if loop is not None:
            loop.call_soon_threadsafe(loop.stop)
            if thread is not threading.current_thread():
                thread.join(timeout=5)

    # --- Execution context ---

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._thread_lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                started = threading.Event()

                def run():
                    asyncio.set_event_loop(loop)
                    loop.call_soon(started.set)
                    try:
                        loop.run_forever()
                    finally:
                        loop.close()

                thread = threading.Thread(target=run, name="autosort-watcher", daemon=True)
                thread.start()
                started.wait()
                self._loop, self._thread = loop, thread
            return self._loop

    def _sync(self, func, *args):
        """Run ``func`` on the watcher thread and return its result."""
        loop = self._ensure_loop()
        if threading.current_thread() is self._thread:
            return func(*args)

        async def runner():
            return func(*args)

        return asyncio.run_coroutine_threadsafe(runner(), loop).result()

    # --- Loop-confined operations ---

    def _start(self, directory: Path) -> bool:
        self._stop()

        if not directory.is_dir():
            logger.warning(f"Cannot watch missing folder: {directory}")
            return False

        snapshot = self._current_files(directory)
        observer = self._observer_factory()
        try:
            observer.schedule(self._handler, str(directory), recursive=False)
            observer.start()
        except OSError as e:
            logger.error(f"Failed to watch '{directory}': {e}")
            return False

        self._directory = directory
        self._known_files = snapshot or set()
        self._observer = observer
        logger.info(f"Watching folder: {directory} ({len(self._known_files)} existing files)")
        return True

    def _stop(self) -> None:
        if self._rescan_handle is not None:
            self._rescan_handle.cancel()
            self._rescan_handle = None

        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()

        observer, self._observer = self._observer, None
        if observer is not None:
            try:
                observer.stop()
                observer.join(timeout=5)
                logger.info("File system monitoring stopped")
            except Exception as e:
                logger.error(f"Error stopping observer: {e}")

        self._directory = None
        self._known_files = set()

    def _refresh(self) -> None:
        if self._directory is None:
            return
        snapshot = self._current_files(self._directory)
        if snapshot is not None:
            self._known_files = snapshot

    def _schedule_rescan(self) -> None:
        """Coalesce a burst of events into a single rescan."""
        if self._observer is None or self._rescan_handle is not None:
            return
        self._rescan_handle = self._loop.call_later(self.event_window, self._rescan)

    def _rescan(self) -> None:
        self._rescan_handle = None
        if self._directory is None:
            return

        current = self._current_files(self._directory)
        if current is None:
            return

        new_files = current - self._known_files
        self._known_files = current

        for filename in sorted(new_files):
            self._schedule_readiness_check(filename)

    def _schedule_readiness_check(self, filename: str) -> None:
        """Debounce: re-detecting a pending name restarts its timer."""
        existing = self._pending.pop(filename, None)
        if existing is not None:
            existing.cancel()
        self._pending[filename] = self._loop.call_later(self.debounce, self._check_ready, filename)

    def _check_ready(self, filename: str) -> None:
        self._pending.pop(filename, None)
        if self._directory is None:
            return

        file_path = self._directory / filename
        if not self._is_file_ready(file_path):
            logger.debug(f"File not ready, dropping: '{filename}'")
            return

        logger.debug(f"New file detected: {filename}")
        self.events.put(NewFileEvent(file_path))

    @staticmethod
    def _current_files(directory: Path) -> Optional[Set[str]]:
        """Names of visible regular files, or None if the folder can't be read."""
        try:
            with os.scandir(directory) as it:
                return {
                    entry.name for entry in it
                    if not entry.name.startswith('.') and entry.is_file(follow_symlinks=False)
                }
        except OSError as e:
            logger.warning(f"Cannot list watched folder '{directory}': {e}")
            return None

    @staticmethod
    def _is_file_ready(file_path: Path) -> bool:
        """Exists and opens for reading, a proxy for 'write complete'."""
        try:
            if not file_path.is_file():
                return False
            with open(file_path, 'rb') as f:
                f.read(1)
            return True
        except OSError:
            return False
