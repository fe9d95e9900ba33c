"""Coordination between settings, the directory watcher and the sorting engine."""

import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Union

from .config import Settings, SettingsStore
from .history import ActivityHistory
from .models import SortOutcome, UndoOutcome
from .notifications import Notifier
from .prompt import InteractivePrompter
from .sorter import FileSorter
from .watcher import DirectoryWatcher, NewFileEvent

logger = logging.getLogger(__name__)


class AutoSortService:
    """
    Runs the watch → match → sort pipeline.

    New-file events arrive on ``self.events``; ``run()`` (or ``run_once()``)
    consumes them on the calling thread, which is also where duplicate prompts
    are answered, and hands the sorting itself to a small worker pool.
    """

    def __init__(
        self,
        settings_store: SettingsStore,
        history: ActivityHistory,
        notifier: Optional[Notifier] = None,
        prompter: Optional[InteractivePrompter] = None,
        watcher: Optional[DirectoryWatcher] = None,
        max_workers: int = 2,
    ):
        self.store = settings_store
        # Only a prompter built here follows the ask_timeout setting
        self._owns_prompter = prompter is None
        self.prompter = prompter or InteractivePrompter(timeout=settings_store.settings.ask_timeout)
        self.watcher = watcher or DirectoryWatcher()
        self.events: queue.Queue = self.watcher.events
        self.sorter = FileSorter(settings_store, history, notifier=notifier, prompt=self.prompter)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="autosort-sort")
        self._active = False
        self._undo_lock = threading.Lock()
        self._unsubscribe = settings_store.subscribe(self._handle_settings_change)

    @property
    def is_active(self) -> bool:
        return self._active

    # --- Watching ---

    def start(self) -> bool:
        """Start watching the configured folder; False if not configured."""
        settings = self.store.settings
        if not settings.is_configured:
            logger.warning("AutoSort is not configured - need a watched folder, a base directory and a course")
            return False

        self._active = self.watcher.start_watching(settings.watched_folder)
        return self._active

    def stop(self) -> None:
        """Stop watching; pending sorts keep running."""
        self.watcher.stop_watching()
        self._active = False

    def _handle_settings_change(self, settings: Settings) -> None:
        """Re-point or stop the watcher when the configuration changes."""
        if self._owns_prompter and self.prompter.timeout != settings.ask_timeout:
            logger.debug(f"Duplicate prompt timeout set to {settings.ask_timeout}")
            self.prompter.timeout = settings.ask_timeout

        if settings.is_watching_enabled and settings.is_configured:
            if self.watcher.watched_directory != settings.watched_folder:
                logger.info(f"Watched folder changed to {settings.watched_folder}")
                self._active = self.watcher.start_watching(settings.watched_folder)
        elif self._active or self.watcher.is_watching:
            logger.info("Watching disabled or configuration incomplete - stopping watcher")
            self.stop()

    # --- Sorting ---

    def process_file(self, file_path: Union[str, Path]) -> SortOutcome:
        """Sort one file synchronously (manual drop)."""
        return self.sorter.process_file(file_path)

    def submit(self, file_path: Union[str, Path]) -> Future:
        """Sort one file on the worker pool."""
        return self._executor.submit(self.sorter.process_file, Path(file_path))

    def handle_event(self, event: NewFileEvent) -> Optional[Future]:
        if self.sorter.should_ignore_file(event.path):
            return None
        logger.debug(f"Processing new file: {event.path.name}")
        return self.submit(event.path)

    def run_once(self, timeout: float = 0.2) -> int:
        """Dispatch at most one pending event and answer waiting prompts."""
        dispatched = 0
        try:
            event = self.events.get(timeout=timeout)
        except queue.Empty:
            event = None

        if event is not None:
            if self.handle_event(event) is not None:
                dispatched = 1

        self.prompter.process_pending()
        return dispatched

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Coordination loop; returns when ``stop_event`` is set."""
        stop_event = stop_event or threading.Event()
        while not stop_event.is_set():
            self.run_once()

    # --- Undo ---

    def undo_last_move(self) -> UndoOutcome:
        """Undo with watching paused so the restored file isn't re-sorted."""
        with self._undo_lock:
            was_active = self._active
            if was_active:
                self.stop()
            try:
                return self.sorter.undo_last_move()
            finally:
                if was_active:
                    self.start()

    def shutdown(self) -> None:
        """Unsubscribe, close the watcher and wait for running sorts."""
        self._unsubscribe()
        self.watcher.close()
        self._executor.shutdown(wait=True, cancel_futures=True)
        self._active = False
