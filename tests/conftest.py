"""Shared fixtures for the AutoSort test suite."""

from pathlib import Path
from typing import List, Tuple

import pytest

from autosort.config import Settings, SettingsStore
from autosort.history import ActivityHistory
from autosort.models import CourseMapping, DuplicateHandling, DuplicateResolution
from autosort.notifications import Notifier
from autosort.sorter import FileSorter
from autosort.watcher import DirectoryWatcher


class RecordingNotifier(Notifier):
    """Keeps every notification for assertions."""

    def __init__(self):
        self.events: List[Tuple[str, tuple]] = []

    def file_sorted(self, record):
        self.events.append(("file_sorted", (record,)))

    def sort_failed(self, filename, description):
        self.events.append(("sort_failed", (filename, description)))

    def undo_succeeded(self, record):
        self.events.append(("undo_succeeded", (record,)))

    def undo_failed(self, filename, description):
        self.events.append(("undo_failed", (filename, description)))

    def kinds(self) -> List[str]:
        return [kind for kind, _ in self.events]


class ScriptedPrompt:
    """Duplicate prompt that returns a fixed answer and records the calls."""

    def __init__(self, answer: DuplicateResolution = DuplicateResolution.SKIP):
        self.answer = answer
        self.calls: List[Tuple[str, Path]] = []

    def __call__(self, filename, destination):
        self.calls.append((filename, destination))
        return self.answer


@pytest.fixture
def watch_dir(tmp_path) -> Path:
    path = tmp_path / "Downloads"
    path.mkdir()
    return path


@pytest.fixture
def base_dir(tmp_path) -> Path:
    path = tmp_path / "Courses"
    path.mkdir()
    return path


@pytest.fixture
def settings(watch_dir, base_dir) -> Settings:
    return Settings(
        watched_folder=watch_dir,
        base_directory=base_dir,
        course_mappings=[
            CourseMapping(course_code="CS101", folder_name="Intro to CS"),
            CourseMapping(course_code="BLK", folder_name="BLOCKCHAIN"),
        ],
        duplicate_handling=DuplicateHandling.RENAME,
    )


@pytest.fixture
def store(settings) -> SettingsStore:
    return SettingsStore(settings)


@pytest.fixture
def history(tmp_path) -> ActivityHistory:
    return ActivityHistory(tmp_path / "activity.db")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def prompt() -> ScriptedPrompt:
    return ScriptedPrompt()


@pytest.fixture
def sorter(store, history, notifier, prompt) -> FileSorter:
    return FileSorter(store, history, notifier=notifier, prompt=prompt)


@pytest.fixture
def make_file():
    """Create a file with some content and return its path."""

    def _make(directory: Path, name: str, content: str = "content") -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        path.write_text(content)
        return path

    return _make


class FakeObserver:
    """Stands in for a watchdog Observer; events are dispatched by the test."""

    instances: List["FakeObserver"] = []

    def __init__(self):
        self.handler = None
        self.path = None
        self.started = False
        self.stopped = False
        FakeObserver.instances.append(self)

    def schedule(self, handler, path, recursive=False):
        self.handler, self.path = handler, path

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass


@pytest.fixture
def observers() -> List[FakeObserver]:
    FakeObserver.instances.clear()
    return FakeObserver.instances


@pytest.fixture
def watcher(observers):
    watcher = DirectoryWatcher(event_window=0.05, debounce=0.1, observer_factory=FakeObserver)
    yield watcher
    watcher.close()
