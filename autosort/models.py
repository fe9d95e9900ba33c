"""Data classes shared by the matcher, sorter, history and auto-detect scanner."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .exceptions import SortError, UndoError


def _new_id() -> str:
    return str(uuid.uuid4())


class DuplicateHandling(str, Enum):
    """What to do when a file already exists at the computed destination."""
    RENAME = "rename"
    SKIP = "skip"
    REPLACE = "replace"
    ASK = "ask"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def description(self) -> str:
        return {
            DuplicateHandling.RENAME: "Keep both files by adding a number",
            DuplicateHandling.SKIP: "Leave the new file in the watch folder",
            DuplicateHandling.REPLACE: "Overwrite the existing file",
            DuplicateHandling.ASK: "Prompt every time a duplicate is found",
        }[self]


class DuplicateResolution(Enum):
    """A concrete decision for one duplicate, as returned by the prompt."""
    RENAME = "rename"
    SKIP = "skip"
    REPLACE = "replace"


@dataclass
class CourseMapping:
    """Maps a course code found in filenames to a destination folder name."""
    course_code: str
    folder_name: str
    is_enabled: bool = True
    id: str = field(default_factory=_new_id)

    def __post_init__(self):
        self.course_code = self.course_code.strip().upper()
        self.folder_name = self.folder_name.strip()

    @property
    def is_valid(self) -> bool:
        """Code must be non-empty alphanumeric and the folder name non-empty."""
        return bool(
            self.course_code
            and self.folder_name
            and all(ch.isalnum() for ch in self.course_code)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "code": self.course_code,
            "folder": self.folder_name,
            "enabled": self.is_enabled,
        }


@dataclass(frozen=True)
class MatchResult:
    """A course code and session number inferred from one filename."""
    course_code: str
    session_number: int
    mapping: CourseMapping


@dataclass
class SortedFileRecord:
    """A completed move, kept in the activity history as an undo target."""
    filename: str
    course_code: str
    session_number: int
    destination_path: Path
    source_path: Optional[Path] = None
    created_folder_paths: List[Path] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=_new_id)

    @property
    def destination_description(self) -> str:
        """Human-readable destination, e.g. ``CS101 / Session 2``."""
        return f"{self.course_code} / {Path(self.destination_path).parent.name}"

    @property
    def is_undoable(self) -> bool:
        return self.source_path is not None


@dataclass
class AutoDetectSuggestion:
    """A course code inferred for an existing folder under the base directory."""
    folder_name: str
    suggested_code: str
    match_count: int
    files_scanned: int
    existing_mapping_id: Optional[str] = None
    id: str = field(default_factory=_new_id)

    def __post_init__(self):
        self.suggested_code = self.suggested_code.upper()


@dataclass
class AutoDetectResult:
    """Outcome of one auto-detect scan (possibly partial if cancelled)."""
    suggestions: List[AutoDetectSuggestion] = field(default_factory=list)
    skipped_folder_count: int = 0
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False


class SortStatus(Enum):
    SORTED = "sorted"
    NO_MATCH = "no_match"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    FAILED = "failed"


@dataclass
class SortOutcome:
    """Result of processing one file; never raised, always returned."""
    status: SortStatus
    path: Path
    record: Optional[SortedFileRecord] = None
    error: Optional[SortError] = None

    @property
    def ok(self) -> bool:
        return self.status is not SortStatus.FAILED


@dataclass
class UndoOutcome:
    """Result of an undo attempt."""
    record: Optional[SortedFileRecord] = None
    error: Optional[Union[UndoError, SortError]] = None

    @property
    def ok(self) -> bool:
        return self.error is None
