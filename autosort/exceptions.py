"""Exception hierarchy for AutoSort."""

from typing import Optional


class AutoSortError(Exception):
    """Base exception for AutoSort errors."""
    pass


class ConfigurationError(AutoSortError):
    """Raised when there's an issue with configuration."""
    pass


class DatabaseError(AutoSortError):
    """Raised when there's an issue with activity history storage."""
    pass


# --- Sorting errors ---

class SortError(AutoSortError):
    """Base class for failures of a single sort attempt."""

    kind = "sort_error"
    default_message = "File could not be sorted"

    def __init__(self, message: Optional[str] = None, cause: Optional[BaseException] = None):
        self.cause = cause
        if message is None:
            message = self.default_message
            if cause is not None:
                message = f"{message}: {cause}"
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)


class BaseDirectoryNotSet(SortError):
    kind = "base_directory_not_set"
    default_message = "Base directory is not configured"


class SourceFileNotFound(SortError):
    kind = "source_file_not_found"
    default_message = "Source file no longer exists"


class InvalidDestinationComponent(SortError):
    kind = "invalid_destination_component"
    default_message = "Destination folder name is not a valid path component"


class DestinationOutsideBaseDirectory(SortError):
    kind = "destination_outside_base_directory"
    default_message = "Destination resolves outside the base directory"


class UnsafeDestinationSymlink(SortError):
    kind = "unsafe_destination_symlink"
    default_message = "Destination folder is a symbolic link"


class FolderCreationFailed(SortError):
    kind = "folder_creation_failed"
    default_message = "Failed to create destination folder"


class MoveFailed(SortError):
    kind = "move_failed"
    default_message = "Failed to move file"


class RemoveFailed(SortError):
    kind = "remove_failed"
    default_message = "Failed to remove existing file"


class DuplicateSkipped(SortError):
    """Not a failure: the configured policy left the duplicate in place."""

    kind = "duplicate_skipped"
    default_message = "Duplicate file was skipped"


class DuplicateRenameExhausted(SortError):
    kind = "duplicate_rename_exhausted"
    default_message = "No free numbered name left for duplicate file"


# --- Undo errors ---

class UndoError(AutoSortError):
    """Base class for failures of an undo attempt."""

    kind = "undo_error"
    default_message = "Undo failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class NoRecentActivity(UndoError):
    kind = "no_recent_activity"
    default_message = "No recent file move to undo"


class SourcePathMissing(UndoError):
    kind = "source_path_missing"
    default_message = "Original file location is unknown"


class UndoSourceExists(UndoError):
    kind = "undo_source_exists"
    default_message = "A file already exists at the original location"


class UndoDestinationMissing(UndoError):
    kind = "undo_destination_missing"
    default_message = "Moved file could not be found at the destination"


class UndoPathOutsideAllowedRoots(UndoError):
    kind = "undo_path_outside_allowed_roots"
    default_message = "Recorded paths are outside the watched folder and base directory"
