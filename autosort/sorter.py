"""
Sorting engine and undo.

A matched file is moved to ``<base>/<course folder>/<session folder>/<name>``.
Every destination folder is proven to stay inside the base directory before
and after it is created, duplicates are resolved by the configured policy,
and each move is recorded so the most recent one can be undone.
"""

import logging
import os
import shutil
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from .config import Settings, SettingsStore
from .constants import MAX_RENAME_ATTEMPTS
from .exceptions import (
    BaseDirectoryNotSet,
    DatabaseError,
    DuplicateRenameExhausted,
    DuplicateSkipped,
    FolderCreationFailed,
    MoveFailed,
    NoRecentActivity,
    RemoveFailed,
    SortError,
    SourceFileNotFound,
    SourcePathMissing,
    UndoDestinationMissing,
    UndoError,
    UndoPathOutsideAllowedRoots,
    UndoSourceExists,
)
from .history import ActivityHistory
from .matcher import MatcherCache
from .models import (
    DuplicateHandling,
    DuplicateResolution,
    MatchResult,
    SortedFileRecord,
    SortOutcome,
    SortStatus,
    UndoOutcome,
)
from .notifications import LoggingNotifier, Notifier
from .paths import (
    canonicalize,
    ensure_safe_folder,
    ensure_within,
    is_within,
    is_within_any,
    validate_path_component,
)
from .prompt import InteractivePrompter

logger = logging.getLogger(__name__)

DuplicatePrompt = Callable[[str, Path], DuplicateResolution]

IGNORED_PREFIXES = ('.', '~')
IGNORED_NAMES = ('thumbs.db', 'desktop.ini')
IGNORED_EXTENSIONS = ('.tmp', '.crdownload', '.part', '.download', '.swp')


def unique_destination_path(destination: Path, max_attempts: int = MAX_RENAME_ATTEMPTS) -> Path:
    """
    First free ``name (N).ext`` for N in 1..max_attempts.

    Raises DuplicateRenameExhausted instead of handing back the colliding
    path, which would overwrite the existing file.
    """
    stem, suffix = destination.stem, destination.suffix
    for index in range(1, max_attempts + 1):
        candidate = destination.with_name(f"{stem} ({index}){suffix}")
        if not os.path.lexists(candidate):
            return candidate

    raise DuplicateRenameExhausted(
        f"Could not generate unique name after {max_attempts} attempts for: {destination.name}"
    )


class FileSorter:
    """Moves matched files into the course tree and undoes the latest move."""

    def __init__(
        self,
        settings_store: SettingsStore,
        history: ActivityHistory,
        notifier: Optional[Notifier] = None,
        prompt: Optional[DuplicatePrompt] = None,
        matcher_cache: Optional[MatcherCache] = None,
    ):
        self.store = settings_store
        self.history = history
        self.notifier = notifier or LoggingNotifier()
        self.prompt = prompt or InteractivePrompter()
        self.matcher_cache = matcher_cache or MatcherCache()
        self.stats = {
            'files_processed': 0,
            'files_sorted': 0,
            'duplicates_skipped': 0,
            'no_match': 0,
            'errors': 0,
        }
        self._stats_lock = threading.Lock()
        self._folder_locks: Dict[str, threading.Lock] = {}
        self._folder_locks_guard = threading.Lock()

    # --- Matching ---

    def should_ignore_file(self, file_path: Union[str, Path]) -> bool:
        """Hidden, system and partially-downloaded files are never sorted."""
        file_path = Path(file_path)
        name = file_path.name.lower()

        if name.startswith(IGNORED_PREFIXES) or name in IGNORED_NAMES:
            logger.debug(f"Ignoring hidden/system file: {file_path.name}")
            return True

        if file_path.suffix.lower() in IGNORED_EXTENSIONS:
            logger.debug(f"Ignoring temp file: {file_path.name}")
            return True

        return False

    def match(self, filename: str, settings: Optional[Settings] = None) -> Optional[MatchResult]:
        """Match a filename with the matcher for the current settings."""
        settings = settings or self.store.settings
        matcher = self.matcher_cache.get(settings.course_mappings, settings.session_keywords)
        return matcher.match(filename)

    # --- Operation boundary ---

    def process_file(self, file_path: Union[str, Path]) -> SortOutcome:
        """
        Match and sort one file. Never raises: every outcome, including
        failures, comes back as a SortOutcome.
        """
        file_path = Path(file_path)
        settings = self.store.settings
        self._bump('files_processed')

        match = self.match(file_path.name, settings)
        if match is None:
            logger.info(f"No match found for '{file_path.name}'")
            self._bump('no_match')
            return SortOutcome(SortStatus.NO_MATCH, file_path)

        logger.debug(
            f"Match found for '{file_path.name}' - Course: {match.course_code}, Session: {match.session_number}"
        )

        try:
            record = self.sort_file(file_path, match, settings)
        except DuplicateSkipped as e:
            logger.info(f"Duplicate file skipped: '{file_path.name}'")
            self._bump('duplicates_skipped')
            return SortOutcome(SortStatus.SKIPPED_DUPLICATE, file_path, error=e)
        except SortError as e:
            return self._failed(file_path, e, settings)
        except Exception as e:
            logger.error(f"Unexpected error processing '{file_path.name}': {e}", exc_info=True)
            return self._failed(file_path, SortError(cause=e), settings)

        self._bump('files_sorted')
        try:
            self.history.add(record)
        except DatabaseError as e:
            logger.error(f"Failed to record move of '{record.filename}': {e}")

        self._log_sorted(record)
        self._notify(settings, 'file_sorted', record)
        return SortOutcome(SortStatus.SORTED, file_path, record=record)

    def _failed(self, file_path: Path, error: SortError, settings: Settings) -> SortOutcome:
        logger.error(f"Error sorting '{file_path.name}': {error.message}")
        self._bump('errors')
        self._notify(settings, 'sort_failed', file_path.name, error.message)
        return SortOutcome(SortStatus.FAILED, file_path, error=error)

    # --- Sorting ---

    def sort_file(
        self,
        source: Union[str, Path],
        match: MatchResult,
        settings: Optional[Settings] = None,
    ) -> SortedFileRecord:
        """Move ``source`` into its course/session folder. Raises SortError."""
        settings = settings or self.store.settings
        source = Path(os.path.abspath(source))

        # Step 1: Base directory must be configured
        if settings.base_directory is None:
            raise BaseDirectoryNotSet()
        base = Path(settings.base_directory)

        # Step 2: Source must still exist
        if not source.is_file():
            raise SourceFileNotFound(f"Source file no longer exists: {source.name}")

        # Step 3: Folder names must be single path components
        course_folder_name = validate_path_component(match.mapping.folder_name, "course folder name")
        session_folder_name = validate_path_component(
            settings.session_folder_name(match.session_number), "session folder name"
        )

        course_folder = base / course_folder_name
        session_folder = course_folder / session_folder_name

        # Only origins inside an allowed root can be undone
        allowed = is_within_any(source, (settings.watched_folder, base))

        answer: Optional[DuplicateResolution] = None
        while True:
            with self._folder_lock(session_folder):
                placed = self._place_file(source, base, course_folder, session_folder, settings, answer)
            if placed is not None:
                break
            # Ask with no folder lock held, then re-check the destination
            answer = self.prompt(source.name, session_folder / source.name)

        destination, created = placed

        # Step 10: Build the record
        if not allowed:
            logger.debug(f"'{source.name}' came from outside the allowed roots - move is not undoable")

        return SortedFileRecord(
            filename=source.name,
            course_code=match.course_code,
            session_number=match.session_number,
            source_path=source if allowed else None,
            destination_path=destination,
            created_folder_paths=created,
        )

    def _place_file(
        self,
        source: Path,
        base: Path,
        course_folder: Path,
        session_folder: Path,
        settings: Settings,
        answer: Optional[DuplicateResolution],
    ) -> Optional[Tuple[Path, List[Path]]]:
        """
        Create the folders, resolve any duplicate and move the file. Runs with
        the session folder lock held.

        Returns None when a duplicate needs an answer from the prompt that has
        not been given yet; nothing has been moved in that case.
        """
        # Step 4: Containment and symlink checks before creating anything
        self._check_folders(base, course_folder, session_folder)

        # Step 5: Remember what existed so undo only removes what we made
        course_existed = os.path.lexists(course_folder)
        session_existed = os.path.lexists(session_folder)

        # Step 6: Create missing folders and re-check them
        created = self._create_folders(base, course_folder, session_folder, course_existed, session_existed)

        try:
            # Steps 7-8: Resolve duplicates, then prove the final path is contained
            destination = session_folder / source.name
            if os.path.lexists(destination):
                resolution = answer or self._policy_resolution(settings.duplicate_handling)
                if resolution is None:
                    self._remove_empty_folders(created, base)
                    return None
                destination = self._resolve_duplicate(resolution, source, destination)
            ensure_within(destination, base)

            # Step 9: Move
            try:
                shutil.move(str(source), str(destination))
            except OSError as e:
                raise MoveFailed(cause=e) from e
        except SortError:
            self._remove_empty_folders(created, base)
            raise

        return destination, created

    def _check_folders(self, base: Path, course_folder: Path, session_folder: Path) -> None:
        """Both destination folders stay inside base and are not symlinks."""
        ensure_safe_folder(course_folder, base)
        ensure_safe_folder(session_folder, base)

    def _create_folders(
        self,
        base: Path,
        course_folder: Path,
        session_folder: Path,
        course_existed: bool,
        session_existed: bool,
    ) -> List[Path]:
        """Create the session folder (and its course folder); deepest first."""
        if session_existed:
            return []

        try:
            session_folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FolderCreationFailed(cause=e) from e

        created = [session_folder]
        if not course_existed:
            created.append(course_folder)

        try:
            self._check_folders(base, course_folder, session_folder)
        except SortError:
            self._remove_empty_folders(created, base)
            raise

        logger.debug(f"Created folder: {session_folder}")
        return created

    def _resolve_duplicate(self, resolution: DuplicateResolution, source: Path, destination: Path) -> Path:
        """Apply a decision for a file that already sits at destination."""
        if resolution is DuplicateResolution.SKIP:
            raise DuplicateSkipped(f"'{source.name}' already exists in '{destination.parent.name}'")

        if resolution is DuplicateResolution.REPLACE:
            try:
                destination.unlink()
            except OSError as e:
                raise RemoveFailed(cause=e) from e
            logger.info(f"Replacing existing file: {destination}")
            return destination

        renamed = unique_destination_path(destination)
        logger.debug(f"Duplicate '{destination.name}' renamed to '{renamed.name}'")
        return renamed

    @staticmethod
    def _policy_resolution(policy: DuplicateHandling) -> Optional[DuplicateResolution]:
        """The fixed decision for a policy; None for Ask."""
        if policy is DuplicateHandling.ASK:
            return None
        return DuplicateResolution(policy.value)

    # --- Undo ---

    def undo_last_move(self) -> UndoOutcome:
        """Move the most recently sorted file back. Never raises."""
        settings = self.store.settings
        record = None
        try:
            record = self.history.latest()
            reverted = self._revert(record, settings)
        except (UndoError, SortError) as e:
            return self._undo_failed(record, e, settings)
        except DatabaseError as e:
            return self._undo_failed(record, UndoError(f"Activity history unavailable: {e}"), settings)

        logger.info(f"✓ Undo: '{reverted.filename}' → {reverted.source_path}")
        self._notify(settings, 'undo_succeeded', reverted)
        return UndoOutcome(record=reverted)

    def _undo_failed(self, record: Optional[SortedFileRecord], error, settings: Settings) -> UndoOutcome:
        logger.warning(f"Undo failed: {error.message}")
        filename = record.filename if record else "file"
        self._notify(settings, 'undo_failed', filename, error.message)
        return UndoOutcome(record=record, error=error)

    def _revert(self, record: Optional[SortedFileRecord], settings: Settings) -> SortedFileRecord:
        if record is None:
            raise NoRecentActivity()

        if record.source_path is None:
            raise SourcePathMissing()

        source = Path(record.source_path)
        destination = Path(record.destination_path)
        base = settings.base_directory

        if (
            base is None
            or not is_within(destination, base)
            or not is_within_any(source, (settings.watched_folder, base))
        ):
            raise UndoPathOutsideAllowedRoots()

        if not destination.is_file():
            raise UndoDestinationMissing()

        if os.path.lexists(source):
            raise UndoSourceExists()

        with self._folder_lock(destination.parent):
            # The record leaves the history before the file moves, and comes
            # back if the move fails
            try:
                removed = self.history.remove(record.id)
            except DatabaseError as e:
                raise UndoError(f"Activity history unavailable: {e}") from e
            if not removed:
                raise NoRecentActivity()

            try:
                if not source.parent.exists():
                    try:
                        source.parent.mkdir(parents=True, exist_ok=True)
                    except OSError as e:
                        raise FolderCreationFailed(cause=e) from e

                try:
                    shutil.move(str(destination), str(source))
                except OSError as e:
                    raise MoveFailed(cause=e) from e
            except SortError:
                self._restore_record(record)
                raise

            self._remove_empty_folders(record.created_folder_paths, base)

        return record

    def _restore_record(self, record: SortedFileRecord) -> None:
        """Put a record back at the head of the history after a failed undo."""
        try:
            self.history.add(record)
        except DatabaseError as e:
            logger.error(f"Could not restore history entry for '{record.filename}': {e}")

    def _remove_empty_folders(self, folders: Iterable[Path], base: Path) -> None:
        """Remove folders deepest-first; only empty ones inside base, never base itself."""
        canonical_base = canonicalize(base)
        for folder in sorted((Path(f) for f in folders), key=lambda p: len(p.parts), reverse=True):
            if os.path.islink(folder) or not folder.is_dir():
                continue
            if not is_within(folder, base) or canonicalize(folder) == canonical_base:
                logger.warning(f"Not removing folder outside base directory: {folder}")
                continue
            try:
                if any(folder.iterdir()):
                    logger.debug(f"Keeping non-empty folder: {folder}")
                    continue
                folder.rmdir()
                logger.debug(f"Removed empty folder: {folder}")
            except OSError as e:
                logger.warning(f"Could not remove folder '{folder}': {e}")

    # --- Helpers ---

    @contextmanager
    def _folder_lock(self, folder: Path):
        """Serialize mutations that target the same destination folder."""
        key = str(canonicalize(folder))
        with self._folder_locks_guard:
            lock = self._folder_locks.setdefault(key, threading.Lock())
        with lock:
            yield

    def _bump(self, counter: str) -> None:
        with self._stats_lock:
            self.stats[counter] += 1

    def _notify(self, settings: Settings, event: str, *args) -> None:
        if not settings.show_notifications:
            return
        try:
            getattr(self.notifier, event)(*args)
        except Exception as e:
            logger.warning(f"Notification '{event}' failed: {e}")

    @staticmethod
    def _log_sorted(record: SortedFileRecord) -> None:
        try:
            relative_path = record.destination_path.relative_to(Path.home())
            logger.info(f"✓ [{record.course_code}] '{record.filename}' → {relative_path}")
        except ValueError:
            logger.info(f"✓ [{record.course_code}] '{record.filename}' → {record.destination_path}")
