"""
Course auto-detection.

Scans the existing folders under the base directory and suggests a course
code for each one, inferred from the names of the files it already holds.
The scan is read-only and never moves anything.
"""

import logging
import os
import re
import threading
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Pattern, Sequence, Tuple, Union

from .constants import MAX_FILES_PER_FOLDER
from .matcher import SESSION_DELIMITER, effective_session_keywords, keyword_alternation
from .models import AutoDetectResult, AutoDetectSuggestion, CourseMapping

logger = logging.getLogger(__name__)

CancellationCheck = Callable[[], bool]


class ScanCancelled(Exception):
    """Internal signal used to unwind a cancelled scan."""
    pass


def build_inference_regex(keywords: Sequence[str]) -> Pattern:
    """Alphanumeric token directly before a keyword + session number."""
    pattern = (
        r"(?:^|[^A-Za-z0-9])([A-Za-z0-9]+)"
        + SESSION_DELIMITER
        + keyword_alternation(keywords)
        + SESSION_DELIMITER
        + r"(\d{1,2})(?!\d)"
    )
    return re.compile(pattern, re.IGNORECASE)


def select_best_code(counts: Counter) -> Optional[Tuple[str, int]]:
    """Highest count, then longer code, then case-insensitive alphabetical."""
    if not counts:
        return None
    code, count = min(counts.items(), key=lambda item: (-item[1], -len(item[0]), item[0].lower()))
    return code, count


def _list_visible(directory: Path) -> List[os.DirEntry]:
    """Non-hidden entries of a directory, sorted by name."""
    with os.scandir(directory) as it:
        entries = [entry for entry in it if not entry.name.startswith('.')]
    entries.sort(key=lambda entry: entry.name)
    return entries


class CourseAutoDetector:
    """Infers course-code-to-folder suggestions from an existing course tree."""

    def __init__(self, max_files_per_folder: int = MAX_FILES_PER_FOLDER):
        self.max_files_per_folder = max_files_per_folder

    def scan(
        self,
        base_directory: Union[str, Path],
        session_keywords: Iterable[str],
        is_cancelled: Optional[CancellationCheck] = None,
        existing_mappings: Sequence[CourseMapping] = (),
    ) -> AutoDetectResult:
        """
        Scan the top-level folders of ``base_directory``.

        Cancellation is cooperative: ``is_cancelled`` is checked before every
        directory listing and for every file. A cancelled scan returns what it
        has collected so far with ``cancelled`` set.
        """
        base_directory = Path(base_directory)
        is_cancelled = is_cancelled or (lambda: False)
        regex = build_inference_regex(effective_session_keywords(session_keywords))
        existing_by_code = {m.course_code: m for m in existing_mappings}
        result = AutoDetectResult()

        try:
            self._check(is_cancelled)
            try:
                top_level = _list_visible(base_directory)
            except OSError as e:
                result.errors.append(f"Failed to scan base directory: {e}")
                return result

            for entry in top_level:
                self._check(is_cancelled)
                if not entry.is_dir(follow_symlinks=False):
                    continue

                try:
                    counts, files_scanned = self._scan_course_folder(Path(entry.path), regex, is_cancelled)
                except OSError as e:
                    logger.warning(f"Failed to scan '{entry.name}': {e}")
                    result.errors.append(f"Failed to scan {entry.name}: {e}")
                    continue

                best = select_best_code(counts)
                if best is None:
                    result.skipped_folder_count += 1
                    continue

                code, count = best
                existing = existing_by_code.get(code)
                result.suggestions.append(AutoDetectSuggestion(
                    folder_name=entry.name,
                    suggested_code=code,
                    match_count=count,
                    files_scanned=files_scanned,
                    existing_mapping_id=existing.id if existing else None,
                ))
                logger.debug(f"Suggested '{code}' for '{entry.name}' ({count}/{files_scanned} names)")

        except ScanCancelled:
            logger.info("Auto-detect scan cancelled")
            result.cancelled = True

        return result

    def _scan_course_folder(
        self,
        folder: Path,
        regex: Pattern,
        is_cancelled: CancellationCheck,
    ) -> Tuple[Counter, int]:
        """Count candidate codes in one course folder and its session folders."""
        counts: Counter = Counter()
        files_scanned = 0
        remaining_slots = self.max_files_per_folder

        self._check(is_cancelled)
        children = _list_visible(folder)

        # Top-level files in the course folder
        for entry in children:
            self._check(is_cancelled)
            if remaining_slots <= 0:
                break
            if not entry.is_file(follow_symlinks=False):
                continue
            files_scanned += 1
            remaining_slots -= 1
            self._tally(entry.name, regex, counts)

        # Session folders: their names and their files, no deeper
        for entry in children:
            self._check(is_cancelled)
            if not entry.is_dir(follow_symlinks=False):
                continue
            files_scanned += 1
            self._tally(entry.name, regex, counts)

            if remaining_slots <= 0:
                continue

            self._check(is_cancelled)
            for session_entry in _list_visible(Path(entry.path)):
                self._check(is_cancelled)
                if remaining_slots <= 0:
                    break
                if not session_entry.is_file(follow_symlinks=False):
                    continue
                files_scanned += 1
                remaining_slots -= 1
                self._tally(session_entry.name, regex, counts)

        return counts, files_scanned

    @staticmethod
    def _tally(name: str, regex: Pattern, counts: Counter) -> None:
        match = regex.search(name)
        if match:
            counts[match.group(1).upper()] += 1

    @staticmethod
    def _check(is_cancelled: CancellationCheck) -> None:
        if is_cancelled():
            raise ScanCancelled()


class AutoDetectJob:
    """A scan running on a background thread that can be cancelled."""

    def __init__(
        self,
        base_directory: Union[str, Path],
        session_keywords: Iterable[str],
        existing_mappings: Sequence[CourseMapping] = (),
        detector: Optional[CourseAutoDetector] = None,
    ):
        self._cancel_event = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="autosort-autodetect")
        detector = detector or CourseAutoDetector()
        self._future: Future = self._executor.submit(
            detector.scan,
            base_directory,
            list(session_keywords),
            self._cancel_event.is_set,
            list(existing_mappings),
        )
        self._executor.shutdown(wait=False)

    def cancel(self) -> None:
        """Ask the scan to stop at its next check."""
        self._cancel_event.set()

    @property
    def is_cancelled(self) -> bool:
        """True once cancel() has been called."""
        return self._cancel_event.is_set()

    def done(self) -> bool:
        """True when the scan has finished, cancelled or not."""
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> AutoDetectResult:
        """Wait for the scan and return its (possibly partial) result."""
        return self._future.result(timeout=timeout)
