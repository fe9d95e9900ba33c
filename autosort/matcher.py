"""Filename pattern matching: course codes and session numbers."""

import logging
import re
import threading
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple

from .constants import DEFAULT_SESSION_KEYWORDS, MAX_SESSION, MIN_SESSION
from .models import CourseMapping, MatchResult

logger = logging.getLogger(__name__)

# Characters allowed on either side of a course code
COURSE_DELIMITER = r"[_\-\s.]"

# Optional separator between a session keyword and its number
SESSION_DELIMITER = r"(?:[\s_\-\.]*)"


# --- Session keyword helpers ---

def normalize_session_keywords(keywords: Iterable[str]) -> List[str]:
    """Trim and deduplicate keywords case-insensitively, keeping first spelling."""
    seen = set()
    normalized = []
    for keyword in keywords:
        trimmed = (keyword or "").strip()
        if not trimmed:
            continue
        key = trimmed.lower()
        if key in seen:
            continue
        seen.add(key)
        normalized.append(trimmed)
    return normalized


def effective_session_keywords(keywords: Iterable[str]) -> List[str]:
    """Normalized keywords, or the defaults when none remain."""
    normalized = normalize_session_keywords(keywords)
    return normalized or list(DEFAULT_SESSION_KEYWORDS)


def keyword_alternation(keywords: Sequence[str]) -> str:
    """Escaped keyword alternation, longest first so 'Session' beats 'S'."""
    ordered = sorted(keywords, key=len, reverse=True)
    return "(?:" + "|".join(re.escape(kw) for kw in ordered) + ")"


def build_course_code_pattern(course_code: str) -> Pattern:
    """Course code flanked by a delimiter or the string boundary on both sides."""
    pattern = (
        f"(?:^|{COURSE_DELIMITER})"
        + re.escape(course_code)
        + f"(?:{COURSE_DELIMITER}|$)"
    )
    return re.compile(pattern, re.IGNORECASE)


def build_session_regex(keywords: Sequence[str]) -> Pattern:
    """
    Keyword followed by a 1-2 digit session number.

    A letter may not directly precede the keyword, and the number may not be
    followed by another digit (so "S100" never yields 10).
    """
    pattern = (
        r"(?<![A-Za-z])"
        + keyword_alternation(keywords)
        + SESSION_DELIMITER
        + r"(\d{1,2})(?!\d)"
    )
    return re.compile(pattern, re.IGNORECASE)


# --- Matcher ---

class FilePatternMatcher:
    """Matches filenames against enabled course mappings and session keywords."""

    def __init__(self, course_mappings: Iterable[CourseMapping], session_keywords: Iterable[str]):
        enabled = [m for m in course_mappings if m.is_enabled]
        self._course_matchers: List[Tuple[CourseMapping, Pattern]] = [
            (mapping, build_course_code_pattern(mapping.course_code))
            for mapping in enabled
            if mapping.course_code
        ]
        self.session_keywords = effective_session_keywords(session_keywords)
        self._session_regex = build_session_regex(self.session_keywords)

    def match(self, filename: str) -> Optional[MatchResult]:
        """
        Returns a MatchResult if both a course code and a valid session number
        are found, None otherwise.
        """
        mapping = self.find_course_mapping(filename)
        if mapping is None:
            return None

        session_number = self.extract_session_number(filename)
        if session_number is None or not self.is_valid_session_number(session_number):
            return None

        return MatchResult(
            course_code=mapping.course_code,
            session_number=session_number,
            mapping=mapping,
        )

    def find_course_mapping(self, filename: str) -> Optional[CourseMapping]:
        """First enabled mapping (in configuration order) whose code appears."""
        uppercased = filename.upper()
        for mapping, regex in self._course_matchers:
            if regex.search(uppercased):
                return mapping
        return None

    def extract_session_number(self, filename: str) -> Optional[int]:
        """Number after the first session keyword, before any range check."""
        match = self._session_regex.search(filename)
        if not match:
            return None
        return int(match.group(1))

    @staticmethod
    def is_valid_session_number(number: int) -> bool:
        return MIN_SESSION <= number <= MAX_SESSION


# --- Cache ---

MatcherKey = Tuple[Tuple[Tuple[str, str], ...], Tuple[str, ...]]


def matcher_key(course_mappings: Iterable[CourseMapping], session_keywords: Iterable[str]) -> MatcherKey:
    """Key derived from enabled mappings (in order) and effective keywords."""
    mappings = tuple(
        (m.course_code, m.folder_name) for m in course_mappings if m.is_enabled
    )
    keywords = tuple(kw.lower() for kw in effective_session_keywords(session_keywords))
    return mappings, keywords


class MatcherCache:
    """Keeps one compiled matcher until the matching configuration changes."""

    def __init__(self):
        self._lock = threading.Lock()
        self._key: Optional[MatcherKey] = None
        self._matcher: Optional[FilePatternMatcher] = None

    def get(self, course_mappings: Sequence[CourseMapping], session_keywords: Sequence[str]) -> FilePatternMatcher:
        """Cached matcher, rebuilt when the key for this configuration changes."""
        key = matcher_key(course_mappings, session_keywords)
        with self._lock:
            if self._matcher is None or key != self._key:
                if self._matcher is not None:
                    logger.debug("Matching configuration changed - rebuilding matcher")
                self._matcher = FilePatternMatcher(course_mappings, session_keywords)
                self._key = key
            return self._matcher

    def invalidate(self) -> None:
        """Drop the cached matcher so the next get rebuilds it."""
        with self._lock:
            self._key = None
            self._matcher = None
