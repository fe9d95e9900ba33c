"""Configuration: settings object, YAML loading/saving and the settings store."""

import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import yaml

from .constants import CONFIG_FILE, DEFAULT_ASK_TIMEOUT, DEFAULT_FOLDER_TEMPLATE, DEFAULT_SESSION_KEYWORDS
from .exceptions import ConfigurationError
from .matcher import effective_session_keywords
from .models import AutoDetectSuggestion, CourseMapping, DuplicateHandling

logger = logging.getLogger(__name__)

SESSION_PLACEHOLDERS = ("{number}", "{n}")


def session_folder_name(template: str, session_number: int) -> str:
    """Render a session folder name; without a placeholder the number is appended."""
    template = (template or "").strip() or DEFAULT_FOLDER_TEMPLATE
    number = str(session_number)
    if any(p in template for p in SESSION_PLACEHOLDERS):
        for placeholder in SESSION_PLACEHOLDERS:
            template = template.replace(placeholder, number)
        return template
    return f"{template} {number}"


@dataclass
class Settings:
    """Application configuration."""
    watched_folder: Optional[Path] = None
    base_directory: Optional[Path] = None
    course_mappings: List[CourseMapping] = field(default_factory=list)
    session_keywords: List[str] = field(default_factory=lambda: list(DEFAULT_SESSION_KEYWORDS))
    session_folder_template: str = DEFAULT_FOLDER_TEMPLATE
    duplicate_handling: DuplicateHandling = DuplicateHandling.RENAME
    show_notifications: bool = True
    is_watching_enabled: bool = True
    ask_timeout: Optional[float] = DEFAULT_ASK_TIMEOUT

    def __post_init__(self):
        """Validate and normalize settings."""
        self.session_keywords = effective_session_keywords(self.session_keywords)
        self.session_folder_template = (
            (self.session_folder_template or "").strip() or DEFAULT_FOLDER_TEMPLATE
        )

        option = self.duplicate_handling
        if not isinstance(option, DuplicateHandling):
            option = str(option).strip().lower()
        try:
            self.duplicate_handling = DuplicateHandling(option)
        except ValueError:
            choices = ", ".join(o.value for o in DuplicateHandling)
            raise ConfigurationError(
                f"Unknown duplicate_handling '{self.duplicate_handling}' (expected one of: {choices})"
            )

        seen_codes = set()
        for mapping in self.course_mappings:
            if not mapping.is_valid:
                raise ConfigurationError(
                    f"Invalid course mapping '{mapping.course_code}' → '{mapping.folder_name}': "
                    "code must be alphanumeric and folder must not be empty"
                )
            if mapping.course_code in seen_codes:
                raise ConfigurationError(f"Duplicate course code: '{mapping.course_code}'")
            seen_codes.add(mapping.course_code)

        if self.ask_timeout is not None and self.ask_timeout <= 0:
            raise ConfigurationError("ask_timeout must be positive or null")

    @property
    def enabled_mappings(self) -> List[CourseMapping]:
        return [m for m in self.course_mappings if m.is_enabled]

    @property
    def is_configured(self) -> bool:
        """Ready to sort: both folders set and at least one enabled mapping."""
        return (
            self.watched_folder is not None
            and self.base_directory is not None
            and bool(self.enabled_mappings)
        )

    def session_folder_name(self, session_number: int) -> str:
        return session_folder_name(self.session_folder_template, session_number)

    def mapping_for_code(self, course_code: str) -> Optional[CourseMapping]:
        code = course_code.strip().upper()
        for mapping in self.course_mappings:
            if mapping.course_code == code:
                return mapping
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "watched_folder": str(self.watched_folder) if self.watched_folder else None,
            "base_directory": str(self.base_directory) if self.base_directory else None,
            "duplicate_handling": self.duplicate_handling.value,
            "show_notifications": self.show_notifications,
            "watching_enabled": self.is_watching_enabled,
            "ask_timeout": self.ask_timeout,
            "session_keywords": list(self.session_keywords),
            "session_folder_template": self.session_folder_template,
            "courses": [m.to_dict() for m in self.course_mappings],
        }


# --- Configuration Loader ---

def load_config(config_path: Union[str, Path] = CONFIG_FILE) -> Settings:
    """Loads and validates configuration from YAML file."""
    config_path_obj = Path(config_path)

    try:
        if not config_path_obj.exists():
            raise ConfigurationError(f"Configuration file not found: '{config_path}'")

        if not config_path_obj.is_file():
            raise ConfigurationError(f"Configuration path is not a file: '{config_path}'")

        with open(config_path_obj, 'r', encoding='utf-8') as f:
            raw_config = yaml.safe_load(f)

        if raw_config is None:
            raise ConfigurationError(f"Configuration file is empty: '{config_path}'")

        if not isinstance(raw_config, dict):
            raise ConfigurationError(f"Configuration root must be a dictionary, got {type(raw_config)}")

        settings = Settings(
            watched_folder=_optional_path(raw_config.get('watched_folder'), "watched_folder"),
            base_directory=_optional_path(raw_config.get('base_directory'), "base_directory"),
            course_mappings=_parse_course_mappings(raw_config.get('courses', [])),
            session_keywords=_parse_keywords(raw_config.get('session_keywords')),
            session_folder_template=str(raw_config.get('session_folder_template') or ""),
            duplicate_handling=raw_config.get('duplicate_handling', DuplicateHandling.RENAME.value),
            show_notifications=bool(raw_config.get('show_notifications', True)),
            is_watching_enabled=bool(raw_config.get('watching_enabled', True)),
            ask_timeout=_parse_timeout(raw_config.get('ask_timeout', DEFAULT_ASK_TIMEOUT)),
        )

        logger.info(
            f"Successfully loaded configuration: {len(settings.course_mappings)} courses from '{config_path}'"
        )
        return settings

    except ConfigurationError:
        raise
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in '{config_path}': {e}")
    except (IOError, OSError) as e:
        raise ConfigurationError(f"Error reading configuration file '{config_path}': {e}")
    except Exception as e:
        raise ConfigurationError(f"Unexpected error loading configuration: {e}")


def save_config(settings: Settings, config_path: Union[str, Path] = CONFIG_FILE) -> None:
    """Writes settings back to YAML."""
    config_path_obj = Path(config_path)
    try:
        config_path_obj.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path_obj, 'w', encoding='utf-8') as f:
            yaml.safe_dump(settings.to_dict(), f, sort_keys=False, allow_unicode=True)
    except (IOError, OSError) as e:
        raise ConfigurationError(f"Error writing configuration file '{config_path}': {e}")


def _optional_path(path_str: Optional[str], field_name: str) -> Optional[Path]:
    """Expand user path; missing or blank values mean 'not set'."""
    if path_str is None:
        return None
    if not isinstance(path_str, str):
        raise ConfigurationError(f"{field_name} must be a string path")
    if not path_str.strip():
        return None

    try:
        return Path(path_str).expanduser().resolve()
    except Exception as e:
        raise ConfigurationError(f"Invalid path for {field_name} '{path_str}': {e}")


def _parse_keywords(raw_keywords: Any) -> List[str]:
    if raw_keywords is None:
        return list(DEFAULT_SESSION_KEYWORDS)
    if isinstance(raw_keywords, str):
        # Allow "S, Session; Week" the same way the settings text field does
        raw_keywords = raw_keywords.replace(";", ",").split(",")
    if not isinstance(raw_keywords, list):
        raise ConfigurationError("session_keywords must be a list or a comma-separated string")
    return [str(kw) for kw in raw_keywords]


def _parse_timeout(raw_timeout: Any) -> Optional[float]:
    if raw_timeout is None:
        return None
    try:
        return float(raw_timeout)
    except (TypeError, ValueError):
        raise ConfigurationError(f"ask_timeout must be a number or null, got '{raw_timeout}'")


def _parse_course_mappings(raw_courses: Any) -> List[CourseMapping]:
    """Parse and validate course mappings from configuration."""
    if raw_courses is None:
        return []
    if not isinstance(raw_courses, list):
        raise ConfigurationError("courses must be a list")

    mappings = []
    seen_codes = set()

    for i, course_data in enumerate(raw_courses):
        if not isinstance(course_data, dict):
            raise ConfigurationError(f"Course {i+1} must be a dictionary")

        for key in ('code', 'folder'):
            if key not in course_data or course_data[key] is None:
                raise ConfigurationError(f"Course {i+1} missing required '{key}' field")

        code = str(course_data['code']).strip().upper()
        if code in seen_codes:
            raise ConfigurationError(f"Duplicate course code: '{code}'")
        seen_codes.add(code)

        kwargs = {
            'course_code': code,
            'folder_name': str(course_data['folder']),
            'is_enabled': bool(course_data.get('enabled', True)),
        }
        if course_data.get('id'):
            kwargs['id'] = str(course_data['id'])

        mapping = CourseMapping(**kwargs)
        if not mapping.is_valid:
            raise ConfigurationError(
                f"Course {i+1} ('{code}'): code must be alphanumeric and folder must not be empty"
            )
        mappings.append(mapping)
        logger.debug(f"Parsed course: {mapping.course_code} → {mapping.folder_name}")

    return mappings


# --- Settings Store ---

SettingsListener = Callable[[Settings], None]


class SettingsStore:
    """
    Owns the current Settings and tells subscribers about every change.

    Settings objects are replaced, never mutated in place, so a reader always
    holds a consistent snapshot. When bound to a path, each change is saved.
    """

    def __init__(self, settings: Optional[Settings] = None, path: Optional[Union[str, Path]] = None):
        self._settings = settings or Settings()
        self.path = Path(path) if path else None
        self._lock = threading.RLock()
        self._listeners: List[SettingsListener] = []

    @classmethod
    def from_file(cls, path: Union[str, Path] = CONFIG_FILE) -> "SettingsStore":
        """Load settings from YAML and save every later change back to it."""
        return cls(load_config(path), path)

    @property
    def settings(self) -> Settings:
        with self._lock:
            return self._settings

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        """Register for change notifications; returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def update(self, **changes) -> Settings:
        """Replace settings with the given fields changed, save, then notify."""
        with self._lock:
            new_settings = dataclasses.replace(self._settings, **changes)
            self._settings = new_settings
            if self.path is not None:
                save_config(new_settings, self.path)
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(new_settings)
            except Exception as e:
                logger.error(f"Settings listener failed: {e}", exc_info=True)
        return new_settings

    # --- Course mappings ---

    def add_course_mapping(self, mapping: CourseMapping) -> bool:
        """Adds a mapping; returns False if its code is already mapped."""
        with self._lock:
            if self._settings.mapping_for_code(mapping.course_code) is not None:
                logger.warning(f"A mapping for course code '{mapping.course_code}' already exists")
                return False
            self.update(course_mappings=self._settings.course_mappings + [mapping])
            return True

    def update_course_mapping(self, mapping: CourseMapping) -> bool:
        """Replace the mapping with the same id; False if there is none."""
        with self._lock:
            mappings = list(self._settings.course_mappings)
            for index, existing in enumerate(mappings):
                if existing.id == mapping.id:
                    mappings[index] = mapping
                    self.update(course_mappings=mappings)
                    return True
            return False

    def delete_course_mapping(self, mapping_id: str) -> bool:
        with self._lock:
            mappings = [m for m in self._settings.course_mappings if m.id != mapping_id]
            if len(mappings) == len(self._settings.course_mappings):
                return False
            self.update(course_mappings=mappings)
            return True

    def toggle_course_mapping(self, mapping_id: str) -> bool:
        """Flip is_enabled on one mapping."""
        with self._lock:
            for mapping in self._settings.course_mappings:
                if mapping.id == mapping_id:
                    toggled = dataclasses.replace(mapping, is_enabled=not mapping.is_enabled)
                    return self.update_course_mapping(toggled)
            return False

    def apply_suggestions(
        self,
        suggestions: Iterable[AutoDetectSuggestion],
        replace_existing: bool = False,
    ) -> int:
        """
        Turn accepted auto-detect suggestions into mappings.

        A suggestion whose code is already mapped is skipped unless
        ``replace_existing`` is set, in which case the existing mapping keeps
        its id and takes the suggested folder name. Returns the number applied.
        """
        applied = 0
        with self._lock:
            mappings = list(self._settings.course_mappings)
            for suggestion in suggestions:
                code = suggestion.suggested_code.upper()
                index = next((i for i, m in enumerate(mappings) if m.course_code == code), None)
                if index is None:
                    mappings.append(CourseMapping(course_code=code, folder_name=suggestion.folder_name))
                    applied += 1
                elif replace_existing:
                    mappings[index] = dataclasses.replace(
                        mappings[index], folder_name=suggestion.folder_name
                    )
                    applied += 1
                else:
                    logger.info(
                        f"Keeping existing mapping for '{code}' → '{mappings[index].folder_name}'"
                    )
            if applied:
                self.update(course_mappings=mappings)
        return applied

    # --- Other settings ---

    def set_session_keywords(self, keywords: Iterable[str]) -> None:
        self.update(session_keywords=list(keywords))

    def set_session_folder_template(self, template: str) -> None:
        self.update(session_folder_template=template)

    def set_duplicate_handling(self, option: Union[DuplicateHandling, str]) -> None:
        self.update(duplicate_handling=option)

    def set_watching_enabled(self, enabled: bool) -> None:
        self.update(is_watching_enabled=enabled)

    def set_watched_folder(self, path: Optional[Union[str, Path]]) -> None:
        self.update(watched_folder=Path(path).expanduser().resolve() if path else None)

    def set_base_directory(self, path: Optional[Union[str, Path]]) -> None:
        self.update(base_directory=Path(path).expanduser().resolve() if path else None)
