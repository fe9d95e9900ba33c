"""Tests for configuration loading and the settings store."""

import pytest
import yaml

from autosort.config import (
    SettingsStore,
    load_config,
    save_config,
    session_folder_name,
)
from autosort.exceptions import ConfigurationError
from autosort.models import AutoDetectSuggestion, CourseMapping, DuplicateHandling


@pytest.fixture
def config_file(tmp_path, watch_dir, base_dir):
    path = tmp_path / "autosort.yml"
    path.write_text(
        f"""
watched_folder: {watch_dir}
base_directory: {base_dir}
duplicate_handling: Skip
session_keywords: "Week; Lecture"
session_folder_template: "Week {{n}}"
ask_timeout: 30
courses:
  - code: cs101
    folder: Intro to CS
  - code: BLK
    folder: BLOCKCHAIN
    enabled: false
""",
        encoding="utf-8",
    )
    return path


class TestLoadConfig:

    def test_loads_all_fields(self, config_file, watch_dir, base_dir):
        settings = load_config(config_file)

        assert settings.watched_folder == watch_dir.resolve()
        assert settings.base_directory == base_dir.resolve()
        assert settings.duplicate_handling is DuplicateHandling.SKIP
        assert settings.session_keywords == ["Week", "Lecture"]
        assert settings.session_folder_name(3) == "Week 3"
        assert settings.ask_timeout == 30.0
        assert [m.course_code for m in settings.course_mappings] == ["CS101", "BLK"]
        assert [m.course_code for m in settings.enabled_mappings] == ["CS101"]
        assert settings.is_configured

    def test_defaults(self, tmp_path):
        path = tmp_path / "minimal.yml"
        path.write_text("courses: []\n")

        settings = load_config(path)

        assert settings.watched_folder is None
        assert settings.session_keywords == ["S", "Session", "Lecture", "Week", "Class"]
        assert settings.session_folder_template == "Session {n}"
        assert settings.duplicate_handling is DuplicateHandling.RENAME
        assert settings.ask_timeout == 300.0
        assert not settings.is_configured

    def test_null_timeout_waits_forever(self, tmp_path):
        path = tmp_path / "c.yml"
        path.write_text("ask_timeout: null\n")
        assert load_config(path).ask_timeout is None

    @pytest.mark.parametrize("content, message", [
        ("", "empty"),
        ("- a\n- b\n", "dictionary"),
        ("courses: [\n", "Invalid YAML"),
        ("duplicate_handling: shred\n", "duplicate_handling"),
        ("courses:\n  - code: CS101\n", "folder"),
        ("courses:\n  - {code: CS101, folder: A}\n  - {code: cs101, folder: B}\n", "Duplicate course code"),
        ("courses:\n  - {code: 'CS 101', folder: A}\n", "alphanumeric"),
        ("courses: CS101\n", "must be a list"),
        ("ask_timeout: soon\n", "ask_timeout"),
        ("ask_timeout: 0\n", "ask_timeout"),
        ("session_keywords: 5\n", "session_keywords"),
        ("watched_folder: 12\n", "watched_folder"),
    ])
    def test_invalid_configuration(self, tmp_path, content, message):
        path = tmp_path / "bad.yml"
        path.write_text(content)
        with pytest.raises(ConfigurationError, match=message):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "nope.yml")

    def test_directory_instead_of_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not a file"):
            load_config(tmp_path)


def test_save_and_reload(tmp_path, settings):
    path = tmp_path / "saved.yml"
    save_config(settings, path)

    raw = yaml.safe_load(path.read_text())
    assert raw["courses"][0]["code"] == "CS101"
    assert raw["duplicate_handling"] == "rename"

    reloaded = load_config(path)
    assert reloaded.base_directory == settings.base_directory.resolve()
    assert [m.id for m in reloaded.course_mappings] == [m.id for m in settings.course_mappings]


@pytest.mark.parametrize("template, expected", [
    ("Session {n}", "Session 4"),
    ("Week {number}", "Week 4"),
    ("Lecture", "Lecture 4"),
    ("  ", "Session 4"),
    ("{n} - Notes", "4 - Notes"),
])
def test_session_folder_name(template, expected):
    assert session_folder_name(template, 4) == expected


class TestSettingsStore:

    def test_listeners_see_every_change(self, store):
        seen = []
        unsubscribe = store.subscribe(seen.append)

        store.set_duplicate_handling("ask")
        store.set_session_keywords(["Wk"])
        unsubscribe()
        store.set_watching_enabled(False)

        assert [s.duplicate_handling for s in seen] == [DuplicateHandling.ASK, DuplicateHandling.ASK]
        assert seen[-1].session_keywords == ["Wk"]
        assert store.settings.is_watching_enabled is False

    def test_failing_listener_does_not_block_update(self, store):
        def broken(settings):
            raise RuntimeError("boom")

        store.subscribe(broken)
        store.set_session_folder_template("Class {n}")
        assert store.settings.session_folder_template == "Class {n}"

    def test_invalid_update_keeps_previous_settings(self, store):
        before = store.settings
        with pytest.raises(ConfigurationError):
            store.set_duplicate_handling("shred")
        assert store.settings is before

    def test_changes_are_saved_when_bound_to_a_file(self, config_file):
        store = SettingsStore.from_file(config_file)
        store.add_course_mapping(CourseMapping(course_code="ML", folder_name="Machine Learning"))
        assert "ML" in [m.course_code for m in load_config(config_file).course_mappings]

    def test_course_mapping_crud(self, store):
        mapping = CourseMapping(course_code="db", folder_name="Databases")
        assert store.add_course_mapping(mapping)
        assert not store.add_course_mapping(CourseMapping(course_code="DB", folder_name="Other"))

        assert store.toggle_course_mapping(mapping.id)
        assert store.settings.mapping_for_code("db").is_enabled is False

        renamed = CourseMapping(course_code="DB", folder_name="Database Systems", id=mapping.id)
        assert store.update_course_mapping(renamed)
        assert store.settings.mapping_for_code("DB").folder_name == "Database Systems"

        assert store.delete_course_mapping(mapping.id)
        assert not store.delete_course_mapping(mapping.id)
        assert store.settings.mapping_for_code("DB") is None

    def test_apply_suggestions(self, store):
        blk_id = store.settings.mapping_for_code("BLK").id
        suggestions = [
            AutoDetectSuggestion("Machine Learning", "ml", 3, 4),
            AutoDetectSuggestion("Blockchain 2024", "BLK", 2, 2, existing_mapping_id=blk_id),
        ]

        assert store.apply_suggestions(suggestions) == 1
        assert store.settings.mapping_for_code("ML").folder_name == "Machine Learning"
        assert store.settings.mapping_for_code("BLK").folder_name == "BLOCKCHAIN"

        assert store.apply_suggestions(suggestions, replace_existing=True) == 2
        blk = store.settings.mapping_for_code("BLK")
        assert blk.folder_name == "Blockchain 2024"
        assert blk.id == blk_id

    def test_set_folders(self, store, tmp_path):
        store.set_base_directory(None)
        assert store.settings.base_directory is None
        assert not store.settings.is_configured

        store.set_base_directory(tmp_path / "Courses")
        assert store.settings.base_directory == (tmp_path / "Courses").resolve()
