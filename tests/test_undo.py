"""Tests for undoing the most recent move."""

import shutil
import threading
import time
from pathlib import Path

import pytest

from autosort.exceptions import DatabaseError
from autosort.models import DuplicateHandling, DuplicateResolution, SortedFileRecord, SortStatus
from autosort.prompt import InteractivePrompter
from autosort.sorter import FileSorter


def sort(sorter, make_file, directory, name, content="content"):
    outcome = sorter.process_file(make_file(directory, name, content))
    assert outcome.ok
    return outcome.record


def test_undo_restores_file_and_removes_created_folders(sorter, watch_dir, base_dir, make_file, history, notifier):
    record = sort(sorter, make_file, watch_dir, "CS101_S2_Slides.pdf", "slides")

    outcome = sorter.undo_last_move()

    assert outcome.ok
    assert outcome.record.id == record.id
    assert (watch_dir / "CS101_S2_Slides.pdf").read_text() == "slides"
    assert not (base_dir / "Intro to CS").exists()
    assert base_dir.exists()
    assert history.count() == 0
    assert notifier.kinds() == ["file_sorted", "undo_succeeded"]


def test_undo_keeps_folders_that_existed_before(sorter, watch_dir, base_dir, make_file):
    make_file(base_dir / "Intro to CS", "syllabus.pdf")
    sort(sorter, make_file, watch_dir, "CS101_S3.pdf")

    assert sorter.undo_last_move().ok

    assert not (base_dir / "Intro to CS" / "Session 3").exists()
    assert (base_dir / "Intro to CS" / "syllabus.pdf").exists()


def test_undo_keeps_created_folder_that_is_no_longer_empty(sorter, watch_dir, base_dir, make_file):
    sort(sorter, make_file, watch_dir, "CS101_S3.pdf")
    make_file(base_dir / "Intro to CS" / "Session 3", "added_later.pdf")

    assert sorter.undo_last_move().ok

    assert (base_dir / "Intro to CS" / "Session 3" / "added_later.pdf").exists()
    assert (watch_dir / "CS101_S3.pdf").exists()


def test_undo_only_reverts_latest(sorter, watch_dir, base_dir, make_file, history):
    first = sort(sorter, make_file, watch_dir, "CS101_S1.pdf")
    sort(sorter, make_file, watch_dir, "BLK_S1.pdf")

    assert sorter.undo_last_move().ok

    assert (watch_dir / "BLK_S1.pdf").exists()
    assert first.destination_path.exists()
    assert history.latest().id == first.id


def test_undo_recreates_missing_source_parent(sorter, watch_dir, make_file):
    sort(sorter, make_file, watch_dir / "sub", "CS101_S1.pdf")
    (watch_dir / "sub").rmdir()

    assert sorter.undo_last_move().ok
    assert (watch_dir / "sub" / "CS101_S1.pdf").exists()


class TestUndoFailures:

    def test_nothing_to_undo(self, sorter, notifier):
        outcome = sorter.undo_last_move()
        assert not outcome.ok
        assert outcome.record is None
        assert outcome.error.kind == "no_recent_activity"
        assert notifier.kinds() == ["undo_failed"]

    def test_record_without_source(self, sorter, history, base_dir):
        history.add(SortedFileRecord(
            filename="CS101_S1.pdf",
            course_code="CS101",
            session_number=1,
            destination_path=base_dir / "Intro to CS" / "Session 1" / "CS101_S1.pdf",
        ))
        assert sorter.undo_last_move().error.kind == "source_path_missing"

    def test_destination_outside_base(self, sorter, history, tmp_path, watch_dir, make_file):
        outside = make_file(tmp_path / "elsewhere", "CS101_S1.pdf")
        history.add(SortedFileRecord(
            filename="CS101_S1.pdf",
            course_code="CS101",
            session_number=1,
            destination_path=outside,
            source_path=watch_dir / "CS101_S1.pdf",
        ))

        outcome = sorter.undo_last_move()

        assert outcome.error.kind == "undo_path_outside_allowed_roots"
        assert outside.exists()

    def test_source_outside_allowed_roots(self, sorter, history, tmp_path, watch_dir, make_file):
        record = sort(sorter, make_file, watch_dir, "CS101_S1.pdf")
        history.clear()
        history.add(SortedFileRecord(
            filename=record.filename,
            course_code=record.course_code,
            session_number=record.session_number,
            destination_path=record.destination_path,
            source_path=tmp_path / "elsewhere" / "CS101_S1.pdf",
        ))

        outcome = sorter.undo_last_move()

        assert outcome.error.kind == "undo_path_outside_allowed_roots"
        assert record.destination_path.exists()

    def test_destination_missing(self, sorter, history, watch_dir, make_file):
        record = sort(sorter, make_file, watch_dir, "CS101_S1.pdf")
        Path(record.destination_path).unlink()

        outcome = sorter.undo_last_move()

        assert outcome.error.kind == "undo_destination_missing"
        assert history.latest().id == record.id

    def test_source_reoccupied(self, sorter, watch_dir, make_file):
        record = sort(sorter, make_file, watch_dir, "CS101_S1.pdf", "sorted")
        make_file(watch_dir, "CS101_S1.pdf", "newer download")

        outcome = sorter.undo_last_move()

        assert outcome.error.kind == "undo_source_exists"
        assert (watch_dir / "CS101_S1.pdf").read_text() == "newer download"
        assert record.destination_path.read_text() == "sorted"


def test_undo_changes_nothing_when_history_cannot_be_updated(sorter, history, watch_dir, make_file, monkeypatch):
    record = sort(sorter, make_file, watch_dir, "CS101_S1.pdf")

    def unavailable(record_id):
        raise DatabaseError("database is locked")

    monkeypatch.setattr(history, "remove", unavailable)
    outcome = sorter.undo_last_move()

    assert not outcome.ok
    assert "database is locked" in outcome.error.message
    assert record.destination_path.exists()
    assert not (watch_dir / "CS101_S1.pdf").exists()

    monkeypatch.undo()
    assert history.latest().id == record.id
    assert sorter.undo_last_move().ok
    assert (watch_dir / "CS101_S1.pdf").exists()


def test_failed_move_back_keeps_record(sorter, history, watch_dir, make_file, monkeypatch):
    record = sort(sorter, make_file, watch_dir, "CS101_S1.pdf")

    def failing_move(src, dst):
        raise PermissionError("read-only")

    monkeypatch.setattr(shutil, "move", failing_move)
    outcome = sorter.undo_last_move()

    assert outcome.error.kind == "move_failed"
    assert record.destination_path.exists()
    assert history.latest().id == record.id
    assert history.count() == 1


@pytest.mark.timing
def test_undo_is_not_held_up_by_a_pending_duplicate_prompt(store, history, watch_dir, base_dir, make_file):
    asked = []

    def ask(filename, destination):
        asked.append(filename)
        return DuplicateResolution.REPLACE

    prompter = InteractivePrompter(ask=ask, timeout=10)
    sorter = FileSorter(store, history, prompt=prompter)
    sort(sorter, make_file, watch_dir, "CS101_S1.pdf")
    session_folder = base_dir / "Intro to CS" / "Session 1"
    make_file(session_folder, "CS101_S1_notes.pdf", "old")
    store.set_duplicate_handling(DuplicateHandling.ASK)
    source = make_file(watch_dir, "CS101_S1_notes.pdf", "new")

    outcomes = []
    worker = threading.Thread(target=lambda: outcomes.append(sorter.process_file(source)))
    worker.start()
    deadline = time.monotonic() + 5
    while prompter.pending_count == 0 and time.monotonic() < deadline:
        time.sleep(0.01)

    started = time.monotonic()
    undo = sorter.undo_last_move()

    assert undo.ok
    assert time.monotonic() - started < 1
    assert (watch_dir / "CS101_S1.pdf").exists()

    assert prompter.process_pending(block=True, timeout=5) == 1
    worker.join(timeout=5)
    assert asked == ["CS101_S1_notes.pdf"]
    assert outcomes[0].status is SortStatus.SORTED
    assert (session_folder / "CS101_S1_notes.pdf").read_text() == "new"
