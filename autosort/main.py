"""Command-line entry point."""

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import List, Optional

from .autodetect import AutoDetectJob
from .config import Settings, SettingsStore
from .constants import CONFIG_FILE, DB_NAME
from .exceptions import ConfigurationError, DatabaseError
from .history import ActivityHistory
from .models import SortStatus
from .service import AutoSortService

logger = logging.getLogger("autosort")


def _configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autosort",
        description="Sort course files into course/session folders.",
    )
    parser.add_argument("-c", "--config", default=CONFIG_FILE, help=f"YAML configuration (default: {CONFIG_FILE})")
    parser.add_argument("--db", default=DB_NAME, help=f"activity history database (default: {DB_NAME})")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("watch", help="watch the configured folder and sort new files (default)")

    sort_parser = subparsers.add_parser("sort", help="sort the given files now")
    sort_parser.add_argument("files", nargs="+", type=Path)

    subparsers.add_parser("undo", help="move the most recently sorted file back")

    history_parser = subparsers.add_parser("history", help="show recent activity")
    history_parser.add_argument("-n", "--limit", type=int, default=None)
    history_parser.add_argument("--clear", action="store_true", help="forget all recent activity")

    detect_parser = subparsers.add_parser("autodetect", help="suggest course codes from existing folders")
    detect_parser.add_argument("--apply", action="store_true", help="add suggestions as course mappings")
    detect_parser.add_argument(
        "--replace-existing", action="store_true",
        help="with --apply, point existing codes at the suggested folder",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Application entry point."""
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    command = args.command or "watch"

    try:
        store = SettingsStore.from_file(args.config)
        history = ActivityHistory(args.db)

        if command == "watch":
            return _watch(store, history)
        if command == "sort":
            return _sort(store, history, args.files)
        if command == "undo":
            return _undo(store, history)
        if command == "history":
            return _history(history, args.limit, args.clear)
        return _autodetect(store, args.apply, args.replace_existing)

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except DatabaseError as e:
        logger.error(f"Database error: {e}")
        return 1


# --- Commands ---

def _watch(store: SettingsStore, history: ActivityHistory) -> int:
    logger.info("=" * 60)
    logger.info("AUTOSORT - Starting...")
    logger.info("=" * 60)

    _validate_paths(store.settings)
    service = AutoSortService(store, history)
    stop_event = threading.Event()

    try:
        _log_startup_summary(store.settings, history)
        if not service.start():
            logger.error("Could not start watching")
            return 1

        logger.info("=" * 60)
        logger.info("AutoSort is now running!")
        logger.info("Press Ctrl+C to stop")
        logger.info("=" * 60)

        service.run(stop_event)

    except KeyboardInterrupt:
        logger.info("\n" + "=" * 60)
        logger.info("Stopping AutoSort...")
    finally:
        stop_event.set()
        service.shutdown()
        _log_final_statistics(service)
        logger.info("AutoSort stopped successfully")

    return 0


def _sort(store: SettingsStore, history: ActivityHistory, files: List[Path]) -> int:
    service = AutoSortService(store, history)
    failures = 0
    try:
        for file_path in files:
            outcome = service.process_file(file_path)
            if outcome.status is SortStatus.SORTED:
                print(f"✓ {file_path.name} → {outcome.record.destination_path}")
            elif outcome.status is SortStatus.NO_MATCH:
                print(f"- {file_path.name}: no matching course/session")
            elif outcome.status is SortStatus.SKIPPED_DUPLICATE:
                print(f"- {file_path.name}: duplicate skipped")
            else:
                failures += 1
                print(f"✗ {file_path.name}: {outcome.error.message}")
    finally:
        service.shutdown()
    return 1 if failures else 0


def _undo(store: SettingsStore, history: ActivityHistory) -> int:
    service = AutoSortService(store, history)
    try:
        outcome = service.undo_last_move()
    finally:
        service.shutdown()

    if not outcome.ok:
        print(f"✗ Undo failed: {outcome.error.message}")
        return 1
    print(f"✓ {outcome.record.filename} → {outcome.record.source_path}")
    return 0


def _history(history: ActivityHistory, limit: Optional[int], clear: bool) -> int:
    if clear:
        history.clear()
        print("Recent activity cleared")
        return 0

    records = history.recent(limit)
    if not records:
        print("No recent activity")
        return 0

    for record in records:
        undo_marker = "" if record.is_undoable else "  (not undoable)"
        print(
            f"{record.timestamp:%Y-%m-%d %H:%M:%S} | {record.filename[:40]:40} | "
            f"{record.destination_description}{undo_marker}"
        )
    return 0


def _autodetect(store: SettingsStore, apply: bool, replace_existing: bool) -> int:
    settings = store.settings
    if settings.base_directory is None:
        raise ConfigurationError("base_directory must be set to auto-detect courses")

    job = AutoDetectJob(settings.base_directory, settings.session_keywords, settings.course_mappings)
    try:
        result = job.result()
    except KeyboardInterrupt:
        job.cancel()
        result = job.result()

    for suggestion in result.suggestions:
        conflict = "  (already mapped)" if suggestion.existing_mapping_id else ""
        print(
            f"{suggestion.folder_name:30} → {suggestion.suggested_code:10} "
            f"{suggestion.match_count}/{suggestion.files_scanned} names{conflict}"
        )
    if result.skipped_folder_count:
        print(f"Skipped {result.skipped_folder_count} folders with no matches")
    for error in result.errors:
        logger.warning(error)
    if result.cancelled:
        print("Scan cancelled - results are partial")

    if apply and result.suggestions:
        applied = store.apply_suggestions(result.suggestions, replace_existing=replace_existing)
        print(f"Applied {applied} course mappings")

    return 1 if result.errors and not result.suggestions else 0


# --- Helpers ---

def _validate_paths(settings: Settings) -> None:
    """Validate that configured paths exist and are accessible."""
    if settings.watched_folder is None or settings.base_directory is None:
        raise ConfigurationError("Both watched_folder and base_directory must be set")

    if not settings.watched_folder.is_dir():
        raise ConfigurationError(f"Watched folder does not exist: {settings.watched_folder}")

    try:
        settings.base_directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"Cannot create base directory '{settings.base_directory}': {e}")


def _log_startup_summary(settings: Settings, history: ActivityHistory):
    """Log configuration and system status at startup."""
    logger.info(f"Watching folder: {settings.watched_folder}")
    logger.info(f"Base directory: {settings.base_directory}")
    logger.info(
        f"Courses: {len(settings.enabled_mappings)} enabled of {len(settings.course_mappings)}"
    )
    logger.info(f"Session keywords: {', '.join(settings.session_keywords)}")
    logger.info(f"Duplicate handling: {settings.duplicate_handling.display_name}")

    try:
        logger.info(f"Recent activity: {history.count()} records")
    except DatabaseError as e:
        logger.warning(f"Could not load activity history: {e}")


def _log_final_statistics(service: AutoSortService):
    """Log final statistics before shutdown."""
    stats = service.sorter.stats
    logger.info("\n" + "=" * 40)
    logger.info("FINAL STATISTICS")
    logger.info("=" * 40)
    logger.info(f"Files processed: {stats['files_processed']}")
    logger.info(f"Files sorted: {stats['files_sorted']}")
    logger.info(f"No match: {stats['no_match']}")
    logger.info(f"Duplicates skipped: {stats['duplicates_skipped']}")
    logger.info(f"Errors encountered: {stats['errors']}")
    logger.info("=" * 40)


if __name__ == "__main__":
    sys.exit(main())
