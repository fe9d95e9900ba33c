"""User-facing notifications for sort and undo events."""

import logging

from .models import SortedFileRecord

logger = logging.getLogger(__name__)


class Notifier:
    """Fire-and-forget notification sink. Subclasses override what they need."""

    def file_sorted(self, record: SortedFileRecord) -> None:
        pass

    def sort_failed(self, filename: str, description: str) -> None:
        pass

    def undo_succeeded(self, record: SortedFileRecord) -> None:
        pass

    def undo_failed(self, filename: str, description: str) -> None:
        pass


class LoggingNotifier(Notifier):
    """Delivers notifications as log lines."""

    def file_sorted(self, record: SortedFileRecord) -> None:
        logger.info(f"File Sorted: '{record.filename}' → {record.destination_description}")

    def sort_failed(self, filename: str, description: str) -> None:
        logger.warning(f"Sorting Failed: could not sort '{filename}': {description}")

    def undo_succeeded(self, record: SortedFileRecord) -> None:
        logger.info(f"Undo Complete: '{record.filename}' moved back to the original folder")

    def undo_failed(self, filename: str, description: str) -> None:
        logger.warning(f"Undo Failed: could not undo '{filename}': {description}")
