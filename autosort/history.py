"""Recent activity history backed by sqlite."""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from .constants import DB_NAME, MAX_RECENT_ACTIVITY
from .exceptions import DatabaseError
from .models import SortedFileRecord

logger = logging.getLogger(__name__)


class ActivityHistory:
    """
    Newest-first list of sorted files, capped at ``max_records``.

    The head of the list is the only undo target.
    """

    def __init__(self, db_path: Union[str, Path] = DB_NAME, max_records: int = MAX_RECENT_ACTIVITY):
        self.db_path = Path(db_path)
        self.max_records = max_records
        self._lock = threading.Lock()
        self._init_database()

    @contextmanager
    def get_connection(self):
        """Context manager for database connections."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=10.0)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to connect to database: {e}")

        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            if isinstance(e, sqlite3.Error):
                raise DatabaseError(f"Database operation failed: {e}")
            raise
        finally:
            conn.close()

    def _init_database(self):
        """Creates the database schema if it doesn't exist."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self.get_connection() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS sorted_files (
                        seq INTEGER PRIMARY KEY AUTOINCREMENT,
                        id TEXT UNIQUE NOT NULL,
                        filename TEXT NOT NULL,
                        course_code TEXT NOT NULL,
                        session_number INTEGER NOT NULL,
                        source_path TEXT,
                        destination_path TEXT NOT NULL,
                        created_folder_paths TEXT,
                        timestamp TEXT NOT NULL
                    );
                """)
            logger.debug(f"Activity history '{self.db_path}' initialized")
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseError(f"Failed to initialize database: {e}")

    def add(self, record: SortedFileRecord) -> None:
        """Insert at the head and evict anything beyond the cap."""
        created = [str(p) for p in record.created_folder_paths]
        with self._lock, self.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO sorted_files
                (id, filename, course_code, session_number, source_path,
                 destination_path, created_folder_paths, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.filename,
                    record.course_code,
                    record.session_number,
                    str(record.source_path) if record.source_path else None,
                    str(record.destination_path),
                    json.dumps(created) if created else None,
                    record.timestamp.isoformat(),
                ),
            )
            conn.execute(
                """
                DELETE FROM sorted_files WHERE seq NOT IN (
                    SELECT seq FROM sorted_files ORDER BY seq DESC LIMIT ?
                )
                """,
                (self.max_records,),
            )

    def latest(self) -> Optional[SortedFileRecord]:
        """The undo target, or None when the history is empty."""
        records = self.recent(limit=1)
        return records[0] if records else None

    def recent(self, limit: Optional[int] = None) -> List[SortedFileRecord]:
        """Records newest first."""
        limit = self.max_records if limit is None else limit
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM sorted_files ORDER BY seq DESC LIMIT ?", (limit,)
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def remove(self, record_id: str) -> bool:
        """Returns True if a record was removed."""
        with self._lock, self.get_connection() as conn:
            cursor = conn.execute("DELETE FROM sorted_files WHERE id = ?", (record_id,))
            return cursor.rowcount > 0

    def clear(self) -> None:
        """Forget all recent activity."""
        with self._lock, self.get_connection() as conn:
            conn.execute("DELETE FROM sorted_files")

    def count(self) -> int:
        """Number of stored records."""
        with self.get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM sorted_files").fetchone()[0]

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> SortedFileRecord:
        created = json.loads(row["created_folder_paths"]) if row["created_folder_paths"] else []
        return SortedFileRecord(
            id=row["id"],
            filename=row["filename"],
            course_code=row["course_code"],
            session_number=row["session_number"],
            source_path=Path(row["source_path"]) if row["source_path"] else None,
            destination_path=Path(row["destination_path"]),
            created_folder_paths=[Path(p) for p in created],
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )
