"""SQLite storage for sessions and extracted facts."""

import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..models import ExtractedFact, FactCategory, SessionRecord, clamp_importance
from .base import NotFound, Repository, RepositoryError, validate_session_patch

SCHEMA = """
CREATE TABLE IF NOT EXISTS session_history (
    id              TEXT PRIMARY KEY NOT NULL,
    project         TEXT NOT NULL,
    summary         TEXT NOT NULL,
    facts_extracted INTEGER NOT NULL DEFAULT 0,
    token_count     INTEGER NOT NULL DEFAULT 0,
    session_start   TEXT NOT NULL,
    session_end     TEXT,
    created         TEXT NOT NULL,
    updated         TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_session_history_project ON session_history(project);

CREATE TABLE IF NOT EXISTS extracted_facts (
    id          TEXT PRIMARY KEY NOT NULL,
    project     TEXT NOT NULL,
    session     TEXT,
    fact_type   TEXT NOT NULL,
    content     TEXT NOT NULL,
    importance  INTEGER NOT NULL DEFAULT 3,
    stale       INTEGER NOT NULL DEFAULT 0,
    created     TEXT NOT NULL,
    updated     TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_extracted_facts_project ON extracted_facts(project);
CREATE INDEX IF NOT EXISTS idx_extracted_facts_stale ON extracted_facts(stale);
"""


def _timestamp(value: datetime | None = None) -> str:
    return (value or datetime.now(timezone.utc)).astimezone(timezone.utc).isoformat()


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SqliteRepository(Repository):
    """Repository backed by a local SQLite database.

    One connection is shared by all threads; a lock serializes access so the
    watcher thread and other callers can use the same instance.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the repository with a database path.

        Args:
            db_path: Path to the SQLite database file, or ':memory:'.
        """
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            if str(self.db_path) != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def init_db(self) -> None:
        """Create the tables if they don't exist."""
        with self._lock:
            try:
                conn = self._get_connection()
                conn.executescript(SCHEMA)
                conn.commit()
            except sqlite3.Error as e:
                raise RepositoryError(f"Failed to initialize database: {e}") from e

    def _execute(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        """Run one statement and commit; returns fetched rows."""
        with self._lock:
            try:
                conn = self._get_connection()
                cursor = conn.execute(sql, params)
                rows = cursor.fetchall()
                conn.commit()
                return rows
            except sqlite3.Error as e:
                raise RepositoryError(f"Database error: {e}") from e

    # Sessions

    def create_session(
        self,
        project_id: str,
        summary: str,
        token_count: int = 0,
        session_start: datetime | None = None,
        facts_extracted: int = 0,
    ) -> SessionRecord:
        session_id = uuid.uuid4().hex
        now = _timestamp()
        self._execute(
            """
            INSERT INTO session_history
                (id, project, summary, facts_extracted, token_count,
                 session_start, session_end, created, updated)
            VALUES (?, ?, ?, ?, ?, ?, NULL, ?, ?)
            """,
            (
                session_id,
                project_id,
                summary,
                facts_extracted,
                token_count,
                _timestamp(session_start),
                now,
                now,
            ),
        )
        return self.get_session(session_id)

    def get_session(self, session_id: str) -> SessionRecord:
        rows = self._execute("SELECT * FROM session_history WHERE id = ?", (session_id,))
        if not rows:
            raise NotFound(f"Session '{session_id}' not found")
        return self._row_to_session(rows[0])

    def update_session(self, session_id: str, patch: dict[str, Any]) -> SessionRecord:
        validate_session_patch(patch)
        # Raises NotFound before we touch anything.
        self.get_session(session_id)
        if not patch:
            return self.get_session(session_id)

        assignments = []
        params: list[Any] = []
        for key, value in patch.items():
            if key in ("session_start", "session_end") and value is not None:
                value = _timestamp(value)
            assignments.append(f"{key} = ?")
            params.append(value)
        assignments.append("updated = ?")
        params.extend([_timestamp(), session_id])

        self._execute(
            f"UPDATE session_history SET {', '.join(assignments)} WHERE id = ?",
            tuple(params),
        )
        return self.get_session(session_id)

    def list_sessions(self, project_id: str) -> list[SessionRecord]:
        rows = self._execute(
            "SELECT * FROM session_history WHERE project = ? "
            "ORDER BY session_start DESC, rowid DESC",
            (project_id,),
        )
        return [self._row_to_session(row) for row in rows]

    # Facts

    def create_fact(
        self,
        project_id: str,
        category: FactCategory,
        content: str,
        importance: int,
        session_id: str | None = None,
        stale: bool = False,
    ) -> ExtractedFact:
        fact_id = uuid.uuid4().hex
        now = _timestamp()
        self._execute(
            """
            INSERT INTO extracted_facts
                (id, project, session, fact_type, content, importance, stale, created, updated)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                fact_id,
                project_id,
                session_id,
                category.value,
                content,
                clamp_importance(importance),
                int(stale),
                now,
                now,
            ),
        )
        return self.get_fact(fact_id)

    def get_fact(self, fact_id: str) -> ExtractedFact:
        rows = self._execute("SELECT * FROM extracted_facts WHERE id = ?", (fact_id,))
        if not rows:
            raise NotFound(f"Fact '{fact_id}' not found")
        return self._row_to_fact(rows[0])

    def list_facts(self, project_id: str, include_stale: bool = False) -> list[ExtractedFact]:
        sql = "SELECT * FROM extracted_facts WHERE project = ?"
        if not include_stale:
            sql += " AND stale = 0"
        sql += " ORDER BY importance DESC, created DESC, rowid DESC"
        rows = self._execute(sql, (project_id,))
        return [self._row_to_fact(row) for row in rows]

    def mark_fact_stale(self, fact_id: str) -> ExtractedFact:
        self.get_fact(fact_id)
        self._execute(
            "UPDATE extracted_facts SET stale = 1, updated = ? WHERE id = ?",
            (_timestamp(), fact_id),
        )
        return self.get_fact(fact_id)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _row_to_session(self, row: sqlite3.Row) -> SessionRecord:
        """Convert a database row to a SessionRecord."""
        return SessionRecord(
            id=row["id"],
            project_id=row["project"],
            summary=row["summary"],
            facts_extracted=row["facts_extracted"],
            token_count=row["token_count"],
            session_start=_parse_timestamp(row["session_start"]),
            session_end=_parse_timestamp(row["session_end"]) if row["session_end"] else None,
            created_at=_parse_timestamp(row["created"]),
            updated_at=_parse_timestamp(row["updated"]),
        )

    def _row_to_fact(self, row: sqlite3.Row) -> ExtractedFact:
        """Convert a database row to an ExtractedFact."""
        return ExtractedFact(
            id=row["id"],
            project_id=row["project"],
            session_id=row["session"],
            category=FactCategory(row["fact_type"]),
            content=row["content"],
            importance=row["importance"],
            stale=bool(row["stale"]),
            created_at=_parse_timestamp(row["created"]),
            updated_at=_parse_timestamp(row["updated"]),
        )
