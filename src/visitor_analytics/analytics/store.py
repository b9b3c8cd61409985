"""
Persistent storage for page views and sessions.

Two tables, page_views and sessions. Page view rows are insert-only;
session rows change only through single conditional UPDATE statements so
concurrent requests for the same session never lose an increment.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ..storage.database import Database
from ..utils.errors import StorageError
from ..utils.logging import get_logger
from .models import PageView, Session


logger = get_logger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS page_views (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL,
    path TEXT NOT NULL,
    referrer TEXT,
    session_hash TEXT NOT NULL,
    user_id TEXT,
    ip_hash TEXT,
    user_agent_hash TEXT,
    device_type TEXT NOT NULL DEFAULT 'desktop',
    browser_family TEXT,
    os_family TEXT,
    is_bot INTEGER NOT NULL DEFAULT 0,
    country_code TEXT,
    response_time_ms INTEGER,
    page_load_time_ms INTEGER,
    viewed_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_page_views_viewed_at ON page_views(viewed_at);
CREATE INDEX IF NOT EXISTS idx_page_views_path ON page_views(path, viewed_at);
CREATE INDEX IF NOT EXISTS idx_page_views_user ON page_views(user_id);
CREATE INDEX IF NOT EXISTS idx_page_views_session ON page_views(session_hash);
CREATE INDEX IF NOT EXISTS idx_page_views_device ON page_views(device_type, viewed_at);

CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_hash TEXT NOT NULL UNIQUE,
    landing_page TEXT NOT NULL,
    current_page TEXT,
    exit_page TEXT,
    user_id TEXT,
    ip_hash TEXT,
    device_type TEXT NOT NULL DEFAULT 'desktop',
    browser_family TEXT,
    os_family TEXT,
    is_bot INTEGER NOT NULL DEFAULT 0,
    session_started_at TEXT NOT NULL,
    session_ended_at TEXT,
    page_view_count INTEGER NOT NULL DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_sessions_started_at ON sessions(session_started_at);
CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id);
CREATE INDEX IF NOT EXISTS idx_sessions_device ON sessions(device_type, session_started_at);
"""

PAGE_VIEW_COLUMNS = (
    "url", "path", "referrer", "session_hash", "user_id", "ip_hash",
    "user_agent_hash", "device_type", "browser_family", "os_family",
    "is_bot", "country_code", "response_time_ms", "page_load_time_ms",
    "viewed_at",
)

SESSION_COLUMNS = (
    "session_hash", "landing_page", "current_page", "exit_page", "user_id",
    "ip_hash", "device_type", "browser_family", "os_family", "is_bot",
    "session_started_at", "session_ended_at", "page_view_count",
)

TABLES = {
    "page_views": "viewed_at",
    "sessions": "session_started_at",
}

# Whole seconds from start to end, NULL while the session is open. julianday
# resolves milliseconds; the rounding absorbs its floating point noise.
SESSION_DURATION = (
    "CAST(ROUND((julianday(session_ended_at) - julianday(session_started_at)) * 86400, 3) AS INTEGER)"
)


def _range(column: str, start: Optional[str], end: Optional[str]) -> Tuple[List[str], List[Any]]:
    """Half-open [start, end) filter on a timestamp column."""
    clauses, params = [], []
    if start is not None:
        clauses.append(f"{column} >= ?")
        params.append(start)
    if end is not None:
        clauses.append(f"{column} < ?")
        params.append(end)
    return clauses, params


def _where(clauses: List[str]) -> str:
    return f"WHERE {' AND '.join(clauses)}" if clauses else ""


def _subject(user_id: Optional[Union[int, str]], session_hash: Optional[str]) -> Optional[Tuple[str, Any]]:
    """The single identity filter for subject-scoped operations."""
    if user_id is not None:
        return "user_id = ?", str(user_id)
    if session_hash is not None:
        return "session_hash = ?", session_hash
    return None


class AnalyticsStore:
    """Page view and session persistence on SQLite."""

    def __init__(self, db_path: Union[Path, str], timeout: float = 30.0):
        """
        Initialize the store.

        Args:
            db_path: SQLite file (":memory:" for a throwaway store)
            timeout: Seconds to wait on a locked database
        """
        self.db = Database(db_path, timeout=timeout)
        self._initialized = False

    async def initialize(self) -> None:
        """Open the database and create tables."""
        if self._initialized:
            return
        try:
            await self.db.connect()
            await self.db.executescript(SCHEMA)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to initialize analytics schema: {e}", cause=e) from e
        self._initialized = True
        logger.info("analytics_store_initialized", path=str(self.db.db_path))

    async def close(self) -> None:
        await self.db.close()
        self._initialized = False

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # Write path

    async def insert_page_view(self, values: Dict[str, Any]) -> int:
        """Insert one page view row and return its id."""
        row = [values.get(column) for column in PAGE_VIEW_COLUMNS]
        placeholders = ", ".join("?" for _ in PAGE_VIEW_COLUMNS)
        cursor = await self.db.execute(
            f"INSERT INTO page_views ({', '.join(PAGE_VIEW_COLUMNS)}) VALUES ({placeholders})",
            tuple(row)
        )
        return cursor.lastrowid

    async def start_session(self, values: Dict[str, Any]) -> None:
        """
        Create the session row, or restart it if the hash already exists.

        A restart resets the row to a fresh open session with one page view.
        """
        row = [values.get(column) for column in SESSION_COLUMNS]
        placeholders = ", ".join("?" for _ in SESSION_COLUMNS)
        updates = ", ".join(
            f"{column} = excluded.{column}"
            for column in SESSION_COLUMNS if column != "session_hash"
        )
        await self.db.execute(
            f"INSERT INTO sessions ({', '.join(SESSION_COLUMNS)}) VALUES ({placeholders}) "
            f"ON CONFLICT(session_hash) DO UPDATE SET {updates}",
            tuple(row)
        )

    async def update_session(
        self,
        session_hash: str,
        current_page: str,
        ended_at: Optional[str] = None
    ) -> int:
        """
        Record another view on an open session, optionally closing it.

        Returns:
            Number of rows changed (0 when no open session exists)
        """
        cursor = await self.db.execute(
            """
            UPDATE sessions
            SET page_view_count = page_view_count + 1,
                current_page = ?,
                exit_page = ?,
                session_ended_at = CASE
                    WHEN ? IS NOT NULL THEN MAX(session_started_at, ?)
                    ELSE NULL
                END
            WHERE session_hash = ? AND session_ended_at IS NULL
            """,
            (current_page, current_page, ended_at, ended_at, session_hash)
        )
        return cursor.rowcount

    async def close_session(
        self,
        session_hash: str,
        ended_at: str,
        exit_page: Optional[str] = None
    ) -> int:
        """
        Close an open session. Closed sessions are left untouched.

        Returns:
            Number of rows changed (0 when already closed or missing)
        """
        cursor = await self.db.execute(
            """
            UPDATE sessions
            SET session_ended_at = MAX(session_started_at, ?),
                exit_page = COALESCE(?, exit_page, current_page)
            WHERE session_hash = ? AND session_ended_at IS NULL
            """,
            (ended_at, exit_page, session_hash)
        )
        return cursor.rowcount

    async def get_session(self, session_hash: str) -> Optional[Session]:
        row = await self.db.fetchone(
            "SELECT * FROM sessions WHERE session_hash = ?",
            (session_hash,)
        )
        return Session.from_row(row) if row else None

    # Subject-scoped access

    async def find_page_views(
        self,
        user_id: Optional[Union[int, str]] = None,
        session_hash: Optional[str] = None
    ) -> List[PageView]:
        subject = _subject(user_id, session_hash)
        if subject is None:
            return []
        clause, value = subject
        rows = await self.db.fetchall(
            f"SELECT * FROM page_views WHERE {clause} ORDER BY viewed_at, id",
            (value,)
        )
        return [PageView.from_row(row) for row in rows]

    async def find_sessions(
        self,
        user_id: Optional[Union[int, str]] = None,
        session_hash: Optional[str] = None
    ) -> List[Session]:
        subject = _subject(user_id, session_hash)
        if subject is None:
            return []
        clause, value = subject
        rows = await self.db.fetchall(
            f"SELECT * FROM sessions WHERE {clause} ORDER BY session_started_at, id",
            (value,)
        )
        return [Session.from_row(row) for row in rows]

    async def delete_subject(
        self,
        user_id: Optional[Union[int, str]] = None,
        session_hash: Optional[str] = None
    ) -> Dict[str, int]:
        """Hard-delete every row tied to one subject."""
        subject = _subject(user_id, session_hash)
        if subject is None:
            return {"page_views": 0, "sessions": 0}
        clause, value = subject

        deleted = {}
        for table in TABLES:
            cursor = await self.db.execute(f"DELETE FROM {table} WHERE {clause}", (value,))
            deleted[table] = cursor.rowcount
        return deleted

    # Retention

    async def count_rows(self, table: str, before: Optional[str] = None) -> int:
        """Row count, optionally restricted to rows older than a cutoff."""
        column = TABLES[table]
        clauses, params = _range(column, None, before)
        return await self.db.fetchval(
            f"SELECT COUNT(*) FROM {table} {_where(clauses)}",
            tuple(params),
            default=0
        )

    async def oldest_timestamp(self, table: str) -> Optional[str]:
        column = TABLES[table]
        return await self.db.fetchval(f"SELECT MIN({column}) FROM {table}")

    async def delete_batch_before(self, table: str, cutoff: str, batch_size: int) -> int:
        """Delete at most batch_size rows strictly older than cutoff."""
        column = TABLES[table]
        cursor = await self.db.execute(
            f"""
            DELETE FROM {table} WHERE id IN (
                SELECT id FROM {table} WHERE {column} < ? ORDER BY {column} LIMIT ?
            )
            """,
            (cutoff, batch_size)
        )
        return cursor.rowcount

    # Aggregation primitives. Bot traffic is always left out.

    async def page_view_summary(self, start: Optional[str] = None, end: Optional[str] = None) -> Dict[str, Any]:
        clauses, params = _range("viewed_at", start, end)
        clauses.append("is_bot = 0")
        row = await self.db.fetchone(
            f"""
            SELECT COUNT(*) AS total_views,
                   COUNT(DISTINCT user_id) AS unique_users,
                   COUNT(DISTINCT session_hash) AS unique_sessions,
                   AVG(response_time_ms) AS avg_response_time_ms,
                   AVG(page_load_time_ms) AS avg_page_load_time_ms
            FROM page_views {_where(clauses)}
            """,
            tuple(params)
        )
        return dict(row)

    async def group_page_views(
        self,
        column: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Tuple[Any, int]]:
        """Count non-bot page views per value of column, most viewed first."""
        clauses, params = _range("viewed_at", start, end)
        clauses += ["is_bot = 0", f"{column} IS NOT NULL"]
        sql = (
            f"SELECT {column} AS value, COUNT(*) AS views FROM page_views {_where(clauses)} "
            f"GROUP BY {column} ORDER BY views DESC, {column} ASC"
        )
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = await self.db.fetchall(sql, tuple(params))
        return [(row["value"], row["views"]) for row in rows]

    async def group_sessions(
        self,
        column: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Tuple[Any, int]]:
        """Count non-bot sessions per value of column, most frequent first."""
        clauses, params = _range("session_started_at", start, end)
        clauses += ["is_bot = 0", f"{column} IS NOT NULL"]
        sql = (
            f"SELECT {column} AS value, COUNT(*) AS sessions FROM sessions {_where(clauses)} "
            f"GROUP BY {column} ORDER BY sessions DESC, {column} ASC"
        )
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = await self.db.fetchall(sql, tuple(params))
        return [(row["value"], row["sessions"]) for row in rows]

    async def daily_page_views(self, start: str, end: str) -> Dict[str, int]:
        """Non-bot page views per calendar day (YYYY-MM-DD) in [start, end)."""
        rows = await self.db.fetchall(
            """
            SELECT substr(viewed_at, 1, 10) AS day, COUNT(*) AS views
            FROM page_views
            WHERE viewed_at >= ? AND viewed_at < ? AND is_bot = 0
            GROUP BY day
            """,
            (start, end)
        )
        return {row["day"]: row["views"] for row in rows}

    async def session_summary(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        engaged_after_seconds: int = 300,
        engaged_min_page_views: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Totals over non-bot sessions started in range.

        Durations only exist for closed sessions. A session is engaged when it
        lasted longer than engaged_after_seconds or, if engaged_min_page_views
        is set, viewed at least that many pages.
        """
        clauses, params = _range("session_started_at", start, end)
        clauses.append("is_bot = 0")
        row = await self.db.fetchone(
            f"""
            SELECT COUNT(*) AS total_sessions,
                   COUNT(session_ended_at) AS closed_sessions,
                   COALESCE(SUM(CASE WHEN page_view_count <= 1 THEN 1 ELSE 0 END), 0) AS bounce_sessions,
                   COUNT(DISTINCT user_id) AS unique_users,
                   AVG({SESSION_DURATION}) AS avg_duration_seconds,
                   AVG(page_view_count) AS avg_page_views,
                   COALESCE(SUM(CASE
                       WHEN {SESSION_DURATION} > ? OR page_view_count >= ? THEN 1 ELSE 0
                   END), 0) AS engaged_sessions,
                   COALESCE(SUM(CASE WHEN page_view_count > 1 THEN 1 ELSE 0 END), 0) AS multi_page_sessions
            FROM sessions {_where(clauses)}
            """,
            (engaged_after_seconds, engaged_min_page_views, *params)
        )
        return dict(row)

    async def session_duration_histogram(
        self,
        buckets: List[Tuple[str, Optional[int]]],
        start: Optional[str] = None,
        end: Optional[str] = None
    ) -> Dict[str, int]:
        """
        Closed non-bot sessions per duration bucket.

        Buckets are (label, exclusive upper bound in seconds) in ascending
        order; a None bound catches everything longer.
        """
        cases, case_params = [], []
        for label, upper in buckets:
            if upper is None:
                cases.append("ELSE ?")
                case_params.append(label)
            else:
                cases.append(f"WHEN {SESSION_DURATION} < ? THEN ?")
                case_params += [upper, label]

        clauses, params = _range("session_started_at", start, end)
        clauses += ["is_bot = 0", "session_ended_at IS NOT NULL"]
        rows = await self.db.fetchall(
            f"""
            SELECT CASE {' '.join(cases)} END AS bucket, COUNT(*) AS sessions
            FROM sessions {_where(clauses)}
            GROUP BY bucket
            """,
            tuple(case_params + params)
        )
        return {row["bucket"]: row["sessions"] for row in rows if row["bucket"] is not None}

    async def daily_sessions(self, start: str, end: str) -> Dict[str, Dict[str, Any]]:
        """Non-bot sessions per start day (YYYY-MM-DD) in [start, end) with averages."""
        rows = await self.db.fetchall(
            f"""
            SELECT substr(session_started_at, 1, 10) AS day,
                   COUNT(*) AS sessions,
                   AVG({SESSION_DURATION}) AS avg_duration,
                   AVG(page_view_count) AS avg_page_views
            FROM sessions
            WHERE session_started_at >= ? AND session_started_at < ? AND is_bot = 0
            GROUP BY day
            """,
            (start, end)
        )
        return {row["day"]: dict(row) for row in rows}

    async def ping(self) -> bool:
        """True if both tables answer a count query."""
        for table in TABLES:
            await self.db.fetchval(f"SELECT COUNT(*) FROM {table}")
        return True
