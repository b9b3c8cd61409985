"""
Database wrapper for Visitor Analytics.

This module provides a thin wrapper around aiosqlite for database operations,
plus the timestamp encoding shared by every table.
"""

import aiosqlite
from pathlib import Path
from typing import Optional, Any, List, Union
from datetime import datetime, timezone
import asyncio

from ..utils.logging import get_logger
from ..utils.errors import StorageError


logger = get_logger("visitor-analytics.storage")

# Fixed width so that lexical order equals chronological order
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def format_timestamp(value: datetime) -> str:
    """Encode a datetime as naive UTC text."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Decode stored text back into an aware UTC datetime."""
    if value is None:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


class Database:
    """Async SQLite database wrapper."""

    def __init__(self, db_path: Union[Path, str], timeout: float = 30.0):
        """
        Initialize database wrapper.

        Args:
            db_path: Path to SQLite database file (":memory:" for a private in-memory DB)
            timeout: Seconds to wait on a locked database
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self.timeout = timeout
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open database connection."""
        if self._connection is not None:
            return

        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(
                self.db_path,
                timeout=self.timeout,
                isolation_level=None  # Autocommit mode
            )
        except Exception as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}", cause=e) from e

        self._connection.row_factory = aiosqlite.Row
        # Enable WAL mode for better concurrency
        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")
        logger.debug("database_connected", path=str(self.db_path))

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def execute(self, sql: str, parameters: tuple = ()) -> aiosqlite.Cursor:
        """
        Execute SQL statement.

        Args:
            sql: SQL statement
            parameters: Query parameters

        Returns:
            Cursor object
        """
        async with self._lock:
            if not self._connection:
                await self.connect()
            return await self._connection.execute(sql, parameters)

    async def executescript(self, script: str) -> None:
        """Execute a multi-statement script (schema creation)."""
        async with self._lock:
            if not self._connection:
                await self.connect()
            await self._connection.executescript(script)

    async def fetchone(self, sql: str, parameters: tuple = ()) -> Optional[aiosqlite.Row]:
        """
        Execute query and fetch one result.

        Args:
            sql: SQL query
            parameters: Query parameters

        Returns:
            Single row or None
        """
        cursor = await self.execute(sql, parameters)
        return await cursor.fetchone()

    async def fetchall(self, sql: str, parameters: tuple = ()) -> List[aiosqlite.Row]:
        """
        Execute query and fetch all results.

        Args:
            sql: SQL query
            parameters: Query parameters

        Returns:
            List of rows
        """
        cursor = await self.execute(sql, parameters)
        return await cursor.fetchall()

    async def fetchval(self, sql: str, parameters: tuple = (), default: Any = None) -> Any:
        """Execute query and return the first column of the first row."""
        row = await self.fetchone(sql, parameters)
        if row is None or row[0] is None:
            return default
        return row[0]

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
