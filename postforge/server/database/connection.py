# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Database connection management with SQLite."""
import asyncio
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite
from loguru import logger


# Type alias for SQLite-compatible values
SqliteValue = None | int | float | str | bytes


class Database:
    """Async SQLite database connection manager.

    Configures SQLite with:
    - WAL mode so feed readers never block the engine's writes
    - Foreign keys enforced (progress logs cascade with their job)
    - 5 second busy timeout
    """

    def __init__(self, db_path: Path):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._transaction_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open database connection with optimized settings.

        Raises:
            RuntimeError: If PRAGMA verification fails.
        """
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self._db_path,
            isolation_level=None,  # Autocommit mode (we manage transactions)
        )
        self._connection.row_factory = aiosqlite.Row

        cursor = await self._connection.execute("PRAGMA journal_mode = WAL")
        result = await cursor.fetchone()
        if result is None or result[0].lower() != "wal":
            raise RuntimeError(
                f"Failed to set WAL journal mode. Got: {result[0] if result else None}"
            )

        await self._connection.execute("PRAGMA foreign_keys = ON")
        await self._connection.execute("PRAGMA busy_timeout = 5000")

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            try:
                await self._connection.close()
            except Exception as e:
                logger.warning("Error closing database connection", error=str(e))
            finally:
                self._connection = None

    async def __aenter__(self) -> "Database":
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    @property
    def connection(self) -> aiosqlite.Connection:
        """Get the active connection.

        Raises:
            RuntimeError: If not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    async def is_healthy(self) -> bool:
        """Check if connection is valid and database is accessible."""
        if self._connection is None:
            return False
        try:
            cursor = await self._connection.execute("SELECT 1")
            result = await cursor.fetchone()
            return result is not None and result[0] == 1
        except Exception:
            return False

    async def execute(
        self,
        sql: str,
        parameters: Sequence[SqliteValue] = (),
    ) -> int:
        """Execute SQL statement.

        Args:
            sql: SQL statement to execute.
            parameters: Optional parameters for the statement.

        Returns:
            Number of rows affected (for INSERT/UPDATE/DELETE).

        Note:
            Statements autocommit unless wrapped in transaction().
        """
        cursor = await self.connection.execute(sql, parameters)
        return cursor.rowcount

    async def execute_insert(
        self,
        sql: str,
        parameters: Sequence[SqliteValue] = (),
    ) -> int:
        """Execute INSERT statement and return the last inserted row ID.

        Args:
            sql: INSERT SQL statement to execute.
            parameters: Optional parameters for the statement.

        Returns:
            The rowid of the last inserted row, or 0 when nothing was inserted.
        """
        cursor = await self.connection.execute(sql, parameters)
        if cursor.rowcount < 1:
            return 0
        return cursor.lastrowid if cursor.lastrowid is not None else 0

    async def fetch_one(
        self,
        sql: str,
        parameters: Sequence[SqliteValue] = (),
    ) -> aiosqlite.Row | None:
        """Fetch a single row.

        Args:
            sql: SQL query.
            parameters: Optional parameters.

        Returns:
            Single row or None if not found.
        """
        cursor = await self.connection.execute(sql, parameters)
        return await cursor.fetchone()

    async def fetch_all(
        self,
        sql: str,
        parameters: Sequence[SqliteValue] = (),
    ) -> list[aiosqlite.Row]:
        """Fetch all matching rows.

        Args:
            sql: SQL query.
            parameters: Optional parameters.

        Returns:
            List of matching rows.
        """
        cursor = await self.connection.execute(sql, parameters)
        result = await cursor.fetchall()
        return list(result)

    async def fetch_scalar(
        self,
        sql: str,
        parameters: Sequence[SqliteValue] = (),
    ) -> SqliteValue:
        """Fetch a single scalar value.

        Args:
            sql: SQL query expected to return one row with one column.
            parameters: Optional parameters.

        Returns:
            The scalar value, or None if no rows found.
        """
        row = await self.fetch_one(sql, parameters)
        return row[0] if row else None

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[None, None]:
        """Run the enclosed statements in a single write transaction.

        Commits on success, rolls back on exception. Transactions on the
        shared connection are serialized.
        """
        async with self._transaction_lock:
            await self.connection.execute("BEGIN IMMEDIATE")
            try:
                yield
                await self.connection.execute("COMMIT")
            except Exception:
                await self.connection.execute("ROLLBACK")
                raise

    async def ensure_schema(self) -> None:
        """Create database schema if it doesn't exist.

        Uses CREATE TABLE IF NOT EXISTS for idempotent schema creation.
        Call this after connect() to ensure tables exist.
        """
        await self.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                id TEXT PRIMARY KEY,
                topic TEXT NOT NULL,
                category TEXT NOT NULL DEFAULT 'tech',
                template TEXT,
                status TEXT NOT NULL DEFAULT 'queued',
                current_step TEXT,
                progress INTEGER NOT NULL DEFAULT 0,
                research_data TEXT,
                draft_content TEXT,
                final_content TEXT,
                metadata TEXT,
                review_result TEXT,
                validation_result TEXT,
                human_approval INTEGER,
                human_feedback TEXT,
                filepath TEXT,
                pr_result TEXT,
                commit_hash TEXT,
                error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        await self.execute("""
            CREATE TABLE IF NOT EXISTS progress_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT NOT NULL REFERENCES jobs(id) ON DELETE CASCADE,
                step TEXT NOT NULL,
                status TEXT NOT NULL,
                message TEXT NOT NULL,
                data_json TEXT,
                created_at TEXT NOT NULL
            )
        """)

        await self.execute("""
            CREATE TABLE IF NOT EXISTS schedules (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                enabled INTEGER NOT NULL DEFAULT 1,
                topic_source TEXT NOT NULL DEFAULT 'manual',
                topic_list TEXT NOT NULL DEFAULT '[]',
                topic_index INTEGER NOT NULL DEFAULT 0,
                category TEXT NOT NULL DEFAULT 'tech',
                template TEXT NOT NULL DEFAULT 'default',
                target_reader TEXT,
                keywords TEXT NOT NULL DEFAULT '[]',
                cron_expression TEXT NOT NULL,
                timezone TEXT NOT NULL DEFAULT 'Asia/Seoul',
                last_run_at TEXT,
                next_run_at TEXT,
                last_job_id TEXT,
                run_count INTEGER NOT NULL DEFAULT 0,
                error_count INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # Indexes
        await self.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status)")
        await self.execute(
            "CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs(created_at DESC)"
        )
        await self.execute(
            "CREATE INDEX IF NOT EXISTS idx_progress_logs_job ON progress_logs(job_id, id)"
        )
        await self.execute(
            "CREATE INDEX IF NOT EXISTS idx_schedules_due ON schedules(enabled, next_run_at)"
        )
