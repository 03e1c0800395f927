# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Tests for the database connection wrapper."""
import asyncio
from pathlib import Path

import pytest

from postforge.server.database.connection import Database


class TestDatabaseConnection:
    """Tests for connect/close and pragmas."""

    async def test_connect_creates_parent_directory(self, tmp_path: Path) -> None:
        db_path = tmp_path / "nested" / "dir" / "test.db"
        async with Database(db_path) as db:
            assert await db.is_healthy()
        assert db_path.exists()

    async def test_wal_mode_and_foreign_keys(self, db_with_schema: Database) -> None:
        assert await db_with_schema.fetch_scalar("PRAGMA journal_mode") == "wal"
        assert await db_with_schema.fetch_scalar("PRAGMA foreign_keys") == 1

    async def test_connection_property_requires_connect(self, temp_db_path: Path) -> None:
        db = Database(temp_db_path)
        with pytest.raises(RuntimeError, match="not connected"):
            _ = db.connection
        assert await db.is_healthy() is False

    async def test_close_is_idempotent(self, temp_db_path: Path) -> None:
        db = Database(temp_db_path)
        await db.connect()
        await db.close()
        await db.close()
        assert await db.is_healthy() is False


class TestSchema:
    """Tests for ensure_schema."""

    async def test_creates_tables(self, db_with_schema: Database) -> None:
        rows = await db_with_schema.fetch_all(
            "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
        )
        names = {row["name"] for row in rows}
        assert {"jobs", "progress_logs", "schedules"} <= names

    async def test_is_idempotent(self, db_with_schema: Database) -> None:
        await db_with_schema.ensure_schema()
        assert await db_with_schema.fetch_scalar("SELECT COUNT(*) FROM jobs") == 0


class TestTransaction:
    """Tests for the transaction context manager."""

    async def test_commits_on_success(self, db_with_schema: Database) -> None:
        async with db_with_schema.transaction():
            await db_with_schema.execute(
                "INSERT INTO jobs (id, topic, created_at, updated_at) VALUES (?, ?, ?, ?)",
                ("j1", "t", "2025-01-01", "2025-01-01"),
            )
        assert await db_with_schema.fetch_scalar("SELECT COUNT(*) FROM jobs") == 1

    async def test_rolls_back_on_error(self, db_with_schema: Database) -> None:
        with pytest.raises(ValueError, match="boom"):
            async with db_with_schema.transaction():
                await db_with_schema.execute(
                    "INSERT INTO jobs (id, topic, created_at, updated_at) VALUES (?, ?, ?, ?)",
                    ("j1", "t", "2025-01-01", "2025-01-01"),
                )
                raise ValueError("boom")
        assert await db_with_schema.fetch_scalar("SELECT COUNT(*) FROM jobs") == 0

    async def test_concurrent_transactions_are_serialized(self, db_with_schema: Database) -> None:
        async def _insert(job_id: str) -> None:
            async with db_with_schema.transaction():
                await db_with_schema.execute(
                    "INSERT INTO jobs (id, topic, created_at, updated_at) VALUES (?, ?, ?, ?)",
                    (job_id, "t", "2025-01-01", "2025-01-01"),
                )
                await asyncio.sleep(0)

        await asyncio.gather(_insert("j1"), _insert("j2"))

        assert await db_with_schema.fetch_scalar("SELECT COUNT(*) FROM jobs") == 2

    async def test_execute_insert_returns_zero_when_nothing_inserted(
        self, db_with_schema: Database
    ) -> None:
        row_id = await db_with_schema.execute_insert(
            "INSERT INTO jobs (id, topic, created_at, updated_at) "
            "SELECT 'j1', 't', 'x', 'x' WHERE 0"
        )
        assert row_id == 0
