# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Repository for job and progress log persistence."""

from typing import Any

import aiosqlite

from postforge.core.types import Category, LogStatus, StageEvent, Template
from postforge.pipeline.state import TERMINAL_STATUSES, JobStatus
from postforge.server.database.codec import (
    decode_json,
    decode_timestamp,
    encode_json,
    encode_timestamp,
)
from postforge.server.database.connection import Database, SqliteValue
from postforge.server.exceptions import JobNotFoundError
from postforge.server.models.job import Job, JobStats, ProgressLog, utcnow


_JSON_COLUMNS = frozenset(
    {"research_data", "metadata", "review_result", "validation_result", "pr_result"}
)

# Columns update() may write; id and timestamps are managed here
_UPDATABLE_COLUMNS = frozenset(Job.model_fields) - {"id", "created_at", "updated_at"}

_TERMINAL_PLACEHOLDERS = ",".join("?" for _ in TERMINAL_STATUSES)


def _encode_column(name: str, value: Any) -> SqliteValue:
    if name in _JSON_COLUMNS:
        return encode_json(value)
    if name == "human_approval":
        return None if value is None else int(bool(value))
    if value is None or isinstance(value, int | float | str | bytes):
        return value
    return str(value)


def _row_to_job(row: aiosqlite.Row) -> Job:
    values = dict(row)
    for column in _JSON_COLUMNS:
        values[column] = decode_json(values[column])
    if values["human_approval"] is not None:
        values["human_approval"] = bool(values["human_approval"])
    values["created_at"] = decode_timestamp(values["created_at"])
    values["updated_at"] = decode_timestamp(values["updated_at"])
    return Job.model_validate(values)


def _row_to_log(row: aiosqlite.Row) -> ProgressLog:
    return ProgressLog(
        id=row["id"],
        job_id=row["job_id"],
        step=row["step"],
        status=row["status"],
        message=row["message"],
        data=decode_json(row["data_json"]),
        created_at=decode_timestamp(row["created_at"]),
    )


class JobRepository:
    """Repository for job CRUD operations and the append-only progress log.

    get() returns None for a missing job; mutations raise JobNotFoundError.
    Store errors propagate to the caller.
    """

    def __init__(self, db: Database):
        """Initialize repository.

        Args:
            db: Database connection.
        """
        self._db = db

    async def create(
        self,
        topic: str,
        category: Category = Category.TECH,
        template: Template | None = None,
    ) -> Job:
        """Create a new queued job.

        Args:
            topic: Topic the post is about.
            category: Content category.
            template: Optional post template.

        Returns:
            The persisted job, status queued and progress 0.
        """
        job = Job(topic=topic, category=category, template=template)
        await self._db.execute(
            """
            INSERT INTO jobs (
                id, topic, category, template, status, progress, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.id,
                job.topic,
                job.category,
                job.template,
                job.status,
                job.progress,
                encode_timestamp(job.created_at),
                encode_timestamp(job.updated_at),
            ),
        )
        return job

    async def get(self, job_id: str) -> Job | None:
        """Get job by ID.

        Args:
            job_id: Job identifier.

        Returns:
            The job, or None if not found.
        """
        row = await self._db.fetch_one("SELECT * FROM jobs WHERE id = ?", (job_id,))
        if row is None:
            return None
        return _row_to_job(row)

    async def update(self, job_id: str, **fields: Any) -> Job:
        """Merge a partial update into a job.

        updated_at is bumped on every call, even an empty one.

        Args:
            job_id: Job identifier.
            **fields: Job fields to overwrite.

        Returns:
            The job after the update.

        Raises:
            ValueError: If a field is not an updatable job column.
            JobNotFoundError: If the job doesn't exist.
        """
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")

        assignments = [f"{name} = ?" for name in fields]
        params: list[SqliteValue] = [_encode_column(name, value) for name, value in fields.items()]
        assignments.append("updated_at = ?")
        params.append(encode_timestamp(utcnow()))
        params.append(job_id)

        updated = await self._db.execute(
            f"UPDATE jobs SET {', '.join(assignments)} WHERE id = ?",
            params,
        )
        if updated == 0:
            raise JobNotFoundError(job_id)

        job = await self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def raise_progress(
        self,
        job_id: str,
        progress: int,
        current_step: str | None = None,
    ) -> None:
        """Raise a job's progress; never lowers it.

        Args:
            job_id: Job identifier.
            progress: Candidate progress percentage.
            current_step: Optional step label to record.

        Raises:
            JobNotFoundError: If the job doesn't exist.
        """
        updated = await self._db.execute(
            """
            UPDATE jobs SET
                progress = MAX(progress, ?),
                current_step = COALESCE(?, current_step),
                updated_at = ?
            WHERE id = ?
            """,
            (min(max(progress, 0), 100), current_step, encode_timestamp(utcnow()), job_id),
        )
        if updated == 0:
            raise JobNotFoundError(job_id)

    async def delete(self, job_id: str) -> None:
        """Delete a job and, by cascade, its progress log.

        Args:
            job_id: Job identifier.

        Raises:
            JobNotFoundError: If the job doesn't exist.
        """
        deleted = await self._db.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
        if deleted == 0:
            raise JobNotFoundError(job_id)

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        category: Category | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Job], int]:
        """List jobs newest first with offset pagination.

        Args:
            status: Optional status filter.
            category: Optional category filter.
            search: Optional case-insensitive substring of the topic.
            page: 1-based page number.
            limit: Page size.

        Returns:
            Tuple of (jobs on the page, total jobs matching the filters).
        """
        conditions: list[str] = []
        params: list[SqliteValue] = []

        if status:
            conditions.append("status = ?")
            params.append(status)

        if category:
            conditions.append("category = ?")
            params.append(category)

        if search:
            conditions.append("LOWER(topic) LIKE ?")
            params.append(f"%{search.lower()}%")

        where_clause = " AND ".join(conditions) if conditions else "1=1"

        total = await self._db.fetch_scalar(
            f"SELECT COUNT(*) FROM jobs WHERE {where_clause}", params
        )

        rows = await self._db.fetch_all(
            f"""
            SELECT * FROM jobs
            WHERE {where_clause}
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            [*params, limit, (max(page, 1) - 1) * limit],
        )
        return [_row_to_job(row) for row in rows], total if isinstance(total, int) else 0

    async def get_stats(self) -> JobStats:
        """Compute dashboard counters over all jobs."""
        row = await self._db.fetch_one(
            """
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(status = 'completed'), 0) AS completed,
                COALESCE(SUM(status = 'failed'), 0) AS failed,
                COALESCE(SUM(status = 'human_review'), 0) AS pending_reviews
            FROM jobs
            """
        )
        total, completed, failed, pending = (
            (row[0], row[1], row[2], row[3]) if row else (0, 0, 0, 0)
        )
        finished = completed + failed
        return JobStats(
            total=total,
            completed=completed,
            failed=failed,
            pending_reviews=pending,
            success_rate=round(completed / finished * 100) if finished else 0,
        )

    # =========================================================================
    # Progress Log
    # =========================================================================

    async def append_log(self, job_id: str, event: StageEvent) -> int | None:
        """Append an entry to a job's progress log.

        The insert is conditional on the job existing and not being terminal,
        so no entry can follow a job's terminal status.

        Args:
            job_id: Job identifier.
            event: Event to record.

        Returns:
            The new entry's id, or None if nothing was appended.
        """
        data = dict(event.data) if event.data else None
        row_id = await self._db.execute_insert(
            f"""
            INSERT INTO progress_logs (job_id, step, status, message, data_json, created_at)
            SELECT ?, ?, ?, ?, ?, ?
            WHERE EXISTS (
                SELECT 1 FROM jobs WHERE id = ? AND status NOT IN ({_TERMINAL_PLACEHOLDERS})
            )
            """,
            (
                job_id,
                event.step,
                event.status,
                event.message,
                encode_json(data),
                encode_timestamp(utcnow()),
                job_id,
                *TERMINAL_STATUSES,
            ),
        )
        return row_id or None

    async def log(
        self,
        job_id: str,
        step: str,
        status: LogStatus,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> int | None:
        """Shorthand for append_log() with inline fields."""
        return await self.append_log(
            job_id, StageEvent(step=step, status=status, message=message, data=data)
        )

    async def finish(
        self,
        job_id: str,
        status: JobStatus,
        step: str,
        log_status: LogStatus,
        message: str,
        data: dict[str, Any] | None = None,
        **fields: Any,
    ) -> Job | None:
        """Append a job's closing log entry and set its terminal status atomically.

        Nothing is written when the job is missing or already terminal.

        Args:
            job_id: Job identifier.
            status: Terminal status to set.
            step: Step label of the closing entry.
            log_status: Status of the closing entry.
            message: Message of the closing entry.
            data: Optional data of the closing entry.
            **fields: Additional job fields to write with the status.

        Returns:
            The finished job, or None if nothing was written.
        """
        async with self._db.transaction():
            if await self.log(job_id, step, log_status, message, data) is None:
                return None
            return await self.update(job_id, status=status, **fields)

    async def get_logs(self, job_id: str) -> list[ProgressLog]:
        """Get a job's full progress log, oldest first.

        Args:
            job_id: Job identifier.

        Returns:
            Entries ordered by id ascending.
        """
        rows = await self._db.fetch_all(
            "SELECT * FROM progress_logs WHERE job_id = ? ORDER BY id ASC",
            (job_id,),
        )
        return [_row_to_log(row) for row in rows]

    async def get_logs_after(self, job_id: str, after_id: int) -> list[ProgressLog]:
        """Get the entries appended after a cursor.

        Args:
            job_id: Job identifier.
            after_id: Id of the last entry already seen.

        Returns:
            Entries with id greater than after_id, oldest first.
        """
        rows = await self._db.fetch_all(
            "SELECT * FROM progress_logs WHERE job_id = ? AND id > ? ORDER BY id ASC",
            (job_id, after_id),
        )
        return [_row_to_log(row) for row in rows]

    async def get_max_log_id(self, job_id: str) -> int:
        """Get the id of a job's newest progress entry.

        Args:
            job_id: Job identifier.

        Returns:
            The newest id, or 0 when the log is empty.
        """
        result = await self._db.fetch_scalar(
            "SELECT MAX(id) FROM progress_logs WHERE job_id = ?",
            (job_id,),
        )
        return result if isinstance(result, int) else 0
