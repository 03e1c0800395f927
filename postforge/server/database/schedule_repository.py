# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Repository for recurring schedule persistence."""

from datetime import UTC, datetime
from typing import Any

import aiosqlite

from postforge.core.types import TopicSource
from postforge.server.database.codec import (
    decode_json,
    decode_timestamp,
    encode_json,
    encode_timestamp,
)
from postforge.server.database.connection import Database, SqliteValue
from postforge.server.exceptions import ScheduleNotFoundError
from postforge.server.models.job import utcnow
from postforge.server.models.schedule import Schedule, ScheduleStats
from postforge.server.scheduler.cron import calculate_next_run


_JSON_COLUMNS = frozenset({"topic_list", "keywords"})
_TIMESTAMP_COLUMNS = frozenset({"last_run_at", "next_run_at", "created_at", "updated_at"})

_COLUMNS = tuple(Schedule.model_fields)

# Fields callers may edit; run bookkeeping is owned by mark_as_run()
_EDITABLE_COLUMNS = frozenset(
    {
        "name",
        "description",
        "enabled",
        "topic_source",
        "topic_list",
        "topic_index",
        "category",
        "template",
        "target_reader",
        "keywords",
        "cron_expression",
        "timezone",
    }
)


def _encode_column(name: str, value: Any) -> SqliteValue:
    if name in _JSON_COLUMNS:
        return encode_json(value)
    if name in _TIMESTAMP_COLUMNS:
        return encode_timestamp(value)
    if isinstance(value, bool):
        return int(value)
    return value


def _row_to_schedule(row: aiosqlite.Row) -> Schedule:
    values = dict(row)
    for column in _JSON_COLUMNS:
        values[column] = decode_json(values[column]) or []
    for column in _TIMESTAMP_COLUMNS:
        values[column] = decode_timestamp(values[column])
    values["enabled"] = bool(values["enabled"])
    return Schedule.model_validate(values)


def get_next_topic(schedule: Schedule) -> str | None:
    """Resolve the topic a schedule's next run should use.

    Only manual topic lists resolve; other sources yield None.

    Args:
        schedule: Schedule to inspect.

    Returns:
        topic_list[topic_index % len(topic_list)], or None.
    """
    if schedule.topic_source != TopicSource.MANUAL or not schedule.topic_list:
        return None
    return schedule.topic_list[schedule.topic_index % len(schedule.topic_list)]


class ScheduleRepository:
    """Repository for schedule CRUD operations and run bookkeeping.

    next_run_at is computed on create, recomputed whenever the cron
    expression or timezone changes, and after every run.
    """

    def __init__(self, db: Database):
        """Initialize repository.

        Args:
            db: Database connection.
        """
        self._db = db

    async def create(self, schedule: Schedule, now: datetime | None = None) -> Schedule:
        """Persist a new schedule with its first next_run_at.

        Args:
            schedule: Schedule to insert; next_run_at is overwritten.
            now: Reference time for the next-run computation.

        Returns:
            The persisted schedule.
        """
        schedule = schedule.model_copy(
            update={
                "next_run_at": calculate_next_run(
                    schedule.cron_expression, schedule.timezone, now
                )
            }
        )
        placeholders = ", ".join("?" for _ in _COLUMNS)
        await self._db.execute(
            f"INSERT INTO schedules ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
            [_encode_column(name, getattr(schedule, name)) for name in _COLUMNS],
        )
        return schedule

    async def get(self, schedule_id: str) -> Schedule | None:
        """Get schedule by ID.

        Args:
            schedule_id: Schedule identifier.

        Returns:
            The schedule, or None if not found.
        """
        row = await self._db.fetch_one(
            "SELECT * FROM schedules WHERE id = ?", (schedule_id,)
        )
        if row is None:
            return None
        return _row_to_schedule(row)

    async def _require(self, schedule_id: str) -> Schedule:
        schedule = await self.get(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)
        return schedule

    async def _write(self, schedule_id: str, fields: dict[str, Any]) -> Schedule:
        fields = {**fields, "updated_at": utcnow()}
        assignments = ", ".join(f"{name} = ?" for name in fields)
        params = [_encode_column(name, value) for name, value in fields.items()]
        updated = await self._db.execute(
            f"UPDATE schedules SET {assignments} WHERE id = ?",
            [*params, schedule_id],
        )
        if updated == 0:
            raise ScheduleNotFoundError(schedule_id)
        return await self._require(schedule_id)

    async def list_schedules(
        self,
        enabled: bool | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Schedule], int]:
        """List schedules newest first.

        Args:
            enabled: Optional enabled filter.
            page: 1-based page number.
            limit: Page size.

        Returns:
            Tuple of (schedules on the page, total matching).
        """
        where_clause = "1=1"
        params: list[SqliteValue] = []
        if enabled is not None:
            where_clause = "enabled = ?"
            params.append(int(enabled))

        total = await self._db.fetch_scalar(
            f"SELECT COUNT(*) FROM schedules WHERE {where_clause}", params
        )
        rows = await self._db.fetch_all(
            f"""
            SELECT * FROM schedules
            WHERE {where_clause}
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            [*params, limit, (max(page, 1) - 1) * limit],
        )
        return [_row_to_schedule(row) for row in rows], total if isinstance(total, int) else 0

    async def update(
        self,
        schedule_id: str,
        now: datetime | None = None,
        **fields: Any,
    ) -> Schedule:
        """Edit a schedule.

        Args:
            schedule_id: Schedule identifier.
            now: Reference time if next_run_at has to be recomputed.
            **fields: Editable schedule fields.

        Returns:
            The schedule after the update.

        Raises:
            ValueError: If a field is not editable.
            ScheduleNotFoundError: If the schedule doesn't exist.
        """
        unknown = set(fields) - _EDITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown schedule fields: {', '.join(sorted(unknown))}")

        current = await self._require(schedule_id)
        cron_expression = fields.get("cron_expression", current.cron_expression)
        timezone = fields.get("timezone", current.timezone)
        if (cron_expression, timezone) != (current.cron_expression, current.timezone):
            fields["next_run_at"] = calculate_next_run(cron_expression, timezone, now)

        return await self._write(schedule_id, fields)

    async def set_enabled(self, schedule_id: str, enabled: bool) -> Schedule:
        """Enable or disable a schedule.

        Args:
            schedule_id: Schedule identifier.
            enabled: New enabled flag.

        Returns:
            The updated schedule.

        Raises:
            ScheduleNotFoundError: If the schedule doesn't exist.
        """
        return await self._write(schedule_id, {"enabled": enabled})

    async def delete(self, schedule_id: str) -> None:
        """Delete a schedule.

        Args:
            schedule_id: Schedule identifier.

        Raises:
            ScheduleNotFoundError: If the schedule doesn't exist.
        """
        deleted = await self._db.execute("DELETE FROM schedules WHERE id = ?", (schedule_id,))
        if deleted == 0:
            raise ScheduleNotFoundError(schedule_id)

    async def get_due(self, now: datetime | None = None) -> list[Schedule]:
        """Get enabled schedules whose next run is at or before now.

        Args:
            now: Reference time (defaults to the current time).

        Returns:
            Due schedules, earliest first.
        """
        rows = await self._db.fetch_all(
            """
            SELECT * FROM schedules
            WHERE enabled = 1 AND next_run_at IS NOT NULL AND next_run_at <= ?
            ORDER BY next_run_at ASC
            """,
            (encode_timestamp(now or datetime.now(UTC)),),
        )
        return [_row_to_schedule(row) for row in rows]

    async def mark_as_run(
        self,
        schedule_id: str,
        job_id: str | None,
        success: bool,
        error: str | None = None,
        now: datetime | None = None,
    ) -> Schedule:
        """Record a run and reschedule.

        On success the topic index advances modulo the topic list length and
        last_error is cleared; on failure error_count is incremented and the
        index stays put. next_run_at is recomputed either way.

        Args:
            schedule_id: Schedule identifier.
            job_id: Job created by the run, if any.
            success: Whether the run created and launched a job.
            error: Failure reason.
            now: Run time (defaults to the current time).

        Returns:
            The updated schedule.

        Raises:
            ScheduleNotFoundError: If the schedule doesn't exist.
        """
        schedule = await self._require(schedule_id)
        now = now or datetime.now(UTC)

        fields: dict[str, Any] = {
            "last_run_at": now,
            "next_run_at": calculate_next_run(schedule.cron_expression, schedule.timezone, now),
            "run_count": schedule.run_count + 1,
        }
        if success:
            fields["topic_index"] = (schedule.topic_index + 1) % (len(schedule.topic_list) or 1)
            fields["last_job_id"] = job_id
            fields["last_error"] = None
        else:
            fields["error_count"] = schedule.error_count + 1
            fields["last_error"] = error

        return await self._write(schedule_id, fields)

    async def get_stats(self) -> ScheduleStats:
        """Compute counters over all schedules."""
        row = await self._db.fetch_one(
            """
            SELECT
                COUNT(*),
                COALESCE(SUM(enabled = 1), 0),
                COALESCE(SUM(run_count), 0),
                COALESCE(SUM(error_count), 0)
            FROM schedules
            """
        )
        total, enabled, runs, errors = (row[0], row[1], row[2], row[3]) if row else (0, 0, 0, 0)
        return ScheduleStats(
            total=total,
            enabled=enabled,
            disabled=total - enabled,
            total_runs=runs,
            total_errors=errors,
        )
