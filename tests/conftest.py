# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Shared fixtures and helpers for all tests."""
import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest

from postforge.pipeline.handlers import StageHandler, StageHandlers
from postforge.pipeline.noop import create_noop_handlers
from postforge.pipeline.state import JobStatus
from postforge.server.database.connection import Database
from postforge.server.database.job_repository import JobRepository
from postforge.server.database.schedule_repository import ScheduleRepository
from postforge.server.engine.service import WorkflowEngine
from postforge.server.models.job import Job
from postforge.server.models.schedule import Schedule


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test.db"


@pytest.fixture
async def db_with_schema(temp_db_path: Path) -> AsyncGenerator[Database, None]:
    """Create a database with schema initialized.

    The database is automatically closed after the test.
    """
    async with Database(temp_db_path) as db:
        await db.ensure_schema()
        yield db


@pytest.fixture
def job_repository(db_with_schema: Database) -> JobRepository:
    """Job repository over a fresh database."""
    return JobRepository(db_with_schema)


@pytest.fixture
def schedule_repository(db_with_schema: Database) -> ScheduleRepository:
    """Schedule repository over a fresh database."""
    return ScheduleRepository(db_with_schema)


@pytest.fixture
def make_job() -> Callable[..., Job]:
    """Factory fixture for creating Job instances with sensible defaults."""

    def _make(**overrides: Any) -> Job:
        defaults: dict[str, Any] = {
            "id": "job-123",
            "topic": "Python asyncio",
            "status": JobStatus.QUEUED,
        }
        return Job(**{**defaults, **overrides})

    return _make


@pytest.fixture
def make_schedule() -> Callable[..., Schedule]:
    """Factory fixture for creating Schedule instances with sensible defaults."""

    def _make(**overrides: Any) -> Schedule:
        defaults: dict[str, Any] = {
            "name": "Weekly tech",
            "topic_list": ["A", "B"],
            "cron_expression": "0 9 * * *",
            "timezone": "UTC",
        }
        return Schedule(**{**defaults, **overrides})

    return _make


@pytest.fixture
def make_handlers() -> Callable[..., StageHandlers]:
    """Factory fixture building the deterministic handler set with selected stages replaced."""

    def _make(**overrides: StageHandler | None) -> StageHandlers:
        base = create_noop_handlers()
        return StageHandlers(
            research=overrides.get("research") or base.research,
            write=overrides.get("write") or base.write,
            review=overrides.get("review") or base.review,
            create=overrides.get("create") or base.create,
            emit=overrides.get("emit") or base.emit,
            validate=overrides.get("validate") or base.validate,
            deploy=overrides.get("deploy") or base.deploy,
            thumbnail=overrides.get("thumbnail"),
        )

    return _make


@pytest.fixture
def wait_for_status() -> Callable[..., Awaitable[Job]]:
    """Factory fixture polling the store until a job reaches one of the statuses."""

    async def _wait(
        repository: JobRepository,
        job_id: str,
        *statuses: JobStatus,
        timeout: float = 5.0,
    ) -> Job:
        async def _poll() -> Job:
            while True:
                job = await repository.get(job_id)
                if job is not None and job.status in statuses:
                    return job
                await asyncio.sleep(0.005)

        return await asyncio.wait_for(_poll(), timeout=timeout)

    return _wait


@pytest.fixture
async def make_engine(
    job_repository: JobRepository,
    make_handlers: Callable[..., StageHandlers],
) -> AsyncGenerator[Callable[..., WorkflowEngine], None]:
    """Factory fixture for engines with fast polling over the test database.

    Every engine created is cancelled on teardown, before the database closes.
    """
    engines: list[WorkflowEngine] = []

    def _make(handlers: StageHandlers | None = None, **overrides: Any) -> WorkflowEngine:
        options: dict[str, Any] = {
            "poll_interval": 0.01,
            "review_timeout": 5.0,
            "deploy_timeout": 5.0,
        }
        engine = WorkflowEngine(
            repository=job_repository,
            handlers=handlers or make_handlers(),
            **{**options, **overrides},
        )
        engines.append(engine)
        return engine

    yield _make

    for engine in engines:
        await engine.cancel_all(timeout=1.0)
