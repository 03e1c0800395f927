# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Shared fixtures for route tests."""
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from postforge.server.config import ServerConfig
from postforge.server.database.connection import Database
from postforge.server.database.job_repository import JobRepository
from postforge.server.database.schedule_repository import ScheduleRepository
from postforge.server.dependencies import (
    get_config,
    get_database,
    get_engine,
    get_job_repository,
    get_progress_feed,
    get_schedule_repository,
    get_scheduler_trigger,
)
from postforge.server.engine.service import WorkflowEngine
from postforge.server.routes import cron_router, health_router, jobs_router, schedules_router
from postforge.server.routes.jobs import configure_exception_handlers
from postforge.server.scheduler.trigger import SchedulerTrigger
from postforge.server.stream.feed import ProgressFeed


CRON_SECRET = "s3cret"


@pytest.fixture
def mock_engine() -> MagicMock:
    """Create a mock workflow engine."""
    engine = MagicMock(spec=WorkflowEngine)
    engine.launch.return_value = True
    engine.get_active_jobs.return_value = []
    return engine


@pytest.fixture
def server_config(tmp_path: Path) -> ServerConfig:
    return ServerConfig(database_path=tmp_path / "unused.db", cron_secret=CRON_SECRET)


@pytest.fixture
def app(
    db_with_schema: Database,
    job_repository: JobRepository,
    schedule_repository: ScheduleRepository,
    mock_engine: MagicMock,
    server_config: ServerConfig,
) -> FastAPI:
    """Create a test FastAPI app over a real database and a mock engine."""
    test_app = FastAPI()
    configure_exception_handlers(test_app)
    for router in (health_router, jobs_router, schedules_router, cron_router):
        test_app.include_router(router, prefix="/api")
    test_app.state.start_time = datetime.now(UTC)

    test_app.dependency_overrides[get_config] = lambda: server_config
    test_app.dependency_overrides[get_database] = lambda: db_with_schema
    test_app.dependency_overrides[get_job_repository] = lambda: job_repository
    test_app.dependency_overrides[get_schedule_repository] = lambda: schedule_repository
    test_app.dependency_overrides[get_engine] = lambda: mock_engine
    test_app.dependency_overrides[get_progress_feed] = lambda: ProgressFeed(
        job_repository, poll_interval=0.01, error_backoff=0.01
    )
    test_app.dependency_overrides[get_scheduler_trigger] = lambda: SchedulerTrigger(
        schedule_repository, job_repository, mock_engine
    )

    return test_app


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
