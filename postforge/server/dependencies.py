# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""FastAPI dependency injection providers."""

from __future__ import annotations

from postforge.server.config import ServerConfig
from postforge.server.database import JobRepository, ScheduleRepository
from postforge.server.database.connection import Database
from postforge.server.engine.service import WorkflowEngine
from postforge.server.scheduler.trigger import SchedulerTrigger
from postforge.server.stream.feed import ProgressFeed


# Module-level instances, owned by the application lifespan
_config: ServerConfig | None = None
_database: Database | None = None
_engine: WorkflowEngine | None = None


def set_config(config: ServerConfig) -> None:
    """Set the global server configuration.

    This should be called during application startup.

    Args:
        config: ServerConfig instance to set.
    """
    global _config
    _config = config


def clear_config() -> None:
    """Clear the global server configuration."""
    global _config
    _config = None


def get_config() -> ServerConfig:
    """Get the server configuration.

    Raises:
        RuntimeError: If config is not initialized (server not started).
    """
    if _config is None:
        raise RuntimeError("Server config not initialized. Is the server running?")
    return _config


def set_database(db: Database) -> None:
    """Set the global database instance.

    This should be called during application startup.

    Args:
        db: Database instance to set.
    """
    global _database
    _database = db


def clear_database() -> None:
    """Clear the global database instance.

    This should be called during application shutdown.
    """
    global _database
    _database = None


def get_database() -> Database:
    """Get the database instance.

    Raises:
        RuntimeError: If database not initialized.
    """
    if _database is None:
        raise RuntimeError("Database not initialized. Is the server running?")
    return _database


def get_job_repository() -> JobRepository:
    """Get the job repository dependency.

    Raises:
        RuntimeError: If database not initialized.
    """
    return JobRepository(get_database())


def get_schedule_repository() -> ScheduleRepository:
    """Get the schedule repository dependency.

    Raises:
        RuntimeError: If database not initialized.
    """
    return ScheduleRepository(get_database())


def set_engine(engine: WorkflowEngine) -> None:
    """Set the global workflow engine.

    This should be called during application startup.

    Args:
        engine: WorkflowEngine instance to set.
    """
    global _engine
    _engine = engine


def clear_engine() -> None:
    """Clear the global workflow engine.

    This should be called during application shutdown.
    """
    global _engine
    _engine = None


def get_engine() -> WorkflowEngine:
    """Get the workflow engine.

    Raises:
        RuntimeError: If the engine is not initialized.
    """
    if _engine is None:
        raise RuntimeError("Workflow engine not initialized. Is the server running?")
    return _engine


def get_progress_feed() -> ProgressFeed:
    """Build a progress feed using the configured poll intervals."""
    config = get_config()
    return ProgressFeed(
        get_job_repository(),
        poll_interval=config.feed_poll_interval_seconds,
        error_backoff=config.feed_error_backoff_seconds,
    )


def get_scheduler_trigger() -> SchedulerTrigger:
    """Build a scheduler trigger over the shared stores and engine."""
    return SchedulerTrigger(
        schedules=get_schedule_repository(),
        jobs=get_job_repository(),
        engine=get_engine(),
    )
