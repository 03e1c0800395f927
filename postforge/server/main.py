# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""FastAPI application setup and configuration."""
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from loguru import logger

from postforge import __version__
from postforge.logging import log_server_startup
from postforge.pipeline.handlers import load_handlers
from postforge.server.config import ServerConfig
from postforge.server.database import JobRepository
from postforge.server.database.connection import Database
from postforge.server.dependencies import (
    clear_config,
    clear_database,
    clear_engine,
    get_scheduler_trigger,
    set_config,
    set_database,
    set_engine,
)
from postforge.server.engine.service import WorkflowEngine
from postforge.server.lifecycle.schedule_ticker import ScheduleTicker
from postforge.server.routes import cron_router, health_router, jobs_router, schedules_router
from postforge.server.routes.jobs import configure_exception_handlers


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan events.

    Sets start_time on startup for uptime calculation.
    Initializes configuration, database, engine, and the optional in-process
    schedule ticker.
    """
    config = ServerConfig()
    set_config(config)

    # Connect to database and ensure schema exists
    database = Database(config.database_path)
    await database.connect()
    await database.ensure_schema()
    set_database(database)

    handlers = load_handlers(config.handlers)
    engine = WorkflowEngine(
        repository=JobRepository(database),
        handlers=handlers,
        poll_interval=config.poll_interval_seconds,
        review_timeout=config.review_timeout_seconds,
        deploy_timeout=config.deploy_timeout_seconds,
    )
    set_engine(engine)

    ticker: ScheduleTicker | None = None
    if config.scheduler_interval_seconds is not None:
        ticker = ScheduleTicker(get_scheduler_trigger(), config.scheduler_interval_seconds)
        await ticker.start()

    log_server_startup(
        host=config.host,
        port=config.port,
        database_path=str(config.database_path),
        version=__version__,
        handlers=config.handlers,
    )

    app.state.start_time = datetime.now(UTC)
    yield

    # Shutdown - stop components in reverse order
    if ticker is not None:
        await ticker.stop()
    active = engine.get_active_jobs()
    if active:
        logger.info("Cancelling active jobs", count=len(active))
    await engine.cancel_all(timeout=config.shutdown_timeout_seconds)
    clear_engine()
    await database.close()
    clear_database()
    clear_config()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    application = FastAPI(
        title="Postforge API",
        description="Blog post generation pipeline REST API",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    configure_exception_handlers(application)

    application.include_router(health_router, prefix="/api")
    application.include_router(jobs_router, prefix="/api")
    application.include_router(schedules_router, prefix="/api")
    application.include_router(cron_router, prefix="/api")

    return application


# Create app instance
app = create_app()
