# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Health check endpoints for liveness and readiness probes."""
from datetime import UTC, datetime
from typing import Literal

import psutil
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from postforge import __version__
from postforge.server.database.connection import Database
from postforge.server.dependencies import get_database, get_engine
from postforge.server.engine.service import WorkflowEngine


router = APIRouter(prefix="/health", tags=["health"])


class LivenessResponse(BaseModel):
    """Response model for liveness probe."""

    status: Literal["alive"] = "alive"


class ReadinessResponse(BaseModel):
    """Response model for readiness probe."""

    status: Literal["ready", "not_ready"]


class HealthResponse(BaseModel):
    """Response model for detailed health check."""

    status: Literal["healthy", "degraded"]
    version: str
    uptime_seconds: float
    active_jobs: int
    memory_mb: float
    database: Literal["healthy", "unhealthy"]


@router.get("/live", response_model=LivenessResponse)
async def liveness() -> LivenessResponse:
    """Minimal liveness check - is the server responding?"""
    return LivenessResponse()


@router.get("/ready", response_model=ReadinessResponse)
async def readiness(db: Database = Depends(get_database)) -> ReadinessResponse | JSONResponse:
    """Readiness check - can the server reach its database?

    Returns:
        Ready status, or 503 with not_ready when the database check fails.
    """
    if await db.is_healthy():
        return ReadinessResponse(status="ready")
    return JSONResponse(
        status_code=503,
        content=ReadinessResponse(status="not_ready").model_dump(),
    )


@router.get("", response_model=HealthResponse)
async def health(
    request: Request,
    db: Database = Depends(get_database),
    engine: WorkflowEngine = Depends(get_engine),
) -> HealthResponse:
    """Detailed health check with server metrics.

    Returns:
        Server status, version, uptime, active job count, memory usage and
        database status.
    """
    process = psutil.Process()
    start_time: datetime = request.app.state.start_time
    uptime = (datetime.now(UTC) - start_time).total_seconds()

    db_healthy = await db.is_healthy()

    return HealthResponse(
        status="healthy" if db_healthy else "degraded",
        version=__version__,
        uptime_seconds=uptime,
        active_jobs=len(engine.get_active_jobs()),
        memory_mb=round(process.memory_info().rss / 1024 / 1024, 2),
        database="healthy" if db_healthy else "unhealthy",
    )
