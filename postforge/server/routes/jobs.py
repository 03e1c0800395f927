# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Job management routes, the progress stream, and exception handlers."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger
from pydantic_core import ValidationError

from postforge.core.types import Category, ReviewAction
from postforge.pipeline.state import JobStatus
from postforge.server.database import JobRepository
from postforge.server.dependencies import get_engine, get_job_repository, get_progress_feed
from postforge.server.engine.service import WorkflowEngine
from postforge.server.exceptions import (
    InvalidStateError,
    JobNotFoundError,
    ScheduleNotFoundError,
)
from postforge.server.models.job import JobStats
from postforge.server.models.requests import (
    CreateJobRequest,
    DeployRequest,
    EditContentRequest,
    ReviewRequest,
)
from postforge.server.models.responses import (
    ActionResponse,
    CreateJobResponse,
    ErrorResponse,
    JobDetailResponse,
    JobListResponse,
)
from postforge.server.scheduler.trigger import build_brief
from postforge.server.stream.feed import ProgressFeed


router = APIRouter(prefix="/jobs", tags=["jobs"])


def _stream_url(job_id: str) -> str:
    return f"/api/jobs/{job_id}/stream"


@router.post("", status_code=status.HTTP_201_CREATED, response_model=CreateJobResponse)
async def create_job(
    request: CreateJobRequest,
    repository: JobRepository = Depends(get_job_repository),
    engine: WorkflowEngine = Depends(get_engine),
) -> CreateJobResponse:
    """Create a job and start running it in the background.

    Args:
        request: Job creation request.
        repository: Job repository dependency.
        engine: Workflow engine dependency.

    Returns:
        CreateJobResponse with the job ID and its stream URL.
    """
    job = await repository.create(
        topic=request.topic,
        category=request.category,
        template=request.template,
    )
    engine.launch(job.id, brief=build_brief(job.topic, request.target_reader, request.keywords))

    logger.info("Created job", job_id=job.id, topic=job.topic)

    return CreateJobResponse(
        id=job.id,
        status=job.status,
        stream_url=_stream_url(job.id),
        message=f"Job created for topic: {job.topic}",
    )


@router.get("", response_model=JobListResponse)
async def list_jobs(
    status_filter: JobStatus | None = Query(default=None, alias="status"),
    category: Category | None = None,
    search: str | None = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    repository: JobRepository = Depends(get_job_repository),
) -> JobListResponse:
    """List jobs newest first.

    Args:
        status_filter: Optional status filter (query parameter "status").
        category: Optional category filter.
        search: Optional case-insensitive topic substring.
        page: 1-based page number.
        limit: Page size.
        repository: Job repository dependency.

    Returns:
        A page of jobs with the total count.
    """
    jobs, total = await repository.list_jobs(
        status=status_filter, category=category, search=search, page=page, limit=limit
    )
    return JobListResponse(
        jobs=jobs,
        total=total,
        page=page,
        limit=limit,
        has_more=page * limit < total,
    )


@router.get("/stats", response_model=JobStats)
async def get_job_stats(
    repository: JobRepository = Depends(get_job_repository),
) -> JobStats:
    """Get dashboard counters over all jobs."""
    return await repository.get_stats()


@router.get("/{job_id}", response_model=JobDetailResponse)
async def get_job(
    job_id: str,
    repository: JobRepository = Depends(get_job_repository),
) -> JobDetailResponse:
    """Get a job with its full progress log.

    Raises:
        JobNotFoundError: If the job doesn't exist.
    """
    job = await repository.get(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    logs = await repository.get_logs(job_id)
    return JobDetailResponse(job=job, logs=logs)


@router.delete("/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_job(
    job_id: str,
    repository: JobRepository = Depends(get_job_repository),
) -> None:
    """Delete a job and its progress log.

    An engine task still waiting on the job notices the deletion on its next
    poll and stops.

    Raises:
        JobNotFoundError: If the job doesn't exist.
    """
    await repository.delete(job_id)
    logger.info("Deleted job", job_id=job_id)


@router.get("/{job_id}/stream")
async def stream_job(
    job_id: str,
    request: Request,
    since: int | None = Query(default=None, ge=0, description="Resume after this log id"),
    last_event_id: str | None = Header(default=None),
    repository: JobRepository = Depends(get_job_repository),
    feed: ProgressFeed = Depends(get_progress_feed),
) -> StreamingResponse:
    """Stream a job's progress as Server-Sent Events.

    Resumes after the Last-Event-ID header (or the ``since`` parameter) when
    given; otherwise only entries appended after connecting are relayed.

    Raises:
        JobNotFoundError: If the job doesn't exist.
    """
    if await repository.get(job_id) is None:
        raise JobNotFoundError(job_id)

    cursor = since
    if last_event_id is not None and last_event_id.isdigit():
        cursor = int(last_event_id)

    async def event_stream() -> AsyncIterator[str]:
        async for event in feed.events(job_id, cursor, is_disconnected=request.is_disconnected):
            yield event.to_sse()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/{job_id}/review", response_model=ActionResponse)
async def review_job(
    job_id: str,
    request: ReviewRequest,
    engine: WorkflowEngine = Depends(get_engine),
) -> ActionResponse:
    """Submit a human review decision.

    Raises:
        JobNotFoundError: If the job doesn't exist.
        InvalidStateError: If the job is not in human_review.
    """
    job = await engine.submit_review(job_id, request.action, request.feedback)
    return ActionResponse(
        job_id=job_id,
        status=job.status,
        message=f"Human review: {request.action}",
    )


@router.post("/{job_id}/hold", response_model=ActionResponse)
async def hold_job(
    job_id: str,
    engine: WorkflowEngine = Depends(get_engine),
) -> ActionResponse:
    """Put a job in human_review on hold.

    Raises:
        JobNotFoundError: If the job doesn't exist.
        InvalidStateError: If the job is not in human_review.
    """
    job = await engine.submit_review(job_id, ReviewAction.HOLD)
    return ActionResponse(job_id=job_id, status=job.status, message="Job put on hold")


@router.delete("/{job_id}/hold", response_model=ActionResponse)
async def resume_job(
    job_id: str,
    engine: WorkflowEngine = Depends(get_engine),
) -> ActionResponse:
    """Resume a held job back to human_review.

    Raises:
        JobNotFoundError: If the job doesn't exist.
        InvalidStateError: If the job is not on hold.
    """
    job = await engine.resume(job_id)
    return ActionResponse(job_id=job_id, status=job.status, message="Job resumed for review")


@router.patch("/{job_id}/content", response_model=ActionResponse)
async def edit_job_content(
    job_id: str,
    request: EditContentRequest,
    engine: WorkflowEngine = Depends(get_engine),
) -> ActionResponse:
    """Replace the final content of a job awaiting human review.

    Raises:
        JobNotFoundError: If the job doesn't exist.
        InvalidStateError: If the job is not in human_review.
    """
    job = await engine.edit_content(job_id, request.final_content, request.metadata)
    return ActionResponse(job_id=job_id, status=job.status, message="Content updated")


@router.post("/{job_id}/deploy", response_model=ActionResponse)
async def deploy_job(
    job_id: str,
    request: DeployRequest,
    engine: WorkflowEngine = Depends(get_engine),
) -> ActionResponse:
    """Approve or reject deploying a job in pending_deploy.

    Raises:
        JobNotFoundError: If the job doesn't exist.
        InvalidStateError: If the job is not pending deploy.
    """
    job = await engine.decide_deploy(job_id, request.action)
    message = "Deploy started" if job.status == JobStatus.DEPLOYING else "Deploy cancelled"
    return ActionResponse(job_id=job_id, status=job.status, message=message)


def configure_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers for the FastAPI application.

    Registers handlers for all custom exceptions to return appropriate
    HTTP status codes and error responses.

    Args:
        app: FastAPI application instance.
    """

    @app.exception_handler(InvalidStateError)
    async def invalid_state_handler(
        request: Request, exc: InvalidStateError
    ) -> JSONResponse:
        """Handle InvalidStateError with 422 Unprocessable Entity."""
        logger.warning(
            "Invalid state for job", job_id=exc.job_id, current_status=exc.current_status
        )
        error = ErrorResponse(
            code="INVALID_STATE",
            error=str(exc),
            details={
                "job_id": exc.job_id,
                "current_status": exc.current_status,
            },
        )
        return JSONResponse(
            status_code=422,
            content=error.model_dump(),
        )

    @app.exception_handler(JobNotFoundError)
    async def job_not_found_handler(
        request: Request, exc: JobNotFoundError
    ) -> JSONResponse:
        """Handle JobNotFoundError with 404 Not Found."""
        logger.warning("Job not found", job_id=exc.job_id)
        error = ErrorResponse(
            code="NOT_FOUND",
            error=str(exc),
            details={"job_id": exc.job_id},
        )
        return JSONResponse(
            status_code=404,
            content=error.model_dump(),
        )

    @app.exception_handler(ScheduleNotFoundError)
    async def schedule_not_found_handler(
        request: Request, exc: ScheduleNotFoundError
    ) -> JSONResponse:
        """Handle ScheduleNotFoundError with 404 Not Found."""
        logger.warning("Schedule not found", schedule_id=exc.schedule_id)
        error = ErrorResponse(
            code="NOT_FOUND",
            error=str(exc),
            details={"schedule_id": exc.schedule_id},
        )
        return JSONResponse(
            status_code=404,
            content=error.model_dump(),
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        """Handle Pydantic ValidationError with 400 Bad Request."""
        logger.warning("Validation error", error=str(exc))
        errors: list[dict[str, object]] = []
        for error in exc.errors():
            serializable_error: dict[str, object] = {
                "type": error["type"],
                "loc": list(error["loc"]),
                "msg": error["msg"],
            }
            if "ctx" in error:
                serializable_error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
            errors.append(serializable_error)

        error_response = ErrorResponse(
            code="VALIDATION_ERROR",
            error="Validation failed",
            details={"errors": errors},
        )
        return JSONResponse(
            status_code=400,
            content=error_response.model_dump(),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle generic exceptions with 500 Internal Server Error."""
        logger.exception("Unhandled exception", error=str(exc))
        error = ErrorResponse(
            code="INTERNAL_ERROR",
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content=error.model_dump(),
        )
