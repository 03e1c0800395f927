# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Response schemas for REST API endpoints."""

from typing import Annotated, Any

from pydantic import BaseModel, Field

from postforge.pipeline.state import JobStatus
from postforge.server.models.job import Job, ProgressLog
from postforge.server.models.schedule import Schedule, ScheduleRunResult


class ErrorResponse(BaseModel):
    """Uniform error body.

    Attributes:
        error: Human-readable error message
        code: Machine-readable error code
        details: Optional structured context
    """

    error: Annotated[str, Field(description="Human-readable error message")]
    code: Annotated[str, Field(description="Machine-readable error code")]
    details: Annotated[
        dict[str, Any] | None,
        Field(default=None, description="Additional error context"),
    ] = None


class CreateJobResponse(BaseModel):
    """Response from creating a job.

    Attributes:
        id: Job identifier
        status: Initial status
        stream_url: Progress feed for the job
        message: Human-readable status message
    """

    id: Annotated[str, Field(description="Job identifier")]
    status: Annotated[JobStatus, Field(description="Initial job status")]
    stream_url: Annotated[str, Field(description="Server-Sent Events progress feed")]
    message: Annotated[str, Field(description="Human-readable status message")]


class JobListResponse(BaseModel):
    """A page of jobs."""

    jobs: list[Job]
    total: int
    page: int
    limit: int
    has_more: bool = False


class JobDetailResponse(BaseModel):
    """A job with its full progress log."""

    job: Job
    logs: list[ProgressLog]


class ActionResponse(BaseModel):
    """Result of a decision on a job.

    Attributes:
        job_id: Affected job
        status: Job status after the decision
        message: Human-readable outcome
    """

    job_id: str
    status: JobStatus
    message: str


class ScheduleListResponse(BaseModel):
    """A page of schedules."""

    schedules: list[Schedule]
    total: int
    page: int
    limit: int
    has_more: bool = False


class CronRunResponse(BaseModel):
    """Summary of one scheduler trigger invocation."""

    processed: int
    successful: int
    failed: int
    results: list[ScheduleRunResult]
