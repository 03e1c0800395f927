"""Domain models for the Postforge server."""

from postforge.server.models.job import Job, JobStats, ProgressLog
from postforge.server.models.requests import (
    CreateJobRequest,
    CreateScheduleRequest,
    DeployRequest,
    ReviewRequest,
    SetEnabledRequest,
    UpdateScheduleRequest,
)
from postforge.server.models.responses import (
    ActionResponse,
    CreateJobResponse,
    CronRunResponse,
    ErrorResponse,
    JobDetailResponse,
    JobListResponse,
    ScheduleListResponse,
)
from postforge.server.models.schedule import Schedule, ScheduleRunResult, ScheduleStats


__all__ = [
    # Jobs
    "Job",
    "JobStats",
    "ProgressLog",
    # Schedules
    "Schedule",
    "ScheduleRunResult",
    "ScheduleStats",
    # Requests
    "CreateJobRequest",
    "CreateScheduleRequest",
    "DeployRequest",
    "ReviewRequest",
    "SetEnabledRequest",
    "UpdateScheduleRequest",
    # Responses
    "ActionResponse",
    "CreateJobResponse",
    "CronRunResponse",
    "ErrorResponse",
    "JobDetailResponse",
    "JobListResponse",
    "ScheduleListResponse",
]
