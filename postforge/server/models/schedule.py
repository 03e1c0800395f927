# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Recurring schedule models."""

from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from postforge.core.types import Category, Template, TopicSource
from postforge.server.models.job import utcnow


DEFAULT_TIMEZONE = "Asia/Seoul"


class Schedule(BaseModel):
    """A recurring job template fired on a simplified cron calendar.

    Attributes:
        id: Unique identifier.
        name: Display name.
        description: Optional free text.
        enabled: Disabled schedules are never due.
        topic_source: Where topics come from; only manual lists resolve today.
        topic_list: Ordered manual topics.
        topic_index: Position of the next manual topic.
        category: Category of created jobs.
        template: Template of created jobs.
        target_reader: Audience hint folded into the job brief.
        keywords: Keywords folded into the job brief.
        cron_expression: Five-field expression (minute hour dom month dow).
        timezone: IANA zone the expression is evaluated in.
        last_run_at: Last time the schedule fired.
        next_run_at: Next due time (UTC).
        last_job_id: Job created by the last successful run.
        run_count: Number of runs, successful or not.
        error_count: Number of failed runs.
        last_error: Error of the last run; cleared on success.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    description: str | None = None
    enabled: bool = True
    topic_source: TopicSource = TopicSource.MANUAL
    topic_list: list[str] = Field(default_factory=list)
    topic_index: int = Field(default=0, ge=0)
    category: Category = Category.TECH
    template: Template = Template.DEFAULT
    target_reader: str | None = None
    keywords: list[str] = Field(default_factory=list)
    cron_expression: str
    timezone: str = DEFAULT_TIMEZONE
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    last_job_id: str | None = None
    run_count: int = 0
    error_count: int = 0
    last_error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ScheduleStats(BaseModel):
    """Counters over all schedules."""

    total: int
    enabled: int
    disabled: int
    total_runs: int
    total_errors: int


class ScheduleRunResult(BaseModel):
    """Outcome of processing one due schedule.

    Attributes:
        schedule_id: Processed schedule.
        name: Schedule name.
        success: Whether a job was created and launched.
        job_id: Created job, if any.
        topic: Topic used, if any.
        error: Failure reason, if any.
    """

    schedule_id: str
    name: str
    success: bool
    job_id: str | None = None
    topic: str | None = None
    error: str | None = None
