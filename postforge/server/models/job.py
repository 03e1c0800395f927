# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Persisted job and progress log models."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from postforge.core.types import (
    Category,
    LogStatus,
    PRResult,
    ReviewResult,
    Template,
    ValidationResult,
)
from postforge.pipeline.state import TERMINAL_STATUSES, JobStatus


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class Job(BaseModel):
    """A single content-generation job.

    Attributes:
        id: Opaque unique identifier.
        topic: Topic the post is about.
        category: Content category.
        template: Post template, if any.
        status: Current pipeline status.
        current_step: Label of the active step (display only).
        progress: Overall progress percentage (0-100).
        research_data: Research stage output.
        draft_content: Writer output.
        final_content: Final post body.
        metadata: Post metadata.
        review_result: Automated review of the draft.
        validation_result: Validation outcome.
        human_approval: Review decision; None until a reviewer decides.
        human_feedback: Reviewer feedback for the next write.
        filepath: Path of the emitted post.
        pr_result: Deploy artifact.
        commit_hash: Commit created by the deploy.
        error: Failure message when status is failed.
        created_at: Creation time.
        updated_at: Last mutation time.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    topic: str
    category: Category = Category.TECH
    template: Template | None = None
    status: JobStatus = JobStatus.QUEUED
    current_step: str | None = None
    progress: int = Field(default=0, ge=0, le=100)

    research_data: dict[str, Any] | None = None
    draft_content: str | None = None
    final_content: str | None = None
    metadata: dict[str, Any] | None = None
    review_result: ReviewResult | None = None
    validation_result: ValidationResult | None = None

    human_approval: bool | None = None
    human_feedback: str | None = None

    filepath: str | None = None
    pr_result: PRResult | None = None
    commit_hash: str | None = None
    error: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        """Whether the job has reached completed or failed."""
        return self.status in TERMINAL_STATUSES


class ProgressLog(BaseModel):
    """One entry of a job's append-only progress log.

    Attributes:
        id: Store-wide, strictly increasing identifier; used as a delta cursor.
        job_id: Owning job.
        step: Step label.
        status: Entry status.
        message: Human-readable message.
        data: Optional structured payload.
        created_at: When the entry was appended.
    """

    id: int
    job_id: str
    step: str
    status: LogStatus
    message: str
    data: dict[str, Any] | None = None
    created_at: datetime


class JobStats(BaseModel):
    """Dashboard counters over all jobs.

    Attributes:
        total: Number of jobs.
        completed: Jobs that reached completed.
        failed: Jobs that reached failed.
        pending_reviews: Jobs waiting in human_review.
        success_rate: Rounded percentage of finished jobs that completed.
    """

    total: int
    completed: int
    failed: int
    pending_reviews: int
    success_rate: int
