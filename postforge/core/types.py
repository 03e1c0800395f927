# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Shared type definitions for jobs, schedules and stage progress.

Contains the closed vocabularies (Category, Template, TopicSource, LogStatus)
and the artifact models stage handlers produce (ReviewResult, ValidationResult,
PRResult), plus the StageEvent emitted through a ProgressCallback.
"""
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Category(StrEnum):
    """Content category of a job."""

    TECH = "tech"
    LIFE = "life"


class Template(StrEnum):
    """Post template a writer stage should follow."""

    TUTORIAL = "tutorial"
    COMPARISON = "comparison"
    DEEP_DIVE = "deep-dive"
    TIPS = "tips"
    DEFAULT = "default"


class TopicSource(StrEnum):
    """Where a schedule draws its next topic from."""

    MANUAL = "manual"
    RSS = "rss"
    AI_SUGGEST = "ai_suggest"


class LogStatus(StrEnum):
    """Status of a single progress log entry."""

    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    ERROR = "error"


def resolve_template(value: str | None) -> Template:
    """Coerce a free-form template name into a known Template.

    Unknown or empty values fall back to Template.DEFAULT.

    Args:
        value: Template name as received from a caller or a schedule row.

    Returns:
        Matching Template member.
    """
    try:
        return Template(value) if value else Template.DEFAULT
    except ValueError:
        return Template.DEFAULT


class ReviewResult(BaseModel):
    """Automated review of a draft.

    Attributes:
        seo_score: SEO score from 0 to 100.
        tech_accuracy: Technical accuracy score from 0 to 100.
        suggestions: Improvement suggestions for the writer.
        issues: Problems found in the draft.
    """

    model_config = ConfigDict(extra="allow")

    seo_score: int = Field(default=0, ge=0, le=100)
    tech_accuracy: int = Field(default=0, ge=0, le=100)
    suggestions: list[str] = Field(default_factory=list)
    issues: list[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    """Outcome of validating an emitted post.

    Attributes:
        passed: Whether the post may be deployed.
        errors: Reasons validation failed (empty when passed).
    """

    passed: bool
    errors: list[str] = Field(default_factory=list)


class PRResult(BaseModel):
    """Deploy artifact: the branch and pull request created for a post."""

    branch_name: str
    pr_number: int | None = None
    pr_url: str | None = None


class StageEvent(BaseModel):
    """Progress event emitted by a stage handler while it runs.

    Attributes:
        step: Step label, usually the stage name (e.g. "research").
        status: Log status of the event.
        message: Human-readable message.
        progress: Fraction of the stage completed, between 0.0 and 1.0.
        data: Optional structured payload stored with the log entry.
    """

    model_config = ConfigDict(frozen=True)

    step: str
    status: LogStatus = LogStatus.PROGRESS
    message: str
    progress: float | None = Field(default=None, ge=0.0, le=1.0)
    data: dict[str, Any] | None = None


ProgressCallback = Callable[[StageEvent], Awaitable[None]]


class ReviewAction(StrEnum):
    """Decision a reviewer can take on a job in human_review."""

    APPROVE = "approve"
    FEEDBACK = "feedback"  # Revise with the given feedback
    REWRITE = "rewrite"  # Same loop as feedback, stronger tone for the writer
    HOLD = "hold"  # Park the job until it is resumed


class DeployAction(StrEnum):
    """Decision on a job waiting in pending_deploy."""

    APPROVE = "approve"
    REJECT = "reject"
