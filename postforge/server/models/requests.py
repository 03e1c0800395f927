# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Request schemas for REST API endpoints."""

from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator, model_validator

from postforge.core.types import (
    Category,
    DeployAction,
    ReviewAction,
    Template,
    TopicSource,
)
from postforge.server.models.schedule import DEFAULT_TIMEZONE


def _validate_cron_expression(cls: type, v: str) -> str:
    """Require exactly five whitespace-separated fields.

    Args:
        cls: The model class (unused, required by field_validator).
        v: Expression to validate.

    Returns:
        The expression with normalized whitespace.

    Raises:
        ValueError: If the expression does not have five fields.
    """
    parts = v.split()
    if len(parts) != 5:
        msg = "cron_expression must have five fields: minute hour day-of-month month day-of-week"
        raise ValueError(msg)
    return " ".join(parts)


class CreateJobRequest(BaseModel):
    """Request to create and launch a job.

    Attributes:
        topic: Topic of the post (1-500 chars)
        category: Content category
        template: Optional post template
        target_reader: Optional audience hint for the writer
        keywords: Optional keywords for the writer
    """

    topic: Annotated[str, Field(min_length=1, max_length=500, description="Topic of the post")]
    category: Annotated[Category, Field(description="Content category")] = Category.TECH
    template: Annotated[Template | None, Field(description="Post template")] = None
    target_reader: Annotated[
        str | None, Field(default=None, max_length=200, description="Audience hint")
    ] = None
    keywords: Annotated[list[str], Field(default_factory=list, description="Keywords")]

    @field_validator("topic")
    @classmethod
    def strip_topic(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("topic cannot be blank")
        return v


class ReviewRequest(BaseModel):
    """Human review decision.

    Attributes:
        action: approve, feedback, rewrite or hold
        feedback: Required for feedback and rewrite
    """

    action: Annotated[ReviewAction, Field(description="Review decision")]
    feedback: Annotated[
        str | None, Field(default=None, max_length=5000, description="Reviewer feedback")
    ] = None

    @model_validator(mode="after")
    def require_feedback(self) -> "ReviewRequest":
        if self.action in (ReviewAction.FEEDBACK, ReviewAction.REWRITE) and not (
            self.feedback and self.feedback.strip()
        ):
            raise ValueError(f"feedback is required for action '{self.action}'")
        return self


class EditContentRequest(BaseModel):
    """Reviewer edit of the final content while a job awaits review.

    Attributes:
        final_content: Replacement post body (non-empty)
        metadata: Optional replacement metadata
    """

    final_content: Annotated[str, Field(min_length=1, description="Final post body")]
    metadata: Annotated[
        dict[str, Any] | None, Field(default=None, description="Post metadata")
    ] = None

    @field_validator("final_content")
    @classmethod
    def require_content(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("final_content cannot be blank")
        return v


class DeployRequest(BaseModel):
    """Deploy decision for a job in pending_deploy."""

    action: Annotated[DeployAction, Field(description="Deploy decision")]


class CreateScheduleRequest(BaseModel):
    """Request to create a recurring schedule."""

    name: Annotated[str, Field(min_length=1, max_length=200)]
    description: str | None = None
    enabled: bool = True
    topic_source: TopicSource = TopicSource.MANUAL
    topic_list: list[str] = Field(default_factory=list)
    category: Category = Category.TECH
    template: Template = Template.DEFAULT
    target_reader: str | None = None
    keywords: list[str] = Field(default_factory=list)
    cron_expression: str
    timezone: str = DEFAULT_TIMEZONE

    validate_cron = field_validator("cron_expression")(_validate_cron_expression)


class UpdateScheduleRequest(BaseModel):
    """Partial schedule update; only set fields are applied."""

    name: Annotated[str | None, Field(default=None, min_length=1, max_length=200)] = None
    description: str | None = None
    enabled: bool | None = None
    topic_source: TopicSource | None = None
    topic_list: list[str] | None = None
    topic_index: Annotated[int | None, Field(default=None, ge=0)] = None
    category: Category | None = None
    template: Template | None = None
    target_reader: str | None = None
    keywords: list[str] | None = None
    cron_expression: str | None = None
    timezone: str | None = None

    @field_validator("cron_expression")
    @classmethod
    def validate_cron(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _validate_cron_expression(cls, v)


class SetEnabledRequest(BaseModel):
    """Enable or disable a schedule."""

    enabled: bool
