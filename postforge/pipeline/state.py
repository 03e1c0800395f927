# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Job status state machine, progress weights and the immutable stage state.

This module defines:
- JobStatus: closed set of pipeline states with a transition table
- STAGE_PROGRESS: per-stage progress window used to compute job progress
- stage_for_step: mapping from raw step labels to UI stage buckets
- JobState: frozen snapshot handed to stage handlers, updated with apply_patch
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from postforge.core.exceptions import StageError
from postforge.core.types import Category, PRResult, ReviewResult, Template, ValidationResult


class JobStatus(StrEnum):
    """Status of a job in the pipeline."""

    QUEUED = "queued"
    RUNNING = "running"
    RESEARCH = "research"
    WRITING = "writing"
    REVIEW = "review"
    HUMAN_REVIEW = "human_review"  # Awaiting a review decision
    ON_HOLD = "on_hold"  # Parked by a reviewer
    CREATING = "creating"
    VALIDATING = "validating"
    PENDING_DEPLOY = "pending_deploy"  # Awaiting deploy approval
    DEPLOYING = "deploying"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# States in which the job waits for an external decision
CHECKPOINT_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.HUMAN_REVIEW, JobStatus.PENDING_DEPLOY}
)

VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.QUEUED: {JobStatus.RUNNING, JobStatus.FAILED},
    JobStatus.RUNNING: {JobStatus.RESEARCH, JobStatus.FAILED},
    JobStatus.RESEARCH: {JobStatus.WRITING, JobStatus.FAILED},
    JobStatus.WRITING: {JobStatus.REVIEW, JobStatus.FAILED},
    JobStatus.REVIEW: {JobStatus.HUMAN_REVIEW, JobStatus.FAILED},
    JobStatus.HUMAN_REVIEW: {
        JobStatus.CREATING,
        JobStatus.WRITING,
        JobStatus.ON_HOLD,
        JobStatus.FAILED,
    },
    JobStatus.ON_HOLD: {JobStatus.HUMAN_REVIEW, JobStatus.FAILED},
    JobStatus.CREATING: {JobStatus.VALIDATING, JobStatus.FAILED},
    JobStatus.VALIDATING: {JobStatus.PENDING_DEPLOY, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.PENDING_DEPLOY: {JobStatus.DEPLOYING, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.DEPLOYING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),  # Terminal state
    JobStatus.FAILED: set(),  # Terminal state
}


class InvalidStateTransitionError(ValueError):
    """Raised when attempting an invalid job state transition.

    Attributes:
        current: The current job status.
        target: The attempted target status.
    """

    def __init__(self, current: JobStatus, target: JobStatus):
        """Initialize InvalidStateTransitionError.

        Args:
            current: The current job status.
            target: The target status that is not allowed from current state.
        """
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from '{current}' to '{target}'")


def validate_transition(current: JobStatus, target: JobStatus) -> None:
    """Validate that a state transition is allowed.

    Args:
        current: The current job status.
        target: The desired new status.

    Raises:
        InvalidStateTransitionError: If the transition is not allowed.
    """
    if target not in VALID_TRANSITIONS[current]:
        raise InvalidStateTransitionError(current, target)


# Progress window (start, end) of each step, in percent
STAGE_PROGRESS: dict[str, tuple[int, int]] = {
    "research": (10, 20),
    "write": (25, 35),
    "review": (40, 50),
    "human_review": (55, 55),
    "create": (60, 65),
    "emit": (70, 80),
    "validate": (85, 90),
    "pending_deploy": (90, 90),
    "deploy": (95, 100),
}

# Where progress lands after a feedback or rewrite decision
REWIND_PROGRESS = STAGE_PROGRESS["write"][0]


def stage_progress(step: str, fraction: float = 1.0) -> int:
    """Map a fraction of a step's work onto overall job progress.

    Args:
        step: Step name from STAGE_PROGRESS.
        fraction: Portion of the step completed, clamped to [0.0, 1.0].

    Returns:
        Overall progress percentage.

    Raises:
        KeyError: If the step has no progress window.
    """
    start, end = STAGE_PROGRESS[step]
    fraction = min(max(fraction, 0.0), 1.0)
    return round(start + (end - start) * fraction)


# Raw step labels (as written to the progress log) -> UI stage bucket
_STEP_STAGES: dict[str, JobStatus] = {
    "init": JobStatus.QUEUED,
    "research": JobStatus.RESEARCH,
    "write": JobStatus.WRITING,
    "rewrite": JobStatus.WRITING,
    "review": JobStatus.REVIEW,
    "human_review": JobStatus.HUMAN_REVIEW,
    "hold": JobStatus.ON_HOLD,
    "create": JobStatus.CREATING,
    "thumbnail": JobStatus.CREATING,
    "emit": JobStatus.CREATING,
    "validate": JobStatus.VALIDATING,
    "pending_deploy": JobStatus.PENDING_DEPLOY,
    "deploy": JobStatus.DEPLOYING,
    "complete": JobStatus.COMPLETED,
    "error": JobStatus.FAILED,
}


def stage_for_step(step: str | None) -> JobStatus | None:
    """Return the UI stage bucket a raw step label belongs to.

    Used for display only; transitions never depend on step labels.

    Args:
        step: Step label from a job or a progress log entry.

    Returns:
        The matching JobStatus bucket, or None for unknown labels.
    """
    if not step:
        return None
    return _STEP_STAGES.get(step)


class JobState(BaseModel):
    """Immutable snapshot of a job handed to stage handlers.

    Handlers never mutate the state; they return a partial update which the
    engine applies with apply_patch() to obtain the next snapshot.

    Attributes:
        job_id: Job identifier.
        topic: Topic the post is about.
        brief: Writer-facing context; the topic plus audience and keywords
            when the job came from a schedule.
        category: Content category.
        template: Post template.
        human_feedback: Reviewer feedback carried into the next write.
        research_data: Research stage output.
        draft_content: Writer output.
        review_result: Automated review output.
        final_content: Final post body.
        metadata: Post metadata (title, tags, slug...).
        filepath: Path of the emitted post file.
        validation_result: Validation stage output.
        pr_result: Deploy artifact.
        commit_hash: Commit created by the deploy stage.
    """

    model_config = ConfigDict(frozen=True)

    job_id: str
    topic: str
    brief: str = ""
    category: Category = Category.TECH
    template: Template | None = None
    human_feedback: str | None = None

    research_data: dict[str, Any] | None = None
    draft_content: str | None = None
    review_result: ReviewResult | None = None
    final_content: str | None = None
    metadata: dict[str, Any] | None = None
    filepath: str | None = None
    validation_result: ValidationResult | None = None
    pr_result: PRResult | None = None
    commit_hash: str | None = None

    @classmethod
    def from_record(cls, record: Any, brief: str | None = None) -> JobState:
        """Build a snapshot from a persisted job.

        Args:
            record: Any object exposing the job's fields as attributes.
            brief: Optional writer context; defaults to the topic.

        Returns:
            New JobState.
        """
        values = {name: getattr(record, name, None) for name in cls.model_fields}
        values["job_id"] = record.id
        values["brief"] = brief or record.topic
        return cls.model_validate({k: v for k, v in values.items() if v is not None})


# Fields a stage handler is allowed to write
PATCHABLE_FIELDS: frozenset[str] = frozenset(
    {
        "research_data",
        "draft_content",
        "review_result",
        "final_content",
        "metadata",
        "filepath",
        "validation_result",
        "pr_result",
        "commit_hash",
    }
)


def apply_patch(state: JobState, patch: dict[str, Any], step: str = "stage") -> JobState:
    """Apply a stage handler's partial update to a snapshot.

    Args:
        state: Current snapshot.
        patch: Partial update returned by a handler.
        step: Step name, used in error messages.

    Returns:
        New validated snapshot; the input is left untouched.

    Raises:
        StageError: If the patch writes a non-artifact field or fails validation.
    """
    if not isinstance(patch, dict):
        raise StageError(step, f"handler returned {type(patch).__name__}, expected dict")

    unknown = set(patch) - PATCHABLE_FIELDS
    if unknown:
        raise StageError(step, f"handler wrote unknown fields: {', '.join(sorted(unknown))}")

    try:
        return JobState.model_validate({**state.model_dump(), **patch})
    except ValidationError as e:
        raise StageError(step, str(e)) from e
