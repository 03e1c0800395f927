# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Progress feed event models and Server-Sent Events framing.

Events serialize with camelCase keys and a ``type`` discriminator inside the
``data:`` line; progress events built from a log entry also carry the entry
id as the SSE ``id:`` so clients can resume with Last-Event-ID.
"""

from __future__ import annotations

import json
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from postforge.core.types import LogStatus
from postforge.pipeline.state import JobStatus
from postforge.server.models.job import Job


class StreamEventType(StrEnum):
    """Type of a progress feed event."""

    PROGRESS = "progress"
    REVIEW_REQUIRED = "review-required"
    PENDING_DEPLOY = "pending-deploy"
    COMPLETE = "complete"
    ERROR = "error"


class _StreamEvent(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event_id: int | None = Field(default=None, exclude=True)

    def to_sse(self) -> str:
        """Frame the event as a Server-Sent Events message."""
        payload = json.dumps(
            self.model_dump(mode="json", by_alias=True), ensure_ascii=False
        )
        prefix = f"id: {self.event_id}\n" if self.event_id is not None else ""
        return f"{prefix}data: {payload}\n\n"


class ProgressEvent(_StreamEvent):
    """A progress log entry or a status snapshot."""

    type: Literal[StreamEventType.PROGRESS] = StreamEventType.PROGRESS
    step: str
    status: LogStatus | Literal["snapshot"]
    message: str
    progress: int
    stage: JobStatus | None = None
    data: dict[str, Any] | None = None


class ReviewRequiredEvent(_StreamEvent):
    """The job waits for a human review decision."""

    type: Literal[StreamEventType.REVIEW_REQUIRED] = StreamEventType.REVIEW_REQUIRED
    draft_content: str | None = None
    review_result: dict[str, Any] | None = None


class PendingDeployEvent(_StreamEvent):
    """The job waits for a deploy decision."""

    type: Literal[StreamEventType.PENDING_DEPLOY] = StreamEventType.PENDING_DEPLOY
    filepath: str | None = None
    metadata: dict[str, Any] | None = None


class CompleteEvent(_StreamEvent):
    """The job completed; pr_result is None when nothing was deployed."""

    type: Literal[StreamEventType.COMPLETE] = StreamEventType.COMPLETE
    filepath: str | None = None
    pr_result: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


class ErrorEvent(_StreamEvent):
    """The job failed, or the feed could not continue."""

    type: Literal[StreamEventType.ERROR] = StreamEventType.ERROR
    message: str
    step: str | None = None


StreamEvent = (
    ProgressEvent | ReviewRequiredEvent | PendingDeployEvent | CompleteEvent | ErrorEvent
)


def _camelize(model: BaseModel | None) -> dict[str, Any] | None:
    if model is None:
        return None
    return {to_camel(k): v for k, v in model.model_dump(mode="json").items()}


def checkpoint_event(job: Job) -> StreamEvent | None:
    """Build the event announcing a job's checkpoint, if it is in one."""
    if job.status == JobStatus.HUMAN_REVIEW:
        return ReviewRequiredEvent(
            draft_content=job.draft_content, review_result=_camelize(job.review_result)
        )
    if job.status == JobStatus.PENDING_DEPLOY:
        return PendingDeployEvent(filepath=job.filepath, metadata=job.metadata)
    return None


def terminal_event(job: Job) -> StreamEvent | None:
    """Build the event announcing a job's terminal status, if it has one."""
    if job.status == JobStatus.COMPLETED:
        return CompleteEvent(
            filepath=job.filepath, pr_result=_camelize(job.pr_result), metadata=job.metadata
        )
    if job.status == JobStatus.FAILED:
        return ErrorEvent(message=job.error or "Job failed", step=job.current_step)
    return None
