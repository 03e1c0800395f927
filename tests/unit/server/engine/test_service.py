# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Tests for WorkflowEngine execution."""
import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from postforge.core.types import LogStatus, ProgressCallback, StageEvent
from postforge.pipeline.handlers import StageHandlers
from postforge.pipeline.state import JobState, JobStatus
from postforge.server.database.job_repository import JobRepository
from postforge.server.engine.service import WorkflowEngine
from postforge.server.models.job import Job


WaitForStatus = Callable[..., Awaitable[Job]]


def raising(exc: Exception):
    async def _handler(state: JobState, on_progress: ProgressCallback) -> dict[str, Any]:
        raise exc

    return _handler


class TestRunToReview:
    """Automatic stages up to the human review checkpoint."""

    async def test_parks_at_human_review(
        self,
        make_engine: Callable[..., WorkflowEngine],
        job_repository: JobRepository,
        wait_for_status: WaitForStatus,
    ) -> None:
        engine = make_engine()
        job = await job_repository.create("Python asyncio")

        assert engine.launch(job.id) is True
        parked = await wait_for_status(job_repository, job.id, JobStatus.HUMAN_REVIEW)

        assert parked.progress == 55
        assert parked.current_step == "human_review"
        assert parked.draft_content is not None and "Python asyncio" in parked.draft_content
        assert parked.review_result is not None
        assert parked.human_approval is None
        assert engine.is_running(job.id)

        logs = await job_repository.get_logs(job.id)
        assert logs[0].message == "Job started"
        assert logs[-1].message == "Waiting for human review"
        steps = [log.step for log in logs if log.status == LogStatus.COMPLETED]
        assert steps == ["research", "write", "review"]

    async def test_launch_is_idempotent_while_running(
        self,
        make_engine: Callable[..., WorkflowEngine],
        job_repository: JobRepository,
        wait_for_status: WaitForStatus,
    ) -> None:
        engine = make_engine()
        job = await job_repository.create("Topic")

        assert engine.launch(job.id) is True
        assert engine.launch(job.id) is False
        await wait_for_status(job_repository, job.id, JobStatus.HUMAN_REVIEW)
        assert engine.get_active_jobs() == [job.id]

    async def test_brief_reaches_handlers(
        self,
        make_engine: Callable[..., WorkflowEngine],
        make_handlers: Callable[..., StageHandlers],
        job_repository: JobRepository,
        wait_for_status: WaitForStatus,
    ) -> None:
        seen: list[str] = []

        async def research(state: JobState, on_progress: ProgressCallback) -> dict[str, Any]:
            seen.append(state.brief)
            return {}

        engine = make_engine(make_handlers(research=research))
        job = await job_repository.create("Topic")

        engine.launch(job.id, brief="Topic\nKeywords: a, b")
        await wait_for_status(job_repository, job.id, JobStatus.HUMAN_REVIEW)

        assert seen == ["Topic\nKeywords: a, b"]

    async def test_handler_progress_is_mapped_into_stage_window(
        self,
        make_engine: Callable[..., WorkflowEngine],
        job_repository: JobRepository,
        wait_for_status: WaitForStatus,
    ) -> None:
        engine = make_engine()
        job = await job_repository.create("Topic")

        engine.launch(job.id)
        await wait_for_status(job_repository, job.id, JobStatus.HUMAN_REVIEW)

        logs = await job_repository.get_logs(job.id)
        research_progress = next(
            log for log in logs if log.step == "research" and log.status == LogStatus.PROGRESS
        )
        assert research_progress.data == {"progress": 15}

    async def test_run_of_missing_job_is_a_noop(
        self, make_engine: Callable[..., WorkflowEngine]
    ) -> None:
        await make_engine().run("missing")


class TestFailures:
    """Handler failures fail the job."""

    async def test_handler_exception_fails_job(
        self,
        make_engine: Callable[..., WorkflowEngine],
        make_handlers: Callable[..., StageHandlers],
        job_repository: JobRepository,
        wait_for_status: WaitForStatus,
    ) -> None:
        engine = make_engine(make_handlers(write=raising(RuntimeError("model unavailable"))))
        job = await job_repository.create("Topic")

        engine.launch(job.id)
        failed = await wait_for_status(job_repository, job.id, JobStatus.FAILED)

        assert failed.error == "model unavailable"
        logs = await job_repository.get_logs(job.id)
        assert logs[-1].status == LogStatus.ERROR
        assert logs[-1].step == "write"
        assert logs[-1].message == "model unavailable"

    async def test_contract_violation_fails_job(
        self,
        make_engine: Callable[..., WorkflowEngine],
        make_handlers: Callable[..., StageHandlers],
        job_repository: JobRepository,
        wait_for_status: WaitForStatus,
    ) -> None:
        async def research(state: JobState, on_progress: ProgressCallback) -> dict[str, Any]:
            return {"status": "completed"}

        engine = make_engine(make_handlers(research=research))
        job = await job_repository.create("Topic")

        engine.launch(job.id)
        failed = await wait_for_status(job_repository, job.id, JobStatus.FAILED)

        assert failed.error is not None
        assert "unknown fields: status" in failed.error

    async def test_no_log_entries_after_failure(
        self,
        make_engine: Callable[..., WorkflowEngine],
        make_handlers: Callable[..., StageHandlers],
        job_repository: JobRepository,
        wait_for_status: WaitForStatus,
    ) -> None:
        engine = make_engine(make_handlers(research=raising(ValueError("bad topic"))))
        job = await job_repository.create("Topic")

        engine.launch(job.id)
        await wait_for_status(job_repository, job.id, JobStatus.FAILED)
        count = len(await job_repository.get_logs(job.id))

        await job_repository.log(job.id, "late", LogStatus.PROGRESS, "late")
        await asyncio.sleep(0.05)
        assert len(await job_repository.get_logs(job.id)) == count


class TestCheckpoints:
    """Review and deploy checkpoints."""

    async def test_review_timeout_auto_approves(
        self,
        make_engine: Callable[..., WorkflowEngine],
        job_repository: JobRepository,
        wait_for_status: WaitForStatus,
    ) -> None:
        engine = make_engine(review_timeout=0.05)
        job = await job_repository.create("Topic")

        engine.launch(job.id)
        pending = await wait_for_status(job_repository, job.id, JobStatus.PENDING_DEPLOY)

        assert pending.progress == 90
        assert pending.filepath == "posts/tech/topic.md"
        messages = [log.message for log in await job_repository.get_logs(job.id)]
        assert "No review decision after 0 min, auto-approved" in messages
        assert messages[-1] == "Waiting for deploy approval"

    async def test_failed_validation_completes_without_deploy(
        self,
        make_engine: Callable[..., WorkflowEngine],
        make_handlers: Callable[..., StageHandlers],
        job_repository: JobRepository,
        wait_for_status: WaitForStatus,
    ) -> None:
        deployed: list[str] = []

        async def validate(state: JobState, on_progress: ProgressCallback) -> dict[str, Any]:
            return {"validation_result": {"passed": False, "errors": ["Missing title"]}}

        async def deploy(state: JobState, on_progress: ProgressCallback) -> dict[str, Any]:
            deployed.append(state.job_id)
            return {}

        engine = make_engine(
            make_handlers(validate=validate, deploy=deploy), review_timeout=0.05
        )
        job = await job_repository.create("Topic")

        engine.launch(job.id)
        completed = await wait_for_status(job_repository, job.id, JobStatus.COMPLETED)

        assert completed.progress == 100
        assert completed.pr_result is None
        assert deployed == []
        logs = await job_repository.get_logs(job.id)
        assert logs[-1].message == "Completed without deploy: validation failed"
        assert logs[-1].data == {"errors": ["Missing title"]}

    async def test_missing_validation_result_counts_as_failed(
        self,
        make_engine: Callable[..., WorkflowEngine],
        make_handlers: Callable[..., StageHandlers],
        job_repository: JobRepository,
        wait_for_status: WaitForStatus,
    ) -> None:
        async def validate(state: JobState, on_progress: ProgressCallback) -> dict[str, Any]:
            return {}

        engine = make_engine(make_handlers(validate=validate), review_timeout=0.05)
        job = await job_repository.create("Topic")

        engine.launch(job.id)
        completed = await wait_for_status(job_repository, job.id, JobStatus.COMPLETED)
        assert completed.pr_result is None

    async def test_thumbnail_failure_is_ignored(
        self,
        make_engine: Callable[..., WorkflowEngine],
        make_handlers: Callable[..., StageHandlers],
        job_repository: JobRepository,
        wait_for_status: WaitForStatus,
    ) -> None:
        engine = make_engine(
            make_handlers(thumbnail=raising(RuntimeError("image API down"))),
            review_timeout=0.05,
        )
        job = await job_repository.create("Topic")

        engine.launch(job.id)
        await wait_for_status(job_repository, job.id, JobStatus.PENDING_DEPLOY)

        logs = await job_repository.get_logs(job.id)
        thumbnail = [log for log in logs if log.step == "thumbnail"]
        assert thumbnail[0].status == LogStatus.ERROR
        assert "image API down" in thumbnail[0].message

    async def test_thumbnail_patch_is_persisted(
        self,
        make_engine: Callable[..., WorkflowEngine],
        make_handlers: Callable[..., StageHandlers],
        job_repository: JobRepository,
        wait_for_status: WaitForStatus,
    ) -> None:
        async def thumbnail(state: JobState, on_progress: ProgressCallback) -> dict[str, Any]:
            await on_progress(StageEvent(step="thumbnail", message="Rendering", progress=1.0))
            return {"metadata": {**(state.metadata or {}), "thumbnail": "cover.png"}}

        engine = make_engine(make_handlers(thumbnail=thumbnail), review_timeout=0.05)
        job = await job_repository.create("Topic")

        engine.launch(job.id)
        pending = await wait_for_status(job_repository, job.id, JobStatus.PENDING_DEPLOY)

        assert pending.metadata is not None
        assert pending.metadata["thumbnail"] == "cover.png"
        assert pending.metadata["slug"] == "topic"

    async def test_deploy_timeout_leaves_job_pending(
        self,
        make_engine: Callable[..., WorkflowEngine],
        job_repository: JobRepository,
        wait_for_status: WaitForStatus,
    ) -> None:
        engine = make_engine(review_timeout=0.05, deploy_timeout=0.05)
        job = await job_repository.create("Topic")

        engine.launch(job.id)
        await wait_for_status(job_repository, job.id, JobStatus.PENDING_DEPLOY)

        async def _task_done() -> None:
            while engine.is_running(job.id):
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_task_done(), timeout=2.0)
        stored = await job_repository.get(job.id)
        assert stored is not None
        assert stored.status == JobStatus.PENDING_DEPLOY

        await engine.approve_deploy(job.id)
        completed = await wait_for_status(job_repository, job.id, JobStatus.COMPLETED)
        assert completed.pr_result is not None

    async def test_cancel_all_keeps_persisted_status(
        self,
        make_engine: Callable[..., WorkflowEngine],
        job_repository: JobRepository,
        wait_for_status: WaitForStatus,
    ) -> None:
        engine = make_engine()
        job = await job_repository.create("Topic")

        engine.launch(job.id)
        await wait_for_status(job_repository, job.id, JobStatus.HUMAN_REVIEW)
        await engine.cancel_all(timeout=1.0)

        assert engine.get_active_jobs() == []
        stored = await job_repository.get(job.id)
        assert stored is not None
        assert stored.status == JobStatus.HUMAN_REVIEW
