# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Workflow engine driving jobs through the pipeline state machine."""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from postforge.core.types import (
    DeployAction,
    LogStatus,
    ProgressCallback,
    ReviewAction,
    StageEvent,
)
from postforge.pipeline.handlers import StageHandler, StageHandlers
from postforge.pipeline.state import (
    REWIND_PROGRESS,
    STAGE_PROGRESS,
    JobState,
    JobStatus,
    apply_patch,
    stage_progress,
    validate_transition,
)
from postforge.server.database.job_repository import JobRepository
from postforge.server.exceptions import InvalidStateError, JobNotFoundError
from postforge.server.models.job import Job


_STEP_LABELS: dict[str, str] = {
    "research": "Research",
    "write": "Writing",
    "review": "Review",
    "create": "Content creation",
    "emit": "File output",
    "validate": "Validation",
    "deploy": "Deploy",
}


@dataclass
class _JobRun:
    """Mutable bookkeeping for one engine pass over a job."""

    job_id: str
    state: JobState
    status: JobStatus
    step: str = "init"


_Step = Callable[[_JobRun], Awaitable[JobStatus | None]]


class WorkflowEngine:
    """Runs jobs as detached asyncio tasks, one stage at a time.

    Each job walks the state machine from its persisted status, so a job can
    be (re)launched at any non-terminal status: after a review decision,
    after being resumed from hold, or after a deploy approval that arrives
    once the deploy wait has given up. The two checkpoints are bounded
    polling waits on the job store.
    """

    def __init__(
        self,
        repository: JobRepository,
        handlers: StageHandlers,
        poll_interval: float = 2.0,
        review_timeout: float = 1800.0,
        deploy_timeout: float = 1800.0,
    ) -> None:
        """Initialize the engine.

        Args:
            repository: Job store.
            handlers: Stage handlers to drive jobs with.
            poll_interval: Seconds between store reads while waiting.
            review_timeout: Seconds before a pending review is auto-approved.
            deploy_timeout: Seconds before the engine stops waiting for a
                deploy decision (the job stays in pending_deploy).
        """
        self._repository = repository
        self._handlers = handlers
        self._poll_interval = poll_interval
        self._review_timeout = review_timeout
        self._deploy_timeout = deploy_timeout
        self._active_tasks: dict[str, asyncio.Task[None]] = {}  # job_id -> task
        self._briefs: dict[str, str] = {}  # job_id -> writer context
        self._steps: dict[JobStatus, _Step] = {
            JobStatus.QUEUED: self._start,
            JobStatus.RUNNING: self._research,
            JobStatus.RESEARCH: self._research,
            JobStatus.WRITING: self._write,
            JobStatus.REVIEW: self._review,
            JobStatus.HUMAN_REVIEW: self._await_review,
            JobStatus.CREATING: self._create,
            JobStatus.VALIDATING: self._validate,
            JobStatus.PENDING_DEPLOY: self._await_deploy,
            JobStatus.DEPLOYING: self._deploy,
        }

    # =========================================================================
    # Task management
    # =========================================================================

    def launch(self, job_id: str, brief: str | None = None) -> bool:
        """Start running a job in the background without waiting for it.

        Args:
            job_id: Job to run.
            brief: Optional writer context kept for this job's lifetime.

        Returns:
            True if a task was started, False if one is already running.
        """
        if brief:
            self._briefs[job_id] = brief

        if self.is_running(job_id):
            logger.debug("Job already running, not relaunching", job_id=job_id)
            return False

        task = asyncio.create_task(self.run(job_id))
        self._active_tasks[job_id] = task

        def cleanup_task(_: asyncio.Task[None]) -> None:
            """Drop the task from the active set once it finishes.

            Args:
                _: The completed asyncio Task (unused).
            """
            if self._active_tasks.get(job_id) is task:
                self._active_tasks.pop(job_id, None)
            logger.debug("Job task finished", job_id=job_id)

        task.add_done_callback(cleanup_task)
        return True

    def get_active_jobs(self) -> list[str]:
        """Return ids of jobs with a running task."""
        return list(self._active_tasks.keys())

    def is_running(self, job_id: str) -> bool:
        """Whether a task is currently driving the job."""
        task = self._active_tasks.get(job_id)
        return task is not None and not task.done()

    async def cancel_all(self, timeout: float = 5.0) -> None:
        """Cancel all running job tasks on shutdown.

        Jobs keep their persisted status and can be relaunched later.

        Args:
            timeout: Seconds to wait for each task to finish after cancellation.
        """
        for job_id in list(self._active_tasks.keys()):
            task = self._active_tasks.get(job_id)
            if task:
                task.cancel()
                with contextlib.suppress(TimeoutError, asyncio.CancelledError):
                    await asyncio.wait_for(task, timeout=timeout)

    # =========================================================================
    # Execution
    # =========================================================================

    async def run(self, job_id: str) -> None:
        """Drive a job until it finishes, parks, or fails.

        Never raises except for task cancellation: any other exception marks
        the job failed.

        Args:
            job_id: Job to run.
        """
        run: _JobRun | None = None
        try:
            job = await self._repository.get(job_id)
            if job is None:
                logger.warning("Job not found, nothing to run", job_id=job_id)
                return
            if job.is_terminal:
                return

            run = _JobRun(
                job_id=job_id,
                state=JobState.from_record(job, brief=self._briefs.get(job_id)),
                status=job.status,
                step=job.current_step or "init",
            )
            next_status: JobStatus | None = job.status
            while next_status is not None:
                step = self._steps.get(next_status)
                if step is None:
                    break
                next_status = await step(run)

        except asyncio.CancelledError:
            logger.info("Job task cancelled", job_id=job_id)
            raise
        except Exception as e:
            logger.exception("Job failed", job_id=job_id, error=str(e))
            await self._fail(job_id, e, run.step if run else "init")

    async def _transition(self, run: _JobRun, target: JobStatus, **fields: Any) -> None:
        if run.status != target:
            validate_transition(run.status, target)
            fields["status"] = target
        if fields:
            await self._repository.update(run.job_id, **fields)
        run.status = target

    def _progress_callback(self, job_id: str, step: str) -> ProgressCallback:
        async def on_progress(event: StageEvent) -> None:
            data = dict(event.data or {})
            if event.progress is not None:
                progress = stage_progress(step, event.progress)
                data["progress"] = progress
                await self._repository.raise_progress(job_id, progress)
            await self._repository.append_log(
                job_id, event.model_copy(update={"data": data or None})
            )

        return on_progress

    async def _run_stage(
        self,
        run: _JobRun,
        step: str,
        handler: StageHandler,
        clear_feedback: bool = False,
    ) -> None:
        run.step = step
        start, end = STAGE_PROGRESS[step]
        label = _STEP_LABELS[step]

        await self._repository.raise_progress(run.job_id, start, current_step=step)
        await self._repository.log(
            run.job_id, step, LogStatus.STARTED, f"{label} started", {"progress": start}
        )

        patch = await handler(run.state, self._progress_callback(run.job_id, step))
        run.state = apply_patch(run.state, patch, step)

        fields = {name: getattr(run.state, name) for name in patch}
        if clear_feedback:
            run.state = run.state.model_copy(update={"human_feedback": None})
            fields["human_feedback"] = None
        if fields:
            await self._repository.update(run.job_id, **fields)

        await self._repository.raise_progress(run.job_id, end)
        await self._repository.log(
            run.job_id, step, LogStatus.COMPLETED, f"{label} completed", {"progress": end}
        )
        logger.info("Stage completed", job_id=run.job_id, step=step)

    async def _start(self, run: _JobRun) -> JobStatus:
        await self._repository.log(run.job_id, "init", LogStatus.STARTED, "Job started")
        await self._transition(run, JobStatus.RUNNING, current_step="init")
        logger.info("Job started", job_id=run.job_id, topic=run.state.topic)
        return JobStatus.RESEARCH

    async def _research(self, run: _JobRun) -> JobStatus:
        await self._transition(run, JobStatus.RESEARCH)
        await self._run_stage(run, "research", self._handlers.research)
        return JobStatus.WRITING

    async def _write(self, run: _JobRun) -> JobStatus:
        await self._transition(run, JobStatus.WRITING)
        await self._run_stage(run, "write", self._handlers.write, clear_feedback=True)
        return JobStatus.REVIEW

    async def _review(self, run: _JobRun) -> JobStatus:
        await self._transition(run, JobStatus.REVIEW)
        await self._run_stage(run, "review", self._handlers.review)

        # Progress and log are written before the status change; entering the
        # checkpoint clears any stale decision
        run.step = "human_review"
        await self._repository.raise_progress(run.job_id, STAGE_PROGRESS["human_review"][0])
        await self._repository.log(
            run.job_id, "human_review", LogStatus.STARTED, "Waiting for human review"
        )
        await self._transition(
            run,
            JobStatus.HUMAN_REVIEW,
            current_step="human_review",
            human_approval=None,
            human_feedback=None,
        )
        return JobStatus.HUMAN_REVIEW

    async def _await_review(self, run: _JobRun) -> JobStatus | None:
        run.step = "human_review"
        job, timed_out = await self._poll(
            run.job_id,
            self._review_timeout,
            lambda j: j.status != JobStatus.HUMAN_REVIEW or j.human_approval is not None,
        )

        if timed_out:
            minutes = round(self._review_timeout / 60)
            logger.warning("Review timed out, auto-approving", job_id=run.job_id)
            await self._repository.log(
                run.job_id,
                "human_review",
                LogStatus.COMPLETED,
                f"No review decision after {minutes} min, auto-approved",
            )
            self._take_edits(run, job)
            return JobStatus.CREATING

        if job is None:
            logger.warning("Job disappeared during review", job_id=run.job_id)
            return None

        if job.status != JobStatus.HUMAN_REVIEW:
            # Held, or failed elsewhere; whoever moved it owns the next step
            run.status = job.status
            return None

        if job.human_approval:
            await self._repository.update(run.job_id, human_approval=None)
            self._take_edits(run, job)
            return JobStatus.CREATING

        # Edits made to the rejected draft do not carry into the rewrite
        run.state = run.state.model_copy(
            update={"human_feedback": job.human_feedback, "final_content": None, "metadata": None}
        )
        await self._transition(
            run,
            JobStatus.WRITING,
            human_approval=None,
            progress=REWIND_PROGRESS,
            current_step="write",
            final_content=None,
            metadata=None,
        )
        logger.info("Review requested changes, rewriting", job_id=run.job_id)
        return JobStatus.WRITING

    @staticmethod
    def _take_edits(run: _JobRun, job: Job | None) -> None:
        """Carry reviewer content edits into the run state."""
        if job is None or job.final_content is None:
            return
        run.state = run.state.model_copy(
            update={"final_content": job.final_content, "metadata": job.metadata}
        )

    async def _create(self, run: _JobRun) -> JobStatus:
        await self._transition(run, JobStatus.CREATING)
        await self._run_stage(run, "create", self._handlers.create)
        await self._run_thumbnail(run)
        await self._run_stage(run, "emit", self._handlers.emit)
        return JobStatus.VALIDATING

    async def _run_thumbnail(self, run: _JobRun) -> None:
        handler = self._handlers.thumbnail
        if handler is None:
            return
        run.step = "thumbnail"
        try:
            patch = await handler(run.state, self._progress_callback(run.job_id, "create"))
            run.state = apply_patch(run.state, patch, "thumbnail")
            if patch:
                await self._repository.update(
                    run.job_id, **{name: getattr(run.state, name) for name in patch}
                )
        except Exception as e:
            logger.warning(
                "Thumbnail failed, continuing without it", job_id=run.job_id, error=str(e)
            )
            await self._repository.log(
                run.job_id, "thumbnail", LogStatus.ERROR, f"Thumbnail skipped: {e}"
            )

    async def _validate(self, run: _JobRun) -> JobStatus | None:
        await self._transition(run, JobStatus.VALIDATING)
        await self._run_stage(run, "validate", self._handlers.validate)

        result = run.state.validation_result
        if result is not None and result.passed:
            run.step = "pending_deploy"
            await self._repository.raise_progress(run.job_id, STAGE_PROGRESS["pending_deploy"][0])
            await self._repository.log(
                run.job_id, "pending_deploy", LogStatus.STARTED, "Waiting for deploy approval"
            )
            await self._transition(run, JobStatus.PENDING_DEPLOY, current_step="pending_deploy")
            return JobStatus.PENDING_DEPLOY

        errors = result.errors if result is not None else ["Validation produced no result"]
        await self._complete(
            run,
            "Completed without deploy: validation failed",
            {"errors": errors},
        )
        return None

    async def _await_deploy(self, run: _JobRun) -> JobStatus | None:
        run.step = "pending_deploy"
        job, timed_out = await self._poll(
            run.job_id,
            self._deploy_timeout,
            lambda j: j.status != JobStatus.PENDING_DEPLOY,
        )

        if timed_out:
            logger.warning(
                "Deploy approval timed out, job stays pending until approved",
                job_id=run.job_id,
            )
            return None

        if job is None:
            logger.warning("Job disappeared while pending deploy", job_id=run.job_id)
            return None

        run.status = job.status
        return JobStatus.DEPLOYING if job.status == JobStatus.DEPLOYING else None

    async def _deploy(self, run: _JobRun) -> None:
        await self._transition(run, JobStatus.DEPLOYING, current_step="deploy")
        await self._run_stage(run, "deploy", self._handlers.deploy)

        pr = run.state.pr_result
        message = f"Deployed to {pr.pr_url or pr.branch_name}" if pr else "Deployed"
        await self._complete(run, message)

    async def _complete(
        self,
        run: _JobRun,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        run.step = "complete"
        validate_transition(run.status, JobStatus.COMPLETED)
        await self._repository.finish(
            run.job_id,
            JobStatus.COMPLETED,
            "complete",
            LogStatus.COMPLETED,
            message,
            data,
            progress=100,
            current_step="complete",
        )
        run.status = JobStatus.COMPLETED
        self._briefs.pop(run.job_id, None)
        logger.info("Job completed", job_id=run.job_id, message=message)

    async def _fail(self, job_id: str, exc: Exception, step: str) -> None:
        message = str(exc) or type(exc).__name__
        try:
            await self._repository.finish(
                job_id, JobStatus.FAILED, step, LogStatus.ERROR, message, error=message
            )
        except Exception as e:
            logger.exception("Could not record job failure", job_id=job_id, error=str(e))
        finally:
            self._briefs.pop(job_id, None)

    async def _poll(
        self,
        job_id: str,
        timeout: float,
        done: Callable[[Job], bool],
    ) -> tuple[Job | None, bool]:
        """Re-read a job until a condition holds or the timeout elapses.

        Store errors are logged and retried on the same interval.

        Returns:
            Tuple of (last job read, whether the wait timed out). The job is
            None when it was deleted.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        last: Job | None = None
        while True:
            try:
                job = await self._repository.get(job_id)
            except Exception as e:
                logger.warning(
                    "Job read failed while waiting, retrying", job_id=job_id, error=str(e)
                )
            else:
                if job is None:
                    return None, False
                if done(job):
                    return job, False
                last = job

            remaining = deadline - loop.time()
            if remaining <= 0:
                return last, True
            await asyncio.sleep(min(self._poll_interval, remaining))

    # =========================================================================
    # Human decisions
    # =========================================================================

    async def _require_job(self, job_id: str) -> Job:
        job = await self._repository.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    @staticmethod
    def _require_status(job: Job, expected: JobStatus, action: str) -> None:
        if job.status != expected:
            raise InvalidStateError(
                f"Cannot {action}: job is '{job.status}', expected '{expected}'",
                job_id=job.id,
                current_status=job.status,
            )

    async def submit_review(
        self,
        job_id: str,
        action: ReviewAction,
        feedback: str | None = None,
    ) -> Job:
        """Record a human review decision.

        approve and feedback/rewrite only write the decision fields; the engine
        task waiting on the job performs the transition. hold moves the job to
        on_hold directly.

        Args:
            job_id: Job under review.
            action: Review decision.
            feedback: Required for feedback and rewrite.

        Returns:
            The job after the decision was written.

        Raises:
            JobNotFoundError: If the job doesn't exist.
            InvalidStateError: If the job is not in human_review.
            ValueError: If feedback is missing for feedback or rewrite.
        """
        job = await self._require_job(job_id)
        self._require_status(job, JobStatus.HUMAN_REVIEW, f"submit review '{action}'")

        if action == ReviewAction.HOLD:
            validate_transition(job.status, JobStatus.ON_HOLD)
            await self._repository.log(job_id, "hold", LogStatus.STARTED, "Job put on hold")
            job = await self._repository.update(
                job_id, status=JobStatus.ON_HOLD, current_step="hold"
            )
            logger.info("Job put on hold", job_id=job_id)
            return job

        if action == ReviewAction.APPROVE:
            await self._repository.log(
                job_id, "human_review", LogStatus.COMPLETED, "Human review: approve"
            )
            job = await self._repository.update(job_id, human_approval=True, human_feedback=None)
        else:
            if not feedback or not feedback.strip():
                raise ValueError(f"feedback is required for action '{action}'")
            await self._repository.log(
                job_id,
                "human_review",
                LogStatus.COMPLETED,
                f"Human review: {action}",
                {"feedback": feedback},
            )
            job = await self._repository.update(
                job_id, human_approval=False, human_feedback=feedback
            )

        logger.info("Review decision recorded", job_id=job_id, action=str(action))
        # A waiting task picks the decision up; otherwise start one to do so
        self.launch(job_id)
        return job

    async def resume(self, job_id: str) -> Job:
        """Move a held job back to human_review and wait for a new decision.

        Args:
            job_id: Held job.

        Returns:
            The job after resuming.

        Raises:
            JobNotFoundError: If the job doesn't exist.
            InvalidStateError: If the job is not on hold.
        """
        job = await self._require_job(job_id)
        self._require_status(job, JobStatus.ON_HOLD, "resume")
        validate_transition(job.status, JobStatus.HUMAN_REVIEW)

        job = await self._repository.update(
            job_id,
            status=JobStatus.HUMAN_REVIEW,
            current_step="human_review",
            human_approval=None,
        )
        await self._repository.log(job_id, "hold", LogStatus.COMPLETED, "Job resumed for review")
        logger.info("Job resumed", job_id=job_id)
        self.launch(job_id)
        return job

    async def edit_content(
        self,
        job_id: str,
        final_content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Job:
        """Replace the final content of a job awaiting human review.

        The edit is carried into content creation once the job is approved
        or auto-approved; a feedback or rewrite decision discards it.

        Args:
            job_id: Job under review.
            final_content: Replacement post body.
            metadata: Optional replacement metadata.

        Returns:
            The job after the edit.

        Raises:
            JobNotFoundError: If the job doesn't exist.
            InvalidStateError: If the job is not in human_review.
            ValueError: If final_content is blank.
        """
        job = await self._require_job(job_id)
        self._require_status(job, JobStatus.HUMAN_REVIEW, "edit content")
        if not final_content.strip():
            raise ValueError("final_content cannot be blank")

        fields: dict[str, Any] = {"final_content": final_content}
        if metadata:
            fields["metadata"] = metadata
        job = await self._repository.update(job_id, **fields)
        await self._repository.log(
            job_id, "human_review", LogStatus.PROGRESS, "Content edited by reviewer"
        )
        logger.info("Reviewer edited content", job_id=job_id)
        return job

    async def approve_deploy(self, job_id: str) -> Job:
        """Approve deploying a job waiting in pending_deploy.

        Raises:
            JobNotFoundError: If the job doesn't exist.
            InvalidStateError: If the job is not pending deploy.
        """
        job = await self._require_job(job_id)
        self._require_status(job, JobStatus.PENDING_DEPLOY, "approve deploy")
        validate_transition(job.status, JobStatus.DEPLOYING)

        await self._repository.log(
            job_id, "pending_deploy", LogStatus.COMPLETED, "Deploy approved"
        )
        job = await self._repository.update(
            job_id, status=JobStatus.DEPLOYING, current_step="deploy"
        )
        logger.info("Deploy approved", job_id=job_id)
        self.launch(job_id)
        return job

    async def reject_deploy(self, job_id: str) -> Job:
        """Complete a job waiting in pending_deploy without deploying it.

        Raises:
            JobNotFoundError: If the job doesn't exist.
            InvalidStateError: If the job is not pending deploy.
        """
        job = await self._require_job(job_id)
        self._require_status(job, JobStatus.PENDING_DEPLOY, "reject deploy")
        validate_transition(job.status, JobStatus.COMPLETED)

        finished = await self._repository.finish(
            job_id,
            JobStatus.COMPLETED,
            "complete",
            LogStatus.COMPLETED,
            "Deploy cancelled",
            progress=100,
            current_step="complete",
        )
        if finished is None:
            current = await self._require_job(job_id)
            raise InvalidStateError(
                f"Cannot reject deploy: job is '{current.status}'",
                job_id=job_id,
                current_status=current.status,
            )
        job = finished
        self._briefs.pop(job_id, None)
        logger.info("Deploy rejected", job_id=job_id)
        return job

    async def decide_deploy(self, job_id: str, action: DeployAction) -> Job:
        """Dispatch a deploy decision to approve_deploy() or reject_deploy()."""
        if action == DeployAction.APPROVE:
            return await self.approve_deploy(job_id)
        return await self.reject_deploy(job_id)
