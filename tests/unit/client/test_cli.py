# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Tests for client CLI commands."""
from collections.abc import AsyncIterator, Generator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from postforge.client.api import JobNotFoundError, ServerUnreachableError
from postforge.core.types import DeployAction, PRResult, ReviewAction
from postforge.main import app
from postforge.pipeline.state import JobStatus
from postforge.server.models.job import Job
from postforge.server.models.responses import (
    ActionResponse,
    CreateJobResponse,
    CronRunResponse,
    JobDetailResponse,
    JobListResponse,
)
from postforge.server.models.schedule import ScheduleRunResult


runner = CliRunner()


@pytest.fixture
def mock_client() -> Generator[MagicMock, None, None]:
    """Patch the API client used by the CLI commands."""
    with patch("postforge.client.cli.PostforgeClient") as client_class:
        instance = client_class.return_value
        for method in (
            "create_job",
            "get_job",
            "list_jobs",
            "submit_review",
            "edit_content",
            "decide_deploy",
            "trigger_cron",
        ):
            setattr(instance, method, AsyncMock())
        yield instance


class TestGenerateCommand:
    """Tests for `postforge generate`."""

    def test_creates_job(self, mock_client: MagicMock) -> None:
        mock_client.create_job.return_value = CreateJobResponse(
            id="job-123",
            status=JobStatus.QUEUED,
            stream_url="/api/jobs/job-123/stream",
            message="Job created for topic: Rust",
        )

        result = runner.invoke(
            app, ["generate", "Rust", "-t", "tutorial", "-k", "ownership", "-k", "borrowing"]
        )

        assert result.exit_code == 0, result.output
        assert "job-123" in result.output
        kwargs = mock_client.create_job.call_args.kwargs
        assert kwargs["template"] == "tutorial"
        assert kwargs["keywords"] == ["ownership", "borrowing"]

    def test_follow_streams_until_checkpoint(self, mock_client: MagicMock) -> None:
        mock_client.create_job.return_value = CreateJobResponse(
            id="job-123",
            status=JobStatus.QUEUED,
            stream_url="/api/jobs/job-123/stream",
            message="ok",
        )
        events: list[dict[str, Any]] = [
            {"type": "progress", "step": "research", "message": "Researching", "progress": 10},
            {"type": "review-required", "draftContent": "# Draft"},
            {"type": "progress", "step": "never", "message": "not shown", "progress": 99},
        ]

        async def _stream(job_id: str) -> AsyncIterator[dict[str, Any]]:
            for event in events:
                yield event

        mock_client.stream_job = _stream

        result = runner.invoke(app, ["generate", "Rust", "--follow"])

        assert result.exit_code == 0, result.output
        assert "Researching" in result.output
        assert "Waiting for human review" in result.output
        assert "not shown" not in result.output

    def test_server_unreachable(self, mock_client: MagicMock) -> None:
        mock_client.create_job.side_effect = ServerUnreachableError("Cannot connect")

        result = runner.invoke(app, ["generate", "Rust"])

        assert result.exit_code == 1
        assert "Cannot connect" in result.output
        assert "postforge server" in result.output


class TestStatusCommand:
    """Tests for `postforge status`."""

    def test_shows_job_and_log(self, mock_client: MagicMock) -> None:
        job = Job(
            id="job-123",
            topic="Rust",
            status=JobStatus.COMPLETED,
            progress=100,
            pr_result=PRResult(branch_name="post/rust", pr_number=7, pr_url="https://x/7"),
        )
        mock_client.get_job.return_value = JobDetailResponse(job=job, logs=[])

        result = runner.invoke(app, ["status", "job-123"])

        assert result.exit_code == 0, result.output
        assert "completed" in result.output
        assert "https://x/7" in result.output

    def test_lists_jobs(self, mock_client: MagicMock) -> None:
        mock_client.list_jobs.return_value = JobListResponse(
            jobs=[Job(id="job-1", topic="Rust"), Job(id="job-2", topic="Go")],
            total=2,
            page=1,
            limit=20,
        )

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0, result.output
        assert "job-1" in result.output
        assert "Go" in result.output

    def test_missing_job(self, mock_client: MagicMock) -> None:
        mock_client.get_job.side_effect = JobNotFoundError("Job nope not found")

        result = runner.invoke(app, ["status", "nope"])

        assert result.exit_code == 1
        assert "Job nope not found" in result.output


class TestDecisionCommands:
    """Tests for `postforge review`, `postforge edit` and `postforge deploy`."""

    def test_review_with_feedback(self, mock_client: MagicMock) -> None:
        mock_client.submit_review.return_value = ActionResponse(
            job_id="job-123", status=JobStatus.HUMAN_REVIEW, message="Human review: feedback"
        )

        result = runner.invoke(app, ["review", "job-123", "feedback", "-m", "More examples"])

        assert result.exit_code == 0, result.output
        mock_client.submit_review.assert_awaited_once_with(
            "job-123", ReviewAction.FEEDBACK, "More examples"
        )

    def test_review_rejects_unknown_action(self, mock_client: MagicMock) -> None:
        result = runner.invoke(app, ["review", "job-123", "publish"])

        assert result.exit_code != 0
        mock_client.submit_review.assert_not_called()

    def test_edit_reads_file(self, mock_client: MagicMock, tmp_path: Path) -> None:
        content_file = tmp_path / "post.md"
        content_file.write_text("# Edited by hand\n", encoding="utf-8")
        mock_client.edit_content.return_value = ActionResponse(
            job_id="job-123", status=JobStatus.HUMAN_REVIEW, message="Content updated"
        )

        result = runner.invoke(app, ["edit", "job-123", str(content_file)])

        assert result.exit_code == 0, result.output
        assert "Content updated" in result.output
        mock_client.edit_content.assert_awaited_once_with("job-123", "# Edited by hand\n")

    def test_edit_missing_file(self, mock_client: MagicMock, tmp_path: Path) -> None:
        result = runner.invoke(app, ["edit", "job-123", str(tmp_path / "missing.md")])

        assert result.exit_code != 0
        mock_client.edit_content.assert_not_called()

    def test_deploy(self, mock_client: MagicMock) -> None:
        mock_client.decide_deploy.return_value = ActionResponse(
            job_id="job-123", status=JobStatus.COMPLETED, message="Deploy cancelled"
        )

        result = runner.invoke(app, ["deploy", "job-123", "reject"])

        assert result.exit_code == 0, result.output
        assert "Deploy cancelled" in result.output
        mock_client.decide_deploy.assert_awaited_once_with("job-123", DeployAction.REJECT)


class TestCronCommand:
    """Tests for `postforge cron`."""

    def test_uses_secret_from_env(self, mock_client: MagicMock) -> None:
        mock_client.trigger_cron.return_value = CronRunResponse(
            processed=2,
            successful=1,
            failed=1,
            results=[
                ScheduleRunResult(
                    schedule_id="s1", name="Daily", success=True, job_id="job-9", topic="Rust"
                ),
                ScheduleRunResult(
                    schedule_id="s2", name="Empty", success=False, error="No topic available"
                ),
            ],
        )

        result = runner.invoke(app, ["cron"], env={"POSTFORGE_CRON_SECRET": "s3cret"})

        assert result.exit_code == 0, result.output
        mock_client.trigger_cron.assert_awaited_once_with("s3cret")
        assert "No topic available" in result.output
        assert "job-9" in result.output
