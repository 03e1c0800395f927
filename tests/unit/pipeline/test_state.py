# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Tests for the job state machine and stage state."""
import pytest

from postforge.core.exceptions import StageError
from postforge.core.types import ReviewResult
from postforge.pipeline.state import (
    REWIND_PROGRESS,
    STAGE_PROGRESS,
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    InvalidStateTransitionError,
    JobState,
    JobStatus,
    apply_patch,
    stage_for_step,
    stage_progress,
    validate_transition,
)


class TestValidateTransition:
    """Tests for validate_transition."""

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (JobStatus.QUEUED, JobStatus.RUNNING),
            (JobStatus.REVIEW, JobStatus.HUMAN_REVIEW),
            (JobStatus.HUMAN_REVIEW, JobStatus.WRITING),
            (JobStatus.HUMAN_REVIEW, JobStatus.ON_HOLD),
            (JobStatus.ON_HOLD, JobStatus.HUMAN_REVIEW),
            (JobStatus.VALIDATING, JobStatus.COMPLETED),
            (JobStatus.PENDING_DEPLOY, JobStatus.COMPLETED),
            (JobStatus.DEPLOYING, JobStatus.COMPLETED),
        ],
    )
    def test_allowed_transitions(self, current: JobStatus, target: JobStatus) -> None:
        validate_transition(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (JobStatus.QUEUED, JobStatus.WRITING),
            (JobStatus.CREATING, JobStatus.DEPLOYING),
            (JobStatus.VALIDATING, JobStatus.DEPLOYING),
            (JobStatus.ON_HOLD, JobStatus.CREATING),
            (JobStatus.COMPLETED, JobStatus.RUNNING),
            (JobStatus.FAILED, JobStatus.QUEUED),
        ],
    )
    def test_rejected_transitions(self, current: JobStatus, target: JobStatus) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            validate_transition(current, target)
        assert exc_info.value.current == current
        assert exc_info.value.target == target

    def test_terminal_states_have_no_exits(self) -> None:
        for status in TERMINAL_STATUSES:
            assert VALID_TRANSITIONS[status] == set()

    def test_every_non_terminal_state_can_fail(self) -> None:
        for status, targets in VALID_TRANSITIONS.items():
            if status not in TERMINAL_STATUSES:
                assert JobStatus.FAILED in targets

    def test_transition_error_is_value_error(self) -> None:
        assert issubclass(InvalidStateTransitionError, ValueError)


class TestStageProgress:
    """Tests for the progress weights."""

    def test_windows_never_decrease_along_the_pipeline(self) -> None:
        order = [
            "research",
            "write",
            "review",
            "human_review",
            "create",
            "emit",
            "validate",
            "pending_deploy",
            "deploy",
        ]
        previous_end = 0
        for step in order:
            start, end = STAGE_PROGRESS[step]
            assert previous_end <= start <= end
            previous_end = end
        assert previous_end == 100

    @pytest.mark.parametrize(
        ("step", "fraction", "expected"),
        [
            ("research", 0.0, 10),
            ("research", 0.5, 15),
            ("research", 1.0, 20),
            ("emit", 0.5, 75),
            ("deploy", 2.0, 100),
            ("write", -1.0, 25),
        ],
    )
    def test_maps_fraction_into_window(self, step: str, fraction: float, expected: int) -> None:
        assert stage_progress(step, fraction) == expected

    def test_rewind_lands_on_write_start(self) -> None:
        assert REWIND_PROGRESS == 25


class TestStageForStep:
    """Tests for the step label mapping."""

    @pytest.mark.parametrize(
        ("step", "expected"),
        [
            ("init", JobStatus.QUEUED),
            ("rewrite", JobStatus.WRITING),
            ("thumbnail", JobStatus.CREATING),
            ("emit", JobStatus.CREATING),
            ("hold", JobStatus.ON_HOLD),
            ("complete", JobStatus.COMPLETED),
            ("error", JobStatus.FAILED),
        ],
    )
    def test_known_labels(self, step: str, expected: JobStatus) -> None:
        assert stage_for_step(step) == expected

    def test_unknown_and_empty_labels(self) -> None:
        assert stage_for_step("mystery") is None
        assert stage_for_step(None) is None
        assert stage_for_step("") is None


class TestJobState:
    """Tests for JobState and apply_patch."""

    @pytest.fixture
    def state(self) -> JobState:
        return JobState(job_id="job-1", topic="Rust ownership", brief="Rust ownership")

    def test_from_record_defaults_brief_to_topic(self, make_job) -> None:
        job = make_job(topic="Go generics", draft_content="draft")
        state = JobState.from_record(job)
        assert state.job_id == job.id
        assert state.brief == "Go generics"
        assert state.draft_content == "draft"

    def test_from_record_keeps_explicit_brief(self, make_job) -> None:
        state = JobState.from_record(make_job(), brief="Python asyncio\nKeywords: a, b")
        assert state.brief.endswith("Keywords: a, b")

    def test_apply_patch_returns_new_snapshot(self, state: JobState) -> None:
        updated = apply_patch(state, {"draft_content": "Hello"}, "write")
        assert updated.draft_content == "Hello"
        assert state.draft_content is None

    def test_apply_patch_validates_nested_models(self, state: JobState) -> None:
        updated = apply_patch(state, {"review_result": {"seo_score": 70}}, "review")
        assert isinstance(updated.review_result, ReviewResult)
        assert updated.review_result.seo_score == 70

    def test_apply_patch_rejects_unknown_fields(self, state: JobState) -> None:
        with pytest.raises(StageError, match="unknown fields: status"):
            apply_patch(state, {"status": "completed"}, "write")

    def test_apply_patch_rejects_non_dict(self, state: JobState) -> None:
        with pytest.raises(StageError, match="expected dict"):
            apply_patch(state, None, "write")  # type: ignore[arg-type]

    def test_apply_patch_wraps_validation_errors(self, state: JobState) -> None:
        with pytest.raises(StageError) as exc_info:
            apply_patch(state, {"validation_result": {"errors": []}}, "validate")
        assert exc_info.value.step == "validate"
