"""Tests for VerificationStep and VerificationPipeline."""

import pytest
from pydantic import ValidationError

from terra_verify.data_management.schemas import (
    STEP_ORDER,
    FileValidationResult,
    PipelineStatus,
    StepName,
    StepStatus,
    VerificationPipeline,
    VerificationStep,
)


class TestVerificationStep:
    def test_happy_path(self) -> None:
        step = VerificationStep(name=StepName.FILE_VALIDATION)
        step.mark_running()
        assert step.status == StepStatus.RUNNING
        assert step.started_at is not None

        step.mark_completed(FileValidationResult(valid=True), 1.5)
        assert step.status == StepStatus.COMPLETED
        assert step.duration_ms == 1.5
        assert step.finished_at >= step.started_at

    def test_failure_records_error(self) -> None:
        step = VerificationStep(name=StepName.EXIF_ANALYSIS)
        step.mark_running()
        step.mark_failed("corrupt metadata", 0.2)
        assert step.status == StepStatus.FAILED
        assert step.error == "corrupt metadata"
        assert step.result is None

    def test_cannot_complete_without_running(self) -> None:
        step = VerificationStep(name=StepName.FILE_VALIDATION)
        with pytest.raises(ValueError):
            step.mark_completed(FileValidationResult(valid=True), 1.0)

    def test_cannot_rerun(self) -> None:
        step = VerificationStep(name=StepName.FILE_VALIDATION)
        step.mark_running()
        step.mark_completed(FileValidationResult(valid=True), 1.0)
        with pytest.raises(ValueError):
            step.mark_running()
        with pytest.raises(ValueError):
            step.mark_failed("late failure", 1.0)


class TestVerificationPipeline:
    def test_create_has_seven_pending_steps(self) -> None:
        pipeline = VerificationPipeline.create("p1", "sub_1")
        assert [s.name for s in pipeline.steps] == list(STEP_ORDER)
        assert all(s.status == StepStatus.PENDING for s in pipeline.steps)
        assert pipeline.overall_status == PipelineStatus.PENDING
        assert pipeline.is_terminal is False

    def test_step_names_are_display_names(self) -> None:
        assert [name.value for name in STEP_ORDER] == [
            "File Validation",
            "EXIF Analysis",
            "GPS Verification",
            "Duplicate Detection",
            "AI Image Analysis",
            "Content Moderation",
            "Final Decision",
        ]

    def test_step_order_enforced(self) -> None:
        steps = [VerificationStep(name=name) for name in reversed(STEP_ORDER)]
        with pytest.raises(ValidationError):
            VerificationPipeline(pipeline_id="p1", submission_id="sub_1", steps=steps)

    def test_missing_step_rejected(self) -> None:
        steps = [VerificationStep(name=name) for name in STEP_ORDER[:-1]]
        with pytest.raises(ValidationError):
            VerificationPipeline(pipeline_id="p1", submission_id="sub_1", steps=steps)

    def test_lookup_by_name(self) -> None:
        pipeline = VerificationPipeline.create("p1", "sub_1")
        assert pipeline.step(StepName.GPS_VERIFICATION) is pipeline.steps[2]

    @pytest.mark.parametrize(
        "status,terminal",
        [
            (PipelineStatus.RUNNING, False),
            (PipelineStatus.COMPLETED, True),
            (PipelineStatus.FAILED, True),
        ],
    )
    def test_is_terminal(self, status: PipelineStatus, terminal: bool) -> None:
        pipeline = VerificationPipeline.create("p1", "sub_1")
        pipeline.overall_status = status
        assert pipeline.is_terminal is terminal
