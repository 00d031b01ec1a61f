"""Submission intake: create submissions, verify them, apply human review.

Intake owns submissions. It hands each new submission to the
VerificationOrchestrator and, once the pipeline is terminal, maps the
report onto the submission:

    pass   -> auto_pass (quest points awarded)
    review -> review    (0 points until a reviewer approves)
    reject -> rejected  (0 points)

A failed pipeline leaves the submission pending with verification_error
set. "We don't know" is never reported as a rejection.

Usage:
    service = SubmissionService(quest_store=QuestStore([quest]))
    submission, handle = await service.create_submission(payload)
    submission = await handle.wait()
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


from terra_verify.data_management.quest_store import QuestStore
from terra_verify.data_management.schemas.quest_schema import Quest
from terra_verify.data_management.schemas.submission_schema import (
    Submission,
    SubmissionCreate,
    SubmissionStatus,
)
from terra_verify.data_management.schemas.verification_schema import (
    Decision,
    PipelineStatus,
    StepStatus,
    VerificationPipeline,
)
from terra_verify.data_management.submission_store import SubmissionStore
from terra_verify.pipeline.verification_pipeline import (
    PipelineHandle,
    VerificationOrchestrator,
)
from terra_verify.utils.logging import get_structured_logger

DECISION_STATUS: dict[Decision, SubmissionStatus] = {
    Decision.PASS: SubmissionStatus.AUTO_PASS,
    Decision.REVIEW: SubmissionStatus.REVIEW,
    Decision.REJECT: SubmissionStatus.REJECTED,
}

_HUMAN_DECISIONS = frozenset({SubmissionStatus.APPROVED, SubmissionStatus.REJECTED})


@dataclass
class SubmissionHandle:
    """Tracks a submission until its automated verification is applied."""

    submission_id: str
    pipeline: PipelineHandle
    task: "asyncio.Task[Submission]"

    @property
    def pipeline_id(self) -> str:
        return self.pipeline.pipeline_id

    async def wait(self) -> Submission:
        """Wait until the pipeline outcome is applied; return the submission."""
        return await self.task


class SubmissionService:
    """Intake boundary between clients and the verification pipeline."""

    def __init__(
        self,
        orchestrator: Optional[VerificationOrchestrator] = None,
        submission_store: Optional[SubmissionStore] = None,
        quest_store: Optional[QuestStore] = None,
    ) -> None:
        self.orchestrator = orchestrator or VerificationOrchestrator()
        self.submission_store = submission_store or SubmissionStore(
            self.orchestrator.settings.submission_store_path
        )
        if quest_store is None:
            quests_path = self.orchestrator.settings.quests_path
            quest_store = QuestStore.from_file(quests_path) if quests_path else QuestStore()
        self.quest_store = quest_store
        self._finalizers: set[asyncio.Task] = set()
        self._logger = get_structured_logger("SubmissionService")

    async def create_submission(
        self, payload: SubmissionCreate
    ) -> tuple[Submission, SubmissionHandle]:
        """Store a pending submission and start verifying it.

        Args:
            payload: Validated intake payload.

        Returns:
            The stored (pending) submission and a handle to await the outcome.

        Raises:
            QuestNotFoundError: The quest id does not resolve.
            ValueError: The submission is malformed.
        """
        quest = await self.quest_store.require(payload.quest_id)
        if payload.quest_points is not None and payload.quest_points != quest.points:
            self._logger.warning(
                "quest_points_mismatch",
                quest_id=quest.id,
                declared=payload.quest_points,
                actual=quest.points,
            )

        submission = Submission.from_create(payload)
        await self.submission_store.save(submission)

        pipeline_handle = await self.orchestrator.start_verification(submission, quest)
        submission = await self.submission_store.update(
            submission.id, pipeline_id=pipeline_handle.pipeline_id
        )

        task = asyncio.create_task(
            self._apply_when_done(submission.id, pipeline_handle, quest),
            name=f"finalize_{submission.id}",
        )
        self._finalizers.add(task)
        task.add_done_callback(self._finalizers.discard)

        self._logger.info(
            "submission_created",
            submission_id=submission.id,
            quest_id=quest.id,
            user_id=submission.user_id,
            pipeline_id=pipeline_handle.pipeline_id,
        )
        return submission, SubmissionHandle(submission.id, pipeline_handle, task)

    async def _apply_when_done(
        self, submission_id: str, handle: PipelineHandle, quest: Quest
    ) -> Submission:
        try:
            pipeline = await handle.wait()
        except asyncio.CancelledError:
            await self.submission_store.update(
                submission_id, verification_error="verification cancelled"
            )
            raise
        return await self.apply_pipeline_outcome(submission_id, pipeline, quest)

    async def apply_pipeline_outcome(
        self,
        submission_id: str,
        pipeline: VerificationPipeline,
        quest: Quest,
    ) -> Submission:
        """Map a terminal pipeline onto its submission.

        A reviewer decision made while the pipeline was still running is
        kept; only the report is attached in that case.
        """
        current = await self.submission_store.require(submission_id)

        if pipeline.overall_status != PipelineStatus.COMPLETED or pipeline.final_report is None:
            failed = next(
                (s for s in pipeline.steps if s.status == StepStatus.FAILED), None
            )
            error = f"{failed.name.value}: {failed.error}" if failed else "verification failed"
            self._logger.warning(
                "verification_unresolved",
                submission_id=submission_id,
                pipeline_id=pipeline.pipeline_id,
                error=error,
            )
            return await self.submission_store.update(submission_id, verification_error=error)

        report = pipeline.final_report
        if current.status in _HUMAN_DECISIONS and current.reviewed_at is not None:
            return await self.submission_store.update(
                submission_id, verification_report=report, verification_error=None
            )

        status = DECISION_STATUS[report.decision]
        points = quest.points if status == SubmissionStatus.AUTO_PASS else 0
        return await self.submission_store.update(
            submission_id,
            verification_report=report,
            verification_error=None,
            status=status,
            points_awarded=points,
        )

    async def get_submission(self, submission_id: str) -> Submission:
        """Raises SubmissionNotFoundError for unknown ids."""
        return await self.submission_store.require(submission_id)

    async def list_submissions(
        self,
        user_id: Optional[str] = None,
        status: Optional[SubmissionStatus] = None,
    ) -> list[Submission]:
        return await self.submission_store.list_submissions(user_id=user_id, status=status)

    async def review_submission(
        self,
        submission_id: str,
        approved: bool,
        review_notes: Optional[str] = None,
        reviewer_id: Optional[str] = None,
    ) -> Submission:
        """Apply a human review decision.

        Approval awards the quest's points; rejection clears them.

        Raises:
            SubmissionNotFoundError: Unknown submission id.
        """
        submission = await self.submission_store.require(submission_id)
        if approved:
            quest = await self.quest_store.get(submission.quest_id)
            points = quest.points if quest else submission.points_awarded
            status = SubmissionStatus.APPROVED
        else:
            points = 0
            status = SubmissionStatus.REJECTED

        updated = await self.submission_store.update(
            submission_id,
            status=status,
            points_awarded=points,
            reviewed_by=reviewer_id,
            review_notes=review_notes,
            reviewed_at=datetime.now(timezone.utc),
        )
        self._logger.info(
            "submission_reviewed",
            submission_id=submission_id,
            approved=approved,
            reviewer_id=reviewer_id,
        )
        return updated

    async def shutdown(self) -> None:
        """Cancel in-flight verification and pending outcome updates."""
        await self.orchestrator.shutdown()
        await asyncio.gather(*list(self._finalizers), return_exceptions=True)
