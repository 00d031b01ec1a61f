"""Verification pipeline orchestrator.

Creates one VerificationPipeline per verification attempt, runs the seven
step evaluators strictly in order as a background asyncio task, and keeps the
pipeline table current so status can be polled at any point.

Execution protocol:
- overall status pending -> running
- each step pending -> running -> completed (result, duration) or
  failed (error, duration)
- the first failed step aborts the run: overall status failed, no report,
  later steps stay pending
- after seven successful steps: overall status completed, final report set

Usage:
    from terra_verify.pipeline import VerificationOrchestrator

    orchestrator = VerificationOrchestrator()
    handle = await orchestrator.start_verification(submission, quest)
    pipeline = await handle.wait()          # or poll:
    snapshot = await orchestrator.get_pipeline_status(handle.pipeline_id)
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional


from terra_verify.capabilities.duplicates import PerceptualHashIndex
from terra_verify.capabilities.image_analysis import ImageAnalyzer, build_image_analyzer
from terra_verify.capabilities.moderation import ContentModerator, KeywordContentModerator
from terra_verify.config.settings import Settings
from terra_verify.config.settings import settings as default_settings
from terra_verify.data_management.pipeline_store import PipelineStore
from terra_verify.data_management.schemas.quest_schema import Quest
from terra_verify.data_management.schemas.submission_schema import Submission
from terra_verify.data_management.schemas.verification_schema import (
    STEP_ORDER,
    PipelineStatus,
    StepName,
    StepResult,
    VerificationPipeline,
    VerificationReport,
    VerificationStep,
)
from terra_verify.utils.logging import bind_pipeline_context, get_structured_logger
from terra_verify.verification.steps import StepEvaluator, build_default_evaluators

ProgressCallback = Callable[[VerificationPipeline, VerificationStep], Awaitable[None]]


@dataclass
class PipelineHandle:
    """Returned by start_verification.

    Attributes:
        pipeline_id: Key of the pipeline in the pipeline table.
        pipeline: Snapshot taken at creation (all steps pending).
        task: Background task running the pipeline.
    """

    pipeline_id: str
    pipeline: VerificationPipeline
    task: "asyncio.Task[VerificationPipeline]"

    async def wait(self) -> VerificationPipeline:
        """Wait for the pipeline to reach a terminal state and return it."""
        return await self.task

    def done(self) -> bool:
        return self.task.done()


class VerificationOrchestrator:
    """Owns the pipeline table and runs verification pipelines.

    All collaborators are injected; omitted ones are built from settings.
    """

    def __init__(
        self,
        image_analyzer: Optional[ImageAnalyzer] = None,
        moderator: Optional[ContentModerator] = None,
        duplicate_index: Optional[PerceptualHashIndex] = None,
        pipeline_store: Optional[PipelineStore] = None,
        evaluators: Optional[Iterable[StepEvaluator]] = None,
        settings: Optional[Settings] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        """Initialize VerificationOrchestrator.

        Args:
            image_analyzer: Capability for the AI Image Analysis step.
            moderator: Capability for the Content Moderation step.
            duplicate_index: Perceptual hash index for Duplicate Detection.
            pipeline_store: Pipeline table. Memory-only if None.
            evaluators: Full ordered set of seven evaluators. Overrides the
                three capabilities above when given.
            settings: Configuration. Defaults to the environment settings.
            progress_callback: Async callback invoked with a pipeline
                snapshot and the step after every step transition.

        Raises:
            ValueError: If evaluators are not the seven steps in order.
        """
        self.settings = settings or default_settings
        self.pipeline_store = pipeline_store or PipelineStore(
            self.settings.pipeline_store_path,
            max_terminal_pipelines=self.settings.pipeline_retention,
        )
        self.progress_callback = progress_callback

        # Analyzer built here rather than injected; closed on shutdown
        self._owned_analyzer: Optional[ImageAnalyzer] = None

        if evaluators is None:
            if image_analyzer is None:
                image_analyzer = self._owned_analyzer = build_image_analyzer(self.settings)
            self.image_analyzer = image_analyzer
            self.moderator = moderator or KeywordContentModerator(self.settings.blocked_terms)
            self.duplicate_index = duplicate_index or PerceptualHashIndex(
                self.settings.phash_duplicate_threshold
            )
            evaluators = build_default_evaluators(
                self.settings, self.image_analyzer, self.moderator, self.duplicate_index
            )
        self.evaluators: list[StepEvaluator] = list(evaluators)

        if tuple(e.name for e in self.evaluators) != STEP_ORDER:
            raise ValueError("evaluators must cover the seven steps in pipeline order")

        self._tasks: dict[str, asyncio.Task] = {}
        self._logger = get_structured_logger("VerificationOrchestrator")

    @staticmethod
    def _new_pipeline_id(submission_id: str) -> str:
        # Submission id plus creation time, with a random suffix so repeated
        # attempts within the same millisecond stay unique
        return f"pipeline_{submission_id}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"

    @staticmethod
    def _validate_input(submission: Submission, quest: Quest) -> None:
        if submission is None:
            raise ValueError("submission is required")
        if quest is None:
            raise ValueError("quest is required")
        if submission.quest_id != quest.id:
            raise ValueError(
                f"submission {submission.id} targets quest {submission.quest_id}, "
                f"not {quest.id}"
            )

    async def start_verification(self, submission: Submission, quest: Quest) -> PipelineHandle:
        """Create a pipeline and start running it in the background.

        Returns immediately with the initial snapshot; the pipeline itself
        runs as an asyncio task on the current loop.

        Args:
            submission: Submission to verify.
            quest: The submission's resolved quest.

        Returns:
            PipelineHandle with the pipeline id, snapshot and task.

        Raises:
            ValueError: Malformed input. No pipeline is created.
        """
        self._validate_input(submission, quest)

        pipeline_id = self._new_pipeline_id(submission.id)
        pipeline = VerificationPipeline.create(pipeline_id, submission.id)
        await self.pipeline_store.save_pipeline(pipeline)
        snapshot = pipeline.model_copy(deep=True)

        task = asyncio.create_task(
            self._run_pipeline(pipeline, submission.model_copy(deep=True), quest),
            name=pipeline_id,
        )
        self._tasks[pipeline_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(pipeline_id, None))

        self._logger.info(
            "verification_started",
            pipeline_id=pipeline_id,
            submission_id=submission.id,
            quest_id=quest.id,
        )
        return PipelineHandle(pipeline_id=pipeline_id, pipeline=snapshot, task=task)

    async def get_pipeline_status(self, pipeline_id: str) -> Optional[VerificationPipeline]:
        """Read-only snapshot of a pipeline, None if unknown."""
        return await self.pipeline_store.get_pipeline(pipeline_id)

    async def run_verification(self, submission: Submission, quest: Quest) -> VerificationPipeline:
        """Start a pipeline and wait for its terminal state."""
        handle = await self.start_verification(submission, quest)
        return await handle.wait()

    async def shutdown(self) -> None:
        """Cancel in-flight pipelines and wait for them to settle.

        Also closes the image analyzer if this orchestrator built it.
        """
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._owned_analyzer is not None:
            await self._owned_analyzer.aclose()

    async def _run_pipeline(
        self,
        pipeline: VerificationPipeline,
        submission: Submission,
        quest: Quest,
    ) -> VerificationPipeline:
        # Task-local: each pipeline task runs in its own context copy
        bind_pipeline_context(pipeline.pipeline_id, submission.id)
        pipeline.overall_status = PipelineStatus.RUNNING
        await self.pipeline_store.save_pipeline(pipeline)

        results: dict[StepName, StepResult] = {}
        try:
            for evaluator in self.evaluators:
                results[evaluator.name] = await self._run_step(
                    pipeline, evaluator, submission, quest, results
                )
        except asyncio.CancelledError:
            await self._finish(pipeline, PipelineStatus.FAILED)
            self._logger.warning("verification_cancelled")
            raise
        except Exception as e:
            await self._finish(pipeline, PipelineStatus.FAILED)
            self._logger.error("verification_failed", error=str(e) or type(e).__name__)
            return pipeline.model_copy(deep=True)

        report: VerificationReport = results[StepName.FINAL_DECISION]
        pipeline.final_report = report
        await self._finish(pipeline, PipelineStatus.COMPLETED)

        self._logger.info(
            "verification_complete",
            decision=report.decision.value,
            confidence=report.confidence,
            issues=report.issues,
        )
        return pipeline.model_copy(deep=True)

    async def _run_step(
        self,
        pipeline: VerificationPipeline,
        evaluator: StepEvaluator,
        submission: Submission,
        quest: Quest,
        results: dict[StepName, StepResult],
    ) -> StepResult:
        """Run one evaluator, recording its transitions on the step.

        Re-raises whatever the evaluator raised after marking the step failed.
        """
        step = pipeline.step(evaluator.name)
        step.mark_running()
        await self._publish(pipeline, step)

        started = time.perf_counter()
        try:
            result = await evaluator.evaluate(submission, quest, dict(results))
        except asyncio.CancelledError:
            step.mark_failed("cancelled", _elapsed_ms(started))
            await self._publish(pipeline, step)
            raise
        except Exception as e:
            step.mark_failed(str(e) or type(e).__name__, _elapsed_ms(started))
            await self._publish(pipeline, step)
            raise

        step.mark_completed(result, _elapsed_ms(started))
        await self._publish(pipeline, step)
        return result

    async def _publish(self, pipeline: VerificationPipeline, step: VerificationStep) -> None:
        await self.pipeline_store.save_pipeline(pipeline)
        self._logger.debug(
            "step_transition",
            pipeline_id=pipeline.pipeline_id,
            step=step.name.value,
            status=step.status.value,
            duration_ms=step.duration_ms,
        )
        if self.progress_callback is not None:
            try:
                await self.progress_callback(pipeline.model_copy(deep=True), step.model_copy())
            except Exception as e:
                self._logger.warning("progress_callback_failed", error=str(e))

    async def _finish(self, pipeline: VerificationPipeline, status: PipelineStatus) -> None:
        pipeline.overall_status = status
        pipeline.end_time = _now()
        await self.pipeline_store.save_pipeline(pipeline)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def _now() -> datetime:
    return datetime.now(timezone.utc)
