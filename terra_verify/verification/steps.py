"""The seven verification step evaluators.

Each evaluator is an object with a ``name`` and a coroutine

    evaluate(submission, quest, previous) -> StepResult

where ``previous`` maps the names of already-completed steps to their
results. Only the Final Decision step reads it. Evaluators signal bad input
by raising; the orchestrator turns that into a failed step and a failed
pipeline.

Cheap checks run first; the image analysis call is the only one with
external latency and is time-bounded.
"""

import asyncio
import mimetypes
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional
from urllib.parse import urlparse


from terra_verify.capabilities.duplicates import PerceptualHashIndex
from terra_verify.capabilities.image_analysis import ImageAnalyzer
from terra_verify.capabilities.moderation import ContentModerator
from terra_verify.config.settings import Settings
from terra_verify.data_management.schemas.quest_schema import Coordinate, Quest
from terra_verify.data_management.schemas.submission_schema import Submission
from terra_verify.data_management.schemas.verification_schema import (
    ContentModerationResult,
    DuplicateDetectionResult,
    ExifAnalysisResult,
    FileValidationResult,
    GpsVerificationResult,
    ImageAnalysisResult,
    IssueTag,
    StepName,
    StepResult,
    VerificationReport,
)
from terra_verify.utils.geo import distance_meters
from terra_verify.utils.logging import get_structured_logger
from terra_verify.verification.decision import DecisionPolicy, expected_labels_for

mimetypes.add_type("image/webp", ".webp")
mimetypes.add_type("image/heic", ".heic")

StepResults = Mapping[StepName, StepResult]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepEvaluator(ABC):
    """Base for pipeline step evaluators."""

    name: StepName

    def __init__(self) -> None:
        self._logger = get_structured_logger(type(self).__name__)

    @abstractmethod
    async def evaluate(
        self,
        submission: Submission,
        quest: Quest,
        previous: StepResults,
    ) -> StepResult:
        """Run the check and return its result."""


class FileValidationStep(StepEvaluator):
    """Declared file size and MIME type against upload limits."""

    name = StepName.FILE_VALIDATION

    def __init__(self, max_file_size_mb: float, allowed_types: list[str]) -> None:
        super().__init__()
        self.max_file_size_bytes = int(max_file_size_mb * 1024 * 1024)
        self.allowed_types = {t.lower() for t in allowed_types}

    @staticmethod
    def _resolve_type(submission: Submission) -> Optional[str]:
        if submission.file_type:
            return submission.file_type.split(";")[0].strip().lower()
        url = submission.image_url
        if url:
            # data: URLs carry their media type in the header
            target = url if url[:5].lower() == "data:" else urlparse(url).path
            guessed, _ = mimetypes.guess_type(target)
            return guessed.lower() if guessed else None
        return None

    async def evaluate(self, submission, quest, previous) -> FileValidationResult:
        issues: list[str] = []
        file_size = submission.file_size_bytes
        file_type = self._resolve_type(submission)

        if submission.image_url is None and file_type is None and file_size is None:
            # Nothing uploaded; image analysis reports the missing image
            return FileValidationResult(valid=True, issues=issues)

        if file_size is not None and file_size > self.max_file_size_bytes:
            issues.append(IssueTag.FILE_TOO_LARGE.value)

        if file_type is None or file_type not in self.allowed_types:
            issues.append(IssueTag.INVALID_FILE_TYPE.value)

        return FileValidationResult(
            valid=not issues,
            file_size=file_size,
            file_type=file_type,
            issues=issues,
        )


class ExifAnalysisStep(StepEvaluator):
    """Presence of EXIF metadata and plausibility of the capture time."""

    name = StepName.EXIF_ANALYSIS

    def __init__(
        self,
        max_image_age_days: int = 7,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        super().__init__()
        self.max_age = timedelta(days=max_image_age_days)
        self.clock = clock

    async def evaluate(self, submission, quest, previous) -> ExifAnalysisResult:
        issues: list[str] = []
        exif = submission.exif
        has_exif = exif is not None and (
            exif.captured_at is not None or exif.camera_model is not None
        )

        timestamp = exif.captured_at if has_exif else None
        if timestamp is not None:
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=timezone.utc)
            if self.clock() - timestamp > self.max_age:
                issues.append(IssueTag.IMAGE_TOO_OLD.value)

        location = exif.location if exif is not None and exif.location else submission.gps_coords

        return ExifAnalysisResult(
            has_exif=has_exif,
            timestamp=timestamp,
            camera=exif.camera_model if has_exif else None,
            location=location,
            issues=issues,
        )


class GpsVerificationStep(StepEvaluator):
    """Geofence check of the submission coordinate against the quest site.

    The boundary is inclusive: a submission exactly at the allowed radius
    is within it.
    """

    name = StepName.GPS_VERIFICATION

    def __init__(self, default_location: Coordinate) -> None:
        super().__init__()
        self.default_location = default_location

    async def evaluate(self, submission, quest, previous) -> GpsVerificationResult:
        if submission.gps_coords is None:
            return GpsVerificationResult(
                has_gps=False,
                within_radius=False,
                issues=[IssueTag.NO_GPS_DATA.value],
            )

        site = quest.location or self.default_location
        distance = distance_meters(submission.gps_coords, site)
        radius = quest.location_radius_m
        within_radius = distance <= radius if radius is not None else True

        issues: list[str] = []
        if not within_radius:
            issues.append(IssueTag.OUTSIDE_ALLOWED_RADIUS.value)

        return GpsVerificationResult(
            has_gps=True,
            within_radius=within_radius,
            distance=distance,
            issues=issues,
        )


class DuplicateDetectionStep(StepEvaluator):
    """Perceptual-hash similarity against prior submissions."""

    name = StepName.DUPLICATE_DETECTION

    def __init__(self, index: PerceptualHashIndex) -> None:
        super().__init__()
        self.index = index

    async def evaluate(self, submission, quest, previous) -> DuplicateDetectionResult:
        match = self.index.check_and_register(submission.id, submission.image_hash)
        issues = [IssueTag.POTENTIAL_DUPLICATE.value] if match.is_duplicate else []
        return DuplicateDetectionResult(
            is_duplicate=match.is_duplicate,
            similarity_score=match.similarity_score,
            matched_submissions=match.matched_submissions,
            issues=issues,
        )


class ImageAnalysisStep(StepEvaluator):
    """Scores the proof image against the quest's expected labels.

    The analyzer call is bounded by ``timeout_seconds``; a timeout raises
    and therefore fails the pipeline.
    """

    name = StepName.IMAGE_ANALYSIS

    def __init__(
        self,
        analyzer: ImageAnalyzer,
        review_threshold: float = 0.5,
        timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__()
        self.analyzer = analyzer
        self.review_threshold = review_threshold
        self.timeout_seconds = timeout_seconds

    async def evaluate(self, submission, quest, previous) -> ImageAnalysisResult:
        if not submission.image_url:
            return ImageAnalysisResult(
                confidence=0.0,
                labels=[],
                objects=[],
                appropriate=False,
                issues=[IssueTag.NO_IMAGE_PROVIDED.value],
            )

        try:
            analysis = await asyncio.wait_for(
                self.analyzer.analyze_image(
                    submission.image_url,
                    quest.category.value,
                    quest.title,
                    expected_labels_for(quest.category),
                    submission.caption,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise TimeoutError(
                f"Image analysis timed out after {self.timeout_seconds}s"
            ) from None

        issues: list[str] = []
        if analysis.confidence < self.review_threshold:
            issues.append(IssueTag.LOW_CONFIDENCE.value)

        return ImageAnalysisResult(
            confidence=analysis.confidence,
            labels=analysis.labels,
            objects=[],
            appropriate=True,
            issues=issues,
        )


class ContentModerationStep(StepEvaluator):
    name = StepName.CONTENT_MODERATION

    def __init__(self, moderator: ContentModerator) -> None:
        super().__init__()
        self.moderator = moderator

    async def evaluate(self, submission, quest, previous) -> ContentModerationResult:
        verdict = await self.moderator.moderate(submission.image_url, submission.caption)
        issues = [] if verdict.appropriate else [IssueTag.INAPPROPRIATE_CONTENT.value]
        return ContentModerationResult(
            appropriate=verdict.appropriate,
            flags=verdict.flags,
            issues=issues,
        )


class FinalDecisionStep(StepEvaluator):
    """Aggregates steps 1-6 into the VerificationReport."""

    name = StepName.FINAL_DECISION

    def __init__(self, policy: DecisionPolicy) -> None:
        super().__init__()
        self.policy = policy

    async def evaluate(self, submission, quest, previous) -> VerificationReport:
        return self.policy.make_final_decision(previous)


def build_default_evaluators(
    settings: Settings,
    image_analyzer: ImageAnalyzer,
    moderator: ContentModerator,
    duplicate_index: PerceptualHashIndex,
) -> list[StepEvaluator]:
    """The seven evaluators in pipeline order, configured from settings."""
    return [
        FileValidationStep(settings.max_file_size_mb, settings.allowed_image_types),
        ExifAnalysisStep(settings.max_image_age_days),
        GpsVerificationStep(
            Coordinate(lat=settings.default_quest_lat, lng=settings.default_quest_lng)
        ),
        DuplicateDetectionStep(duplicate_index),
        ImageAnalysisStep(
            image_analyzer,
            review_threshold=settings.review_threshold,
            timeout_seconds=settings.image_analysis_timeout_seconds,
        ),
        ContentModerationStep(moderator),
        FinalDecisionStep(DecisionPolicy(settings.auto_pass_threshold)),
    ]
