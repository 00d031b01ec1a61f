"""Schema package for quests, submissions and verification records.

Primary exports:
- Quest / Coordinate: read-only quest definitions
- Submission / SubmissionCreate: student evidence and intake payload
- VerificationPipeline / VerificationStep: execution records
- VerificationReport: the aggregated decision

Usage:
    from terra_verify.data_management.schemas import Quest, QuestCategory
    quest = Quest(id="q1", category=QuestCategory.WASTE, points=20)
"""

from terra_verify.data_management.schemas.quest_schema import (
    Coordinate,
    Quest,
    QuestCategory,
    QuestDifficulty,
)
from terra_verify.data_management.schemas.verification_schema import (
    STEP_ORDER,
    AnyStepResult,
    ContentModerationResult,
    Decision,
    DuplicateDetectionResult,
    ExifAnalysisResult,
    FileValidationResult,
    GpsVerificationResult,
    ImageAnalysisResult,
    IssueTag,
    PipelineStatus,
    StepName,
    StepResult,
    StepStatus,
    VerificationPipeline,
    VerificationReport,
    VerificationStep,
)
from terra_verify.data_management.schemas.submission_schema import (
    ExifMetadata,
    Submission,
    SubmissionCreate,
    SubmissionStatus,
)

__all__ = [
    # Quest
    "Coordinate",
    "Quest",
    "QuestCategory",
    "QuestDifficulty",
    # Submission
    "ExifMetadata",
    "Submission",
    "SubmissionCreate",
    "SubmissionStatus",
    # Verification
    "STEP_ORDER",
    "AnyStepResult",
    "ContentModerationResult",
    "Decision",
    "DuplicateDetectionResult",
    "ExifAnalysisResult",
    "FileValidationResult",
    "GpsVerificationResult",
    "ImageAnalysisResult",
    "IssueTag",
    "PipelineStatus",
    "StepName",
    "StepResult",
    "StepStatus",
    "VerificationPipeline",
    "VerificationReport",
    "VerificationStep",
]
