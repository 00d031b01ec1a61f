"""Verification domain schemas: steps, pipelines, step results and reports.

A VerificationPipeline is one verification run over one submission. It holds
exactly seven VerificationStep records in a fixed order. Each step moves
pending -> running -> completed|failed exactly once and is never re-run.
The final step produces the VerificationReport, which is immutable.

All step result models carry an ``issues`` list of tags. The final decision
folds those tags and every result exposing a ``confidence`` into the report.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel

from terra_verify.data_management.schemas.quest_schema import Coordinate


class StepName(str, Enum):
    """The seven pipeline steps, declared in execution order."""

    FILE_VALIDATION = "File Validation"
    EXIF_ANALYSIS = "EXIF Analysis"
    GPS_VERIFICATION = "GPS Verification"
    DUPLICATE_DETECTION = "Duplicate Detection"
    IMAGE_ANALYSIS = "AI Image Analysis"
    CONTENT_MODERATION = "Content Moderation"
    FINAL_DECISION = "Final Decision"


STEP_ORDER: tuple[StepName, ...] = tuple(StepName)


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Decision(str, Enum):
    """Automated disposition of a submission."""

    PASS = "pass"
    REVIEW = "review"
    REJECT = "reject"


class IssueTag(str, Enum):
    """Issue tags emitted by the evaluation steps."""

    FILE_TOO_LARGE = "file_too_large"
    INVALID_FILE_TYPE = "invalid_file_type"
    IMAGE_TOO_OLD = "image_too_old"
    NO_GPS_DATA = "no_gps_data"
    OUTSIDE_ALLOWED_RADIUS = "outside_allowed_radius"
    POTENTIAL_DUPLICATE = "potential_duplicate"
    NO_IMAGE_PROVIDED = "no_image_provided"
    LOW_CONFIDENCE = "low_confidence"
    INAPPROPRIATE_CONTENT = "inappropriate_content"


_camel = {"alias_generator": to_camel, "populate_by_name": True}


# ── Step results ──────────────────────────────────────────────────────────


class StepResult(BaseModel):
    """Common shape of every step result."""

    issues: list[str] = Field(default_factory=list)

    model_config = _camel


class FileValidationResult(StepResult):
    valid: bool
    file_size: Optional[int] = None
    file_type: Optional[str] = None


class ExifAnalysisResult(StepResult):
    has_exif: bool
    timestamp: Optional[datetime] = None
    camera: Optional[str] = None
    location: Optional[Coordinate] = None


class GpsVerificationResult(StepResult):
    has_gps: bool
    within_radius: bool
    distance: Optional[float] = Field(default=None, description="Meters from the quest site")


class DuplicateDetectionResult(StepResult):
    is_duplicate: bool
    similarity_score: float = Field(default=0.0, ge=0.0, le=1.0)
    matched_submissions: list[str] = Field(default_factory=list)


class ImageAnalysisResult(StepResult):
    confidence: float = Field(..., ge=0.0, le=1.0)
    labels: list[str] = Field(default_factory=list)
    objects: list[dict[str, Any]] = Field(default_factory=list)
    appropriate: bool = True


class ContentModerationResult(StepResult):
    appropriate: bool
    flags: list[str] = Field(default_factory=list)


class VerificationReport(BaseModel):
    """Aggregated, immutable outcome of a completed pipeline.

    gps_valid mirrors the EXIF step's has_exif flag rather than the GPS
    step's result. Downstream consumers currently depend on that mapping.
    """

    confidence: float = Field(..., ge=0.0, le=1.0, description="Minimum step confidence")
    labels: list[str] = Field(default_factory=list)
    issues: list[str] = Field(default_factory=list, description="Issue tags from steps 1-6")
    p_hash_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    exif_valid: bool
    gps_valid: bool
    duplicate_check: bool
    decision: Decision

    model_config = {
        **_camel,
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "confidence": 0.9,
                    "labels": ["plant", "sapling", "garden", "authentic", "educational"],
                    "issues": ["outside_allowed_radius"],
                    "pHashScore": 0.12,
                    "exifValid": True,
                    "gpsValid": True,
                    "duplicateCheck": True,
                    "decision": "review",
                }
            ]
        },
    }


AnyStepResult = Union[
    FileValidationResult,
    ExifAnalysisResult,
    GpsVerificationResult,
    DuplicateDetectionResult,
    ImageAnalysisResult,
    ContentModerationResult,
    VerificationReport,
]


# ── Execution records ─────────────────────────────────────────────────────


def _now() -> datetime:
    return datetime.now(timezone.utc)


class VerificationStep(BaseModel):
    """Execution record of one pipeline stage."""

    name: StepName
    status: StepStatus = StepStatus.PENDING
    result: Optional[AnyStepResult] = None
    error: Optional[str] = None
    duration_ms: Optional[float] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def mark_running(self) -> None:
        if self.status != StepStatus.PENDING:
            raise ValueError(f"{self.name.value} cannot start from {self.status.value}")
        self.status = StepStatus.RUNNING
        self.started_at = _now()

    def mark_completed(self, result: AnyStepResult, duration_ms: float) -> None:
        if self.status != StepStatus.RUNNING:
            raise ValueError(f"{self.name.value} cannot complete from {self.status.value}")
        self.result = result
        self.status = StepStatus.COMPLETED
        self.duration_ms = duration_ms
        self.finished_at = _now()

    def mark_failed(self, error: str, duration_ms: float) -> None:
        if self.status != StepStatus.RUNNING:
            raise ValueError(f"{self.name.value} cannot fail from {self.status.value}")
        self.error = error
        self.status = StepStatus.FAILED
        self.duration_ms = duration_ms
        self.finished_at = _now()

    model_config = _camel


class VerificationPipeline(BaseModel):
    """Per-submission execution context for one verification attempt."""

    pipeline_id: str
    submission_id: str
    steps: list[VerificationStep]
    overall_status: PipelineStatus = PipelineStatus.PENDING
    final_report: Optional[VerificationReport] = None
    start_time: datetime = Field(default_factory=_now)
    end_time: Optional[datetime] = None

    @model_validator(mode="after")
    def fixed_step_order(self) -> "VerificationPipeline":
        names = tuple(step.name for step in self.steps)
        if names != STEP_ORDER:
            raise ValueError("pipeline steps must be the seven steps in fixed order")
        return self

    @classmethod
    def create(cls, pipeline_id: str, submission_id: str) -> "VerificationPipeline":
        """New pipeline with every step pending."""
        return cls(
            pipeline_id=pipeline_id,
            submission_id=submission_id,
            steps=[VerificationStep(name=name) for name in STEP_ORDER],
        )

    def step(self, name: StepName) -> VerificationStep:
        return self.steps[STEP_ORDER.index(name)]

    @property
    def is_terminal(self) -> bool:
        return self.overall_status in (PipelineStatus.COMPLETED, PipelineStatus.FAILED)

    model_config = _camel
