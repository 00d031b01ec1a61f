"""Submission schemas: a student's evidence claiming quest completion.

Submissions are owned by intake. The verification pipeline only reads them;
intake attaches the resulting VerificationReport and sets status and points.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel

from terra_verify.data_management.schemas.quest_schema import Coordinate
from terra_verify.data_management.schemas.verification_schema import (
    VerificationReport,
)


class SubmissionStatus(str, Enum):
    """Submission lifecycle.

    PENDING: Awaiting (or stuck in) automated verification.
    AUTO_PASS: Pipeline passed the submission; points awarded.
    REVIEW: Pipeline flagged the submission for a human reviewer.
    APPROVED: A reviewer approved it; points awarded.
    REJECTED: Rejected by the pipeline or a reviewer.
    """

    PENDING = "pending"
    AUTO_PASS = "auto_pass"
    REVIEW = "review"
    APPROVED = "approved"
    REJECTED = "rejected"


POINT_BEARING_STATUSES = frozenset({SubmissionStatus.AUTO_PASS, SubmissionStatus.APPROVED})


class ExifMetadata(BaseModel):
    """EXIF fields extracted from the proof image by the client."""

    captured_at: Optional[datetime] = Field(default=None, description="DateTimeOriginal")
    camera_model: Optional[str] = Field(default=None, description="Camera make/model")
    location: Optional[Coordinate] = Field(default=None, description="Embedded GPS")

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class SubmissionCreate(BaseModel):
    """Intake payload for a new submission."""

    quest_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    image_url: Optional[str] = None
    caption: str = ""
    gps_coords: Optional[Coordinate] = None
    quest_points: Optional[int] = Field(
        default=None,
        description="Client-declared quest value; the resolved quest's points win",
    )
    file_size_bytes: Optional[int] = Field(default=None, ge=0)
    file_type: Optional[str] = None
    exif: Optional[ExifMetadata] = None
    image_hash: Optional[str] = Field(
        default=None, description="64-bit perceptual hash of the image, hex encoded"
    )

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class Submission(BaseModel):
    """A stored submission and its verification outcome."""

    id: str = Field(default_factory=lambda: f"sub_{uuid.uuid4().hex[:12]}")
    quest_id: str
    user_id: str
    image_url: Optional[str] = None
    caption: str = ""
    gps_coords: Optional[Coordinate] = None
    file_size_bytes: Optional[int] = Field(default=None, ge=0)
    file_type: Optional[str] = None
    exif: Optional[ExifMetadata] = None
    image_hash: Optional[str] = None
    status: SubmissionStatus = SubmissionStatus.PENDING
    verification_report: Optional[VerificationReport] = None
    pipeline_id: Optional[str] = None
    verification_error: Optional[str] = Field(
        default=None,
        description="Set when the pipeline failed; the submission stays pending",
    )
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None
    points_awarded: int = Field(default=0, ge=0)
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    reviewed_at: Optional[datetime] = None

    @model_validator(mode="after")
    def points_only_when_accepted(self) -> "Submission":
        if self.points_awarded > 0 and self.status not in POINT_BEARING_STATUSES:
            raise ValueError(
                f"points_awarded must be 0 for status {self.status.value}"
            )
        return self

    @classmethod
    def from_create(cls, payload: SubmissionCreate) -> "Submission":
        """Build a pending submission from an intake payload."""
        return cls(
            quest_id=payload.quest_id,
            user_id=payload.user_id,
            image_url=payload.image_url,
            caption=payload.caption,
            gps_coords=payload.gps_coords,
            file_size_bytes=payload.file_size_bytes,
            file_type=payload.file_type,
            exif=payload.exif,
            image_hash=payload.image_hash,
        )

    model_config = {"alias_generator": to_camel, "populate_by_name": True}
