"""Application settings using Pydantic BaseSettings for environment variable management."""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Global application settings loaded from environment variables.

    Every field can be overridden with a ``TERRA_`` prefixed environment
    variable (e.g. ``TERRA_AUTO_PASS_THRESHOLD=0.8``) or a ``.env`` file.

    Attributes:
        auto_pass_threshold: Minimum confidence for an automatic pass
        review_threshold: Confidence below which image analysis flags low_confidence
        phash_duplicate_threshold: Similarity above which a submission is a potential duplicate
        max_file_size_mb: Largest accepted upload
        allowed_image_types: Accepted MIME types for proof images
        max_image_age_days: Oldest accepted EXIF capture time
        default_quest_lat: Latitude of the default quest site (the school)
        default_quest_lng: Longitude of the default quest site
        image_analysis_url: Remote vision endpoint; the stub analyzer is used when unset
        image_analysis_timeout_seconds: Upper bound on the image analysis step
        image_analysis_request_timeout_seconds: Per-request timeout against the remote vision endpoint
        image_analysis_max_retries: Attempts against the remote vision endpoint
        blocked_terms: Caption terms the keyword moderator flags
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log output format (json for production, console for dev)
        submission_store_path: Optional JSON persistence file for submissions
        pipeline_store_path: Optional JSON persistence file for pipelines
        pipeline_retention: Terminal pipelines kept in the pipeline table
        quests_path: Optional JSON file holding the list of published quests
    """

    auto_pass_threshold: float = Field(
        default=0.75, ge=0.0, le=1.0,
        description="Minimum overall confidence for an automatic pass"
    )
    review_threshold: float = Field(
        default=0.5, ge=0.0, le=1.0,
        description="Image analysis confidence below which low_confidence is flagged"
    )
    phash_duplicate_threshold: float = Field(
        default=0.9, ge=0.0, le=1.0,
        description="Perceptual hash similarity above which a duplicate is suspected"
    )
    max_file_size_mb: float = Field(
        default=5,
        description="Maximum proof image size in megabytes"
    )
    allowed_image_types: list[str] = Field(
        default=["image/jpeg", "image/png", "image/webp"],
        description="Accepted proof image MIME types"
    )
    max_image_age_days: int = Field(
        default=7,
        description="Maximum age of the EXIF capture time"
    )
    default_quest_lat: float = Field(
        default=40.7128,
        description="Latitude used when a quest has a radius but no location"
    )
    default_quest_lng: float = Field(
        default=-74.006,
        description="Longitude used when a quest has a radius but no location"
    )
    image_analysis_url: str | None = Field(
        default=None,
        description="Remote vision endpoint for image analysis"
    )
    image_analysis_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for the image analysis step"
    )
    image_analysis_request_timeout_seconds: float = Field(
        default=8.0,
        description="Per-request timeout for the remote vision endpoint"
    )
    image_analysis_max_retries: int = Field(
        default=3,
        description="Attempts against the remote vision endpoint"
    )
    blocked_terms: list[str] = Field(
        default=["nsfw", "violence", "weapon", "nude", "gore"],
        description="Caption terms rejected by the keyword moderator"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: json or console"
    )
    submission_store_path: str | None = Field(
        default=None,
        description="JSON file for submission persistence (memory-only if unset)"
    )
    pipeline_store_path: str | None = Field(
        default=None,
        description="JSON file for pipeline persistence (memory-only if unset)"
    )
    pipeline_retention: int = Field(
        default=1000, ge=1,
        description="Completed or failed pipelines kept before the oldest are evicted"
    )
    quests_path: str | None = Field(
        default=None,
        description="JSON file with the published quests served by the API"
    )

    model_config = {
        "env_prefix": "TERRA_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


# Singleton instance - import this throughout the application
settings = Settings()
