"""Submission intake boundary."""

from terra_verify.intake.submission_service import (
    DECISION_STATUS,
    SubmissionHandle,
    SubmissionService,
)

__all__ = ["DECISION_STATUS", "SubmissionHandle", "SubmissionService"]
