"""Verification step evaluators and the final decision policy."""

from terra_verify.verification.decision import (
    DecisionPolicy,
    expected_labels_for,
    fold_confidence,
    make_final_decision,
)
from terra_verify.verification.steps import (
    ContentModerationStep,
    DuplicateDetectionStep,
    ExifAnalysisStep,
    FileValidationStep,
    FinalDecisionStep,
    GpsVerificationStep,
    ImageAnalysisStep,
    StepEvaluator,
    build_default_evaluators,
)

__all__ = [
    "ContentModerationStep",
    "DecisionPolicy",
    "DuplicateDetectionStep",
    "ExifAnalysisStep",
    "FileValidationStep",
    "FinalDecisionStep",
    "GpsVerificationStep",
    "ImageAnalysisStep",
    "StepEvaluator",
    "build_default_evaluators",
    "expected_labels_for",
    "fold_confidence",
    "make_final_decision",
]
