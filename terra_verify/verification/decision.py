"""Final decision policy: fold step findings into one VerificationReport.

Policy, highest priority first:
1. inappropriate_content or invalid_file_type        -> reject
2. confidence < auto-pass threshold (0.75),
   potential_duplicate or outside_allowed_radius      -> review
3. otherwise                                          -> pass

Overall confidence is the minimum over every step result that exposes a
``confidence`` value. Steps without one do not constrain it (1.0).

Usage:
    from terra_verify.verification.decision import DecisionPolicy

    policy = DecisionPolicy(auto_pass_threshold=0.75)
    report = policy.make_final_decision(results_by_step)
"""

from typing import Iterable, Mapping, Optional


from terra_verify.data_management.schemas.quest_schema import QuestCategory
from terra_verify.data_management.schemas.verification_schema import (
    STEP_ORDER,
    Decision,
    DuplicateDetectionResult,
    ExifAnalysisResult,
    ImageAnalysisResult,
    IssueTag,
    StepName,
    StepResult,
    VerificationReport,
)
from terra_verify.utils.logging import get_structured_logger

# Labels a matching proof image is expected to show, per quest category
EXPECTED_LABELS: dict[QuestCategory, list[str]] = {
    QuestCategory.WASTE: ["container", "reusable", "recycling", "compost"],
    QuestCategory.ENERGY: ["appliance", "meter", "solar", "LED"],
    QuestCategory.WATER: ["faucet", "shower", "rain", "conservation"],
    QuestCategory.BIODIVERSITY: ["plant", "sapling", "garden", "wildlife"],
    QuestCategory.TRANSPORT: ["bicycle", "bus", "walking", "sustainable"],
}

DEFAULT_EXPECTED_LABELS: list[str] = ["environmental", "action"]

REJECT_ISSUES = frozenset({IssueTag.INAPPROPRIATE_CONTENT.value, IssueTag.INVALID_FILE_TYPE.value})
REVIEW_ISSUES = frozenset(
    {IssueTag.POTENTIAL_DUPLICATE.value, IssueTag.OUTSIDE_ALLOWED_RADIUS.value}
)


def expected_labels_for(category: QuestCategory) -> list[str]:
    """Expected labels for a category; seasonal categories get the generic set."""
    return list(EXPECTED_LABELS.get(category, DEFAULT_EXPECTED_LABELS))


def fold_confidence(results: Iterable[object]) -> float:
    """Minimum of every confidence-bearing result, 1.0 when none reports one."""
    confidence = 1.0
    for result in results:
        value = getattr(result, "confidence", None)
        if value is not None:
            confidence = min(confidence, value)
    return confidence


class DecisionPolicy:
    """Tie-break policy between competing verification signals."""

    def __init__(self, auto_pass_threshold: float = 0.75) -> None:
        """Initialize DecisionPolicy.

        Args:
            auto_pass_threshold: Minimum overall confidence for a pass.
        """
        self.auto_pass_threshold = auto_pass_threshold
        self._logger = get_structured_logger("DecisionPolicy")

    def decide(self, issues: Iterable[str], confidence: float) -> Decision:
        issue_set = set(issues)
        if issue_set & REJECT_ISSUES:
            return Decision.REJECT
        if confidence < self.auto_pass_threshold or issue_set & REVIEW_ISSUES:
            return Decision.REVIEW
        return Decision.PASS

    def make_final_decision(
        self,
        results: Mapping[StepName, StepResult],
    ) -> VerificationReport:
        """Aggregate the results of steps 1-6 into a report.

        Args:
            results: Completed step results keyed by step name. Entries for
                the Final Decision step are ignored.

        Returns:
            The immutable VerificationReport.
        """
        prior = [
            results[name]
            for name in STEP_ORDER
            if name != StepName.FINAL_DECISION and name in results
        ]

        issues: list[str] = []
        for result in prior:
            issues.extend(result.issues)

        confidence = fold_confidence(prior)
        decision = self.decide(issues, confidence)

        image: Optional[ImageAnalysisResult] = results.get(StepName.IMAGE_ANALYSIS)
        duplicate: Optional[DuplicateDetectionResult] = results.get(StepName.DUPLICATE_DETECTION)
        exif: Optional[ExifAnalysisResult] = results.get(StepName.EXIF_ANALYSIS)
        exif_valid = bool(exif and exif.has_exif)

        report = VerificationReport(
            confidence=confidence,
            labels=list(image.labels) if image else [],
            issues=issues,
            p_hash_score=duplicate.similarity_score if duplicate else None,
            exif_valid=exif_valid,
            # Sourced from the EXIF step, not GPS verification
            gps_valid=exif_valid,
            duplicate_check=IssueTag.POTENTIAL_DUPLICATE.value not in issues,
            decision=decision,
        )

        self._logger.info(
            "final_decision",
            decision=decision.value,
            confidence=round(confidence, 4),
            issues=issues,
        )
        return report


def make_final_decision(
    results: Mapping[StepName, StepResult],
    auto_pass_threshold: float = 0.75,
) -> VerificationReport:
    """Module-level shortcut for DecisionPolicy(...).make_final_decision(results)."""
    return DecisionPolicy(auto_pass_threshold).make_final_decision(results)
