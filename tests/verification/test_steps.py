"""Tests for the individual step evaluators."""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from terra_verify.capabilities.duplicates import PerceptualHashIndex
from terra_verify.capabilities.image_analysis import (
    ImageAnalyzer,
    StubImageAnalyzer,
    build_image_analyzer,
)
from terra_verify.capabilities.moderation import KeywordContentModerator
from terra_verify.config.settings import Settings
from terra_verify.data_management.schemas import (
    STEP_ORDER,
    Coordinate,
    Decision,
    ExifMetadata,
    Quest,
    QuestCategory,
    StepName,
    Submission,
)
from terra_verify.verification.decision import DecisionPolicy
from terra_verify.verification.steps import (
    ContentModerationStep,
    DuplicateDetectionStep,
    ExifAnalysisStep,
    FileValidationStep,
    FinalDecisionStep,
    GpsVerificationStep,
    ImageAnalysisStep,
    build_default_evaluators,
)
from terra_verify.utils.geo import distance_meters

NOW = datetime(2026, 4, 22, 12, 0, tzinfo=timezone.utc)
SCHOOL = Coordinate(lat=40.7128, lng=-74.006)


def _submission(**overrides) -> Submission:
    fields = dict(
        id="sub_1",
        quest_id="q1",
        user_id="u1",
        image_url="https://cdn.example.org/proof.jpg",
        caption="Planted a native sapling",
        file_type="image/jpeg",
        file_size_bytes=1_200_000,
    )
    fields.update(overrides)
    return Submission(**fields)


@pytest.fixture
def quest() -> Quest:
    return Quest(
        id="q1",
        title="Native Plant Guardian",
        category=QuestCategory.BIODIVERSITY,
        points=25,
        location=SCHOOL,
        location_radius_m=1000,
    )


class _SlowAnalyzer(ImageAnalyzer):
    async def analyze_image(self, image_ref, quest_category, quest_title, expected_labels, caption):
        await asyncio.sleep(5)


# ── File Validation ───────────────────────────────────────────────────────


class TestFileValidationStep:
    @pytest.fixture
    def step(self) -> FileValidationStep:
        return FileValidationStep(5, ["image/jpeg", "image/png", "image/webp"])

    @pytest.mark.asyncio
    async def test_valid_upload(self, step: FileValidationStep, quest: Quest) -> None:
        result = await step.evaluate(_submission(), quest, {})
        assert result.valid is True
        assert result.issues == []
        assert result.file_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_too_large(self, step: FileValidationStep, quest: Quest) -> None:
        result = await step.evaluate(_submission(file_size_bytes=6 * 1024 * 1024), quest, {})
        assert result.valid is False
        assert result.issues == ["file_too_large"]

    @pytest.mark.asyncio
    async def test_exact_limit_is_accepted(self, step: FileValidationStep, quest: Quest) -> None:
        result = await step.evaluate(_submission(file_size_bytes=5 * 1024 * 1024), quest, {})
        assert result.issues == []

    @pytest.mark.asyncio
    async def test_disallowed_type(self, step: FileValidationStep, quest: Quest) -> None:
        result = await step.evaluate(_submission(file_type="image/gif"), quest, {})
        assert result.issues == ["invalid_file_type"]

    @pytest.mark.asyncio
    async def test_type_guessed_from_url(self, step: FileValidationStep, quest: Quest) -> None:
        submission = _submission(file_type=None, image_url="https://cdn.example.org/a.webp?sig=1")
        result = await step.evaluate(submission, quest, {})
        assert result.file_type == "image/webp"
        assert result.valid is True

    @pytest.mark.asyncio
    async def test_unknown_type_is_invalid(self, step: FileValidationStep, quest: Quest) -> None:
        submission = _submission(file_type=None, image_url="https://cdn.example.org/blob")
        result = await step.evaluate(submission, quest, {})
        assert result.issues == ["invalid_file_type"]

    @pytest.mark.asyncio
    async def test_type_read_from_data_url(self, step: FileValidationStep, quest: Quest) -> None:
        submission = _submission(
            file_type=None, file_size_bytes=None, image_url="data:image/jpeg;base64,/9j/4AAQSkZJRg=="
        )
        result = await step.evaluate(submission, quest, {})
        assert result.file_type == "image/jpeg"
        assert result.valid is True
        assert result.issues == []

    @pytest.mark.asyncio
    async def test_data_url_with_disallowed_type(self, step: FileValidationStep, quest: Quest) -> None:
        submission = _submission(file_type=None, image_url="data:image/gif;base64,R0lGODlhAQABAAAAACw=")
        result = await step.evaluate(submission, quest, {})
        assert result.issues == ["invalid_file_type"]

    @pytest.mark.asyncio
    async def test_nothing_uploaded(self, step: FileValidationStep, quest: Quest) -> None:
        submission = _submission(image_url=None, file_type=None, file_size_bytes=None)
        result = await step.evaluate(submission, quest, {})
        assert result.valid is True
        assert result.issues == []


# ── EXIF Analysis ─────────────────────────────────────────────────────────


class TestExifAnalysisStep:
    @pytest.fixture
    def step(self) -> ExifAnalysisStep:
        return ExifAnalysisStep(max_image_age_days=7, clock=lambda: NOW)

    @pytest.mark.asyncio
    async def test_recent_exif(self, step: ExifAnalysisStep, quest: Quest) -> None:
        exif = ExifMetadata(captured_at=NOW - timedelta(hours=2), camera_model="Pixel 8")
        result = await step.evaluate(_submission(exif=exif), quest, {})
        assert result.has_exif is True
        assert result.camera == "Pixel 8"
        assert result.issues == []

    @pytest.mark.asyncio
    async def test_old_capture_time(self, step: ExifAnalysisStep, quest: Quest) -> None:
        exif = ExifMetadata(captured_at=NOW - timedelta(days=10))
        result = await step.evaluate(_submission(exif=exif), quest, {})
        assert result.issues == ["image_too_old"]

    @pytest.mark.asyncio
    async def test_naive_timestamp_treated_as_utc(self, step: ExifAnalysisStep, quest: Quest) -> None:
        exif = ExifMetadata(captured_at=datetime(2026, 4, 22, 10, 0))
        result = await step.evaluate(_submission(exif=exif), quest, {})
        assert result.timestamp.tzinfo is not None
        assert result.issues == []

    @pytest.mark.asyncio
    async def test_missing_exif(self, step: ExifAnalysisStep, quest: Quest) -> None:
        result = await step.evaluate(_submission(), quest, {})
        assert result.has_exif is False
        assert result.issues == []

    @pytest.mark.asyncio
    async def test_location_falls_back_to_gps_coords(self, step: ExifAnalysisStep, quest: Quest) -> None:
        result = await step.evaluate(_submission(gps_coords=SCHOOL), quest, {})
        assert result.location == SCHOOL


# ── GPS Verification ──────────────────────────────────────────────────────


class TestGpsVerificationStep:
    @pytest.fixture
    def step(self) -> GpsVerificationStep:
        return GpsVerificationStep(default_location=SCHOOL)

    @pytest.mark.asyncio
    async def test_no_coordinates(self, step: GpsVerificationStep, quest: Quest) -> None:
        result = await step.evaluate(_submission(), quest, {})
        assert result.has_gps is False
        assert result.within_radius is False
        assert result.issues == ["no_gps_data"]

    @pytest.mark.asyncio
    async def test_inside_radius(self, step: GpsVerificationStep, quest: Quest) -> None:
        nearby = Coordinate(lat=40.7150, lng=-74.006)
        result = await step.evaluate(_submission(gps_coords=nearby), quest, {})
        assert result.within_radius is True
        assert result.distance == pytest.approx(244.6, abs=1.0)
        assert result.issues == []

    @pytest.mark.asyncio
    async def test_outside_radius(self, step: GpsVerificationStep, quest: Quest) -> None:
        far = Coordinate(lat=40.7263, lng=-74.006)
        result = await step.evaluate(_submission(gps_coords=far), quest, {})
        assert result.within_radius is False
        assert result.distance > 1000
        assert result.issues == ["outside_allowed_radius"]

    @pytest.mark.asyncio
    async def test_no_radius_means_within(self, step: GpsVerificationStep) -> None:
        quest = Quest(id="q2", category=QuestCategory.ENERGY, points=10)
        far = Coordinate(lat=51.5, lng=-0.12)
        result = await step.evaluate(_submission(quest_id="q2", gps_coords=far), quest, {})
        assert result.within_radius is True
        assert result.issues == []

    @pytest.mark.asyncio
    async def test_radius_without_location_uses_default_site(self, step: GpsVerificationStep) -> None:
        quest = Quest(id="q2", category=QuestCategory.WATER, points=10, location_radius_m=500)
        result = await step.evaluate(_submission(quest_id="q2", gps_coords=SCHOOL), quest, {})
        assert result.distance == 0.0
        assert result.within_radius is True

    @pytest.mark.asyncio
    async def test_exactly_on_radius_is_within(self, step: GpsVerificationStep) -> None:
        edge = Coordinate(lat=40.7173, lng=-74.0021)
        quest = Quest(
            id="q2",
            category=QuestCategory.BIODIVERSITY,
            points=10,
            location=SCHOOL,
            location_radius_m=distance_meters(edge, SCHOOL),
        )
        result = await step.evaluate(_submission(quest_id="q2", gps_coords=edge), quest, {})
        assert result.distance == quest.location_radius_m
        assert result.within_radius is True
        assert result.issues == []


# ── Duplicate Detection ───────────────────────────────────────────────────


class TestDuplicateDetectionStep:
    @pytest.mark.asyncio
    async def test_second_identical_hash_is_flagged(self, quest: Quest) -> None:
        step = DuplicateDetectionStep(PerceptualHashIndex(0.9))
        first = await step.evaluate(_submission(id="sub_1", image_hash="a1b2c3d4e5f60718"), quest, {})
        second = await step.evaluate(_submission(id="sub_2", image_hash="a1b2c3d4e5f60718"), quest, {})

        assert first.is_duplicate is False
        assert second.is_duplicate is True
        assert second.similarity_score == 1.0
        assert second.matched_submissions == ["sub_1"]
        assert second.issues == ["potential_duplicate"]

    @pytest.mark.asyncio
    async def test_no_hash(self, quest: Quest) -> None:
        result = await DuplicateDetectionStep(PerceptualHashIndex()).evaluate(_submission(), quest, {})
        assert result.is_duplicate is False
        assert result.issues == []


# ── AI Image Analysis ─────────────────────────────────────────────────────


class TestImageAnalysisStep:
    @pytest.mark.asyncio
    async def test_confident_analysis(self, quest: Quest) -> None:
        step = ImageAnalysisStep(StubImageAnalyzer(fixed_confidence=0.9))
        result = await step.evaluate(_submission(), quest, {})
        assert result.confidence == 0.9
        assert result.labels[:3] == ["plant", "sapling", "garden"]
        assert result.issues == []

    @pytest.mark.asyncio
    async def test_low_confidence(self, quest: Quest) -> None:
        step = ImageAnalysisStep(StubImageAnalyzer(fixed_confidence=0.3), review_threshold=0.5)
        result = await step.evaluate(_submission(), quest, {})
        assert result.issues == ["low_confidence"]

    @pytest.mark.asyncio
    async def test_no_image(self, quest: Quest) -> None:
        step = ImageAnalysisStep(StubImageAnalyzer())
        result = await step.evaluate(_submission(image_url=None), quest, {})
        assert result.confidence == 0.0
        assert result.appropriate is False
        assert result.issues == ["no_image_provided"]

    @pytest.mark.asyncio
    async def test_timeout_raises(self, quest: Quest) -> None:
        step = ImageAnalysisStep(_SlowAnalyzer(), timeout_seconds=0.05)
        with pytest.raises(TimeoutError, match="timed out"):
            await step.evaluate(_submission(), quest, {})

    @pytest.mark.asyncio
    async def test_hung_endpoint_falls_back_within_step_timeout(self, quest: Quest) -> None:
        async def hang(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(30)
            return httpx.Response(200, json={"confidence": 0.99})

        settings = Settings(
            image_analysis_url="https://vision.example.org/verify",
            image_analysis_timeout_seconds=0.5,
        )
        analyzer = build_image_analyzer(settings)
        analyzer.primary._client = httpx.AsyncClient(transport=httpx.MockTransport(hang))
        step = ImageAnalysisStep(analyzer, timeout_seconds=settings.image_analysis_timeout_seconds)

        result = await step.evaluate(_submission(), quest, {})
        await analyzer.aclose()
        assert 0.75 <= result.confidence < 0.95
        assert result.issues == []


# ── Content Moderation / Final Decision ───────────────────────────────────


class TestContentModerationStep:
    @pytest.mark.asyncio
    async def test_flagged_caption(self, quest: Quest) -> None:
        step = ContentModerationStep(KeywordContentModerator(["violence"]))
        result = await step.evaluate(_submission(caption="violence"), quest, {})
        assert result.appropriate is False
        assert result.issues == ["inappropriate_content"]
        assert "term:violence" in result.flags

    @pytest.mark.asyncio
    async def test_clean_caption(self, quest: Quest) -> None:
        step = ContentModerationStep(KeywordContentModerator(["violence"]))
        result = await step.evaluate(_submission(), quest, {})
        assert result.appropriate is True
        assert result.issues == []


class TestFinalDecisionStep:
    @pytest.mark.asyncio
    async def test_aggregates_previous_results(self, quest: Quest) -> None:
        image = await ImageAnalysisStep(StubImageAnalyzer(fixed_confidence=0.6)).evaluate(
            _submission(), quest, {}
        )
        step = FinalDecisionStep(DecisionPolicy(0.75))
        report = await step.evaluate(_submission(), quest, {StepName.IMAGE_ANALYSIS: image})
        assert report.confidence == 0.6
        assert report.decision == Decision.REVIEW


class TestBuildDefaultEvaluators:
    def test_pipeline_order(self) -> None:
        evaluators = build_default_evaluators(
            Settings(),
            StubImageAnalyzer(),
            KeywordContentModerator([]),
            PerceptualHashIndex(),
        )
        assert tuple(e.name for e in evaluators) == STEP_ORDER

    def test_settings_flow_into_evaluators(self) -> None:
        evaluators = build_default_evaluators(
            Settings(max_file_size_mb=2, image_analysis_timeout_seconds=12),
            StubImageAnalyzer(),
            KeywordContentModerator([]),
            PerceptualHashIndex(),
        )
        assert evaluators[0].max_file_size_bytes == 2 * 1024 * 1024
        assert evaluators[4].timeout_seconds == 12
