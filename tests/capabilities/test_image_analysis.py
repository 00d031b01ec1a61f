"""Tests for the image analysis capability.

Tests cover:
- Deterministic stub analyzer
- Remote analyzer request/response handling and retries (httpx.MockTransport)
- Fallback on primary failure or a hung endpoint
- Construction from settings
"""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from terra_verify.capabilities.image_analysis import (
    FallbackImageAnalyzer,
    HttpImageAnalyzer,
    ImageAnalysis,
    ImageAnalyzer,
    StubImageAnalyzer,
    build_image_analyzer,
)
from terra_verify.config.settings import Settings

LABELS = ["container", "reusable", "recycling", "compost"]


async def _analyze(analyzer: ImageAnalyzer, image_ref: str = "https://cdn.example.org/a.jpg"):
    return await analyzer.analyze_image(image_ref, "waste", "Zero Waste Lunch", LABELS, "my lunch")


# ── Stub ──────────────────────────────────────────────────────────────────


class TestStubImageAnalyzer:
    @pytest.mark.asyncio
    async def test_deterministic_per_image(self) -> None:
        analyzer = StubImageAnalyzer()
        first = await _analyze(analyzer)
        second = await _analyze(analyzer)
        assert first.confidence == second.confidence

    @pytest.mark.asyncio
    async def test_confidence_in_stub_range(self) -> None:
        analyzer = StubImageAnalyzer()
        for i in range(25):
            result = await _analyze(analyzer, f"https://cdn.example.org/{i}.jpg")
            assert 0.75 <= result.confidence < 0.95

    @pytest.mark.asyncio
    async def test_labels_are_expected_prefix_plus_markers(self) -> None:
        result = await _analyze(StubImageAnalyzer())
        assert result.labels == ["container", "reusable", "recycling", "authentic", "educational"]

    @pytest.mark.asyncio
    async def test_fixed_confidence(self) -> None:
        result = await _analyze(StubImageAnalyzer(fixed_confidence=0.42))
        assert result.confidence == 0.42


class TestImageAnalysisModel:
    def test_confidence_is_clamped(self) -> None:
        assert ImageAnalysis(confidence=1.3).confidence == 1.0
        assert ImageAnalysis(confidence=-0.2).confidence == 0.0


# ── Remote ────────────────────────────────────────────────────────────────


class TestHttpImageAnalyzer:
    @pytest.mark.asyncio
    async def test_posts_quest_context_and_reads_nested_result(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"verification": {"confidence": 0.88, "labels": ["container", "lunch"]}},
            )

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        analyzer = HttpImageAnalyzer("https://vision.example.org/verify", client=client)

        result = await _analyze(analyzer)
        await analyzer.aclose()

        assert result.confidence == 0.88
        assert result.labels == ["container", "lunch"]
        assert seen["body"] == {
            "imageUrl": "https://cdn.example.org/a.jpg",
            "questCategory": "waste",
            "questTitle": "Zero Waste Lunch",
            "expectedLabels": LABELS,
            "userCaption": "my lunch",
        }

    @pytest.mark.asyncio
    async def test_reads_flat_result(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"confidence": 0.6})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        result = await _analyze(HttpImageAnalyzer("https://vision.example.org", client=client))
        assert result.confidence == 0.6
        assert result.labels == []

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400, json={"error": "bad image"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        analyzer = HttpImageAnalyzer("https://vision.example.org", max_retries=3, client=client)

        with pytest.raises(httpx.HTTPStatusError):
            await _analyze(analyzer)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_is_retried(self) -> None:
        responses = iter(
            [httpx.Response(503), httpx.Response(200, json={"confidence": 0.8, "labels": []})]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            return next(responses)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        analyzer = HttpImageAnalyzer("https://vision.example.org", max_retries=2, client=client)

        result = await _analyze(analyzer)
        assert result.confidence == 0.8


# ── Fallback ──────────────────────────────────────────────────────────────


class TestFallbackImageAnalyzer:
    @pytest.mark.asyncio
    async def test_primary_result_used_when_available(self) -> None:
        analyzer = FallbackImageAnalyzer(
            StubImageAnalyzer(fixed_confidence=0.9), StubImageAnalyzer(fixed_confidence=0.1)
        )
        result = await _analyze(analyzer)
        assert result.confidence == 0.9

    @pytest.mark.asyncio
    async def test_fallback_on_primary_failure(self) -> None:
        primary = AsyncMock(spec=ImageAnalyzer)
        primary.analyze_image.side_effect = ConnectionError("vision endpoint unreachable")
        analyzer = FallbackImageAnalyzer(primary, StubImageAnalyzer(fixed_confidence=0.8))
        result = await _analyze(analyzer)
        primary.analyze_image.assert_awaited_once()
        assert result.confidence == 0.8

    @pytest.mark.asyncio
    async def test_hung_endpoint_answered_by_fallback(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(30)
            return httpx.Response(200, json={"confidence": 0.99})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        analyzer = FallbackImageAnalyzer(
            HttpImageAnalyzer("https://vision.example.org", client=client),
            StubImageAnalyzer(fixed_confidence=0.8),
            primary_timeout=0.05,
        )

        result = await _analyze(analyzer)
        await analyzer.aclose()
        assert result.confidence == 0.8


class TestBuildImageAnalyzer:
    def test_stub_without_endpoint(self) -> None:
        analyzer = build_image_analyzer(Settings(image_analysis_url=None))
        assert isinstance(analyzer, StubImageAnalyzer)

    def test_remote_with_stub_fallback(self) -> None:
        analyzer = build_image_analyzer(
            Settings(image_analysis_url="https://vision.example.org", image_analysis_max_retries=5)
        )
        assert isinstance(analyzer, FallbackImageAnalyzer)
        assert isinstance(analyzer.primary, HttpImageAnalyzer)
        assert analyzer.primary.max_retries == 5
        assert isinstance(analyzer.fallback, StubImageAnalyzer)

    def test_remote_deadline_sits_inside_step_timeout(self) -> None:
        analyzer = build_image_analyzer(
            Settings(image_analysis_url="https://vision.example.org", image_analysis_timeout_seconds=0.5)
        )
        assert analyzer.primary_timeout == pytest.approx(0.4)
        assert analyzer.primary.timeout == pytest.approx(0.4)

    def test_request_timeout_caps_each_attempt(self) -> None:
        analyzer = build_image_analyzer(
            Settings(
                image_analysis_url="https://vision.example.org",
                image_analysis_timeout_seconds=30,
                image_analysis_request_timeout_seconds=8,
            )
        )
        assert analyzer.primary_timeout == pytest.approx(24)
        assert analyzer.primary.timeout == 8
