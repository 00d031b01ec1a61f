"""Image analysis capability consumed by the AI Image Analysis step.

The verification pipeline depends only on the ImageAnalyzer contract:

    await analyzer.analyze_image(image_ref, quest_category, quest_title,
                                 expected_labels, caption) -> ImageAnalysis

Implementations:
- StubImageAnalyzer: deterministic stand-in for demos and tests
- HttpImageAnalyzer: remote vision endpoint over httpx with tenacity retries
- FallbackImageAnalyzer: substitutes a fallback result when the primary fails

Fallback lives here, at the capability boundary, so the pipeline keeps one
error rule: a step that raises fails the pipeline.

Usage:
    from terra_verify.capabilities.image_analysis import build_image_analyzer

    analyzer = build_image_analyzer(settings)
    analysis = await analyzer.analyze_image(url, "waste", "Zero Waste Lunch", labels, caption)
"""

import asyncio
import hashlib
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import httpx
from pydantic import BaseModel, Field, field_validator
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from terra_verify.config.logging import get_logger
from terra_verify.config.settings import Settings

logger = get_logger("capabilities.image_analysis")

# Share of the step timeout the remote analyzer may spend before the fallback answers
PRIMARY_DEADLINE_FRACTION = 0.8


class ImageAnalysis(BaseModel):
    """Raw output of an image analysis call."""

    confidence: float = Field(..., ge=0.0, le=1.0)
    labels: list[str] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, value):
        # Remote models occasionally report slightly out-of-range scores
        if isinstance(value, (int, float)):
            return min(1.0, max(0.0, float(value)))
        return value


class ImageAnalyzer(ABC):
    """Contract for anything that scores a proof image against a quest."""

    @abstractmethod
    async def analyze_image(
        self,
        image_ref: str,
        quest_category: str,
        quest_title: str,
        expected_labels: Sequence[str],
        caption: str,
    ) -> ImageAnalysis:
        """Score an image.

        Args:
            image_ref: URL or storage key of the image.
            quest_category: Quest category value.
            quest_title: Quest title, for model context.
            expected_labels: Labels a matching image should show.
            caption: The student's caption.

        Returns:
            ImageAnalysis with confidence in [0, 1] and detected labels.
        """

    async def aclose(self) -> None:
        """Release any held resources."""


class StubImageAnalyzer(ImageAnalyzer):
    """Deterministic stand-in for the vision model.

    Confidence is derived from a stable hash of the image reference and
    lands in [0.75, 0.95). Labels are the first three expected labels plus
    "authentic" and "educational".
    """

    def __init__(self, fixed_confidence: Optional[float] = None) -> None:
        self.fixed_confidence = fixed_confidence

    async def analyze_image(
        self,
        image_ref: str,
        quest_category: str,
        quest_title: str,
        expected_labels: Sequence[str],
        caption: str,
    ) -> ImageAnalysis:
        if self.fixed_confidence is not None:
            confidence = self.fixed_confidence
        else:
            digest = hashlib.sha256(image_ref.encode("utf-8")).digest()
            fraction = int.from_bytes(digest[:8], "big") / 2**64
            confidence = 0.75 + fraction * 0.2

        labels = list(expected_labels)[:3] + ["authentic", "educational"]
        return ImageAnalysis(confidence=confidence, labels=labels)


class _RetryableStatus(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"Vision endpoint returned HTTP {status_code}")
        self.status_code = status_code


class HttpImageAnalyzer(ImageAnalyzer):
    """Client for a remote vision endpoint.

    POSTs {imageUrl, questCategory, questTitle, expectedLabels, userCaption}
    and reads {confidence, labels} from the JSON response (optionally nested
    under "verification"). Transport errors and 5xx responses are retried
    with exponential backoff.
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = client
        self.logger = logger.bind(endpoint=endpoint)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": "terra-verify/0.1"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def analyze_image(
        self,
        image_ref: str,
        quest_category: str,
        quest_title: str,
        expected_labels: Sequence[str],
        caption: str,
    ) -> ImageAnalysis:
        payload = {
            "imageUrl": image_ref,
            "questCategory": quest_category,
            "questTitle": quest_title,
            "expectedLabels": list(expected_labels),
            "userCaption": caption,
        }
        client = await self._get_client()

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
            retry=retry_if_exception_type((httpx.TransportError, _RetryableStatus)),
            reraise=True,
        ):
            with attempt:
                response = await client.post(self.endpoint, json=payload)
                if response.status_code >= 500:
                    raise _RetryableStatus(response.status_code)
                response.raise_for_status()
                body = response.json()

        data = body.get("verification", body)
        self.logger.debug(f"Vision endpoint scored {image_ref}: {data.get('confidence')}")
        return ImageAnalysis(
            confidence=data["confidence"],
            labels=data.get("labels", []),
        )


class FallbackImageAnalyzer(ImageAnalyzer):
    """Use ``primary``; on any error, log and answer with ``fallback``.

    With ``primary_timeout`` set, a primary call still running after that many
    seconds is cancelled and also answered by the fallback.
    """

    def __init__(
        self,
        primary: ImageAnalyzer,
        fallback: ImageAnalyzer,
        primary_timeout: Optional[float] = None,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.primary_timeout = primary_timeout

    async def analyze_image(
        self,
        image_ref: str,
        quest_category: str,
        quest_title: str,
        expected_labels: Sequence[str],
        caption: str,
    ) -> ImageAnalysis:
        try:
            return await asyncio.wait_for(
                self.primary.analyze_image(
                    image_ref, quest_category, quest_title, expected_labels, caption
                ),
                timeout=self.primary_timeout,
            )
        except Exception as e:
            reason = str(e) or type(e).__name__
            logger.warning(
                f"Image analysis failed, falling back to {type(self.fallback).__name__}: {reason}"
            )
            return await self.fallback.analyze_image(
                image_ref, quest_category, quest_title, expected_labels, caption
            )

    async def aclose(self) -> None:
        await self.primary.aclose()
        await self.fallback.aclose()


def build_image_analyzer(settings: Settings) -> ImageAnalyzer:
    """Remote analyzer with stub fallback when an endpoint is configured, else the stub.

    The remote analyzer gets a deadline inside the step timeout, so a hung
    endpoint is answered by the stub instead of timing out the step.
    """
    if not settings.image_analysis_url:
        logger.info("No image analysis endpoint configured, using stub analyzer")
        return StubImageAnalyzer()

    deadline = settings.image_analysis_timeout_seconds * PRIMARY_DEADLINE_FRACTION
    return FallbackImageAnalyzer(
        primary=HttpImageAnalyzer(
            endpoint=settings.image_analysis_url,
            timeout=min(settings.image_analysis_request_timeout_seconds, deadline),
            max_retries=settings.image_analysis_max_retries,
        ),
        fallback=StubImageAnalyzer(),
        primary_timeout=deadline,
    )
