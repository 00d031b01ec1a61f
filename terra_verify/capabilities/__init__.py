"""Injected capabilities used by the verification steps.

- image_analysis: ImageAnalyzer contract and implementations
- moderation: ContentModerator contract and keyword moderator
- duplicates: perceptual hash index of prior submissions
"""

from terra_verify.capabilities.duplicates import DuplicateMatch, PerceptualHashIndex
from terra_verify.capabilities.image_analysis import (
    FallbackImageAnalyzer,
    HttpImageAnalyzer,
    ImageAnalysis,
    ImageAnalyzer,
    StubImageAnalyzer,
    build_image_analyzer,
)
from terra_verify.capabilities.moderation import (
    ContentModerator,
    KeywordContentModerator,
    ModerationVerdict,
)

__all__ = [
    "ContentModerator",
    "DuplicateMatch",
    "FallbackImageAnalyzer",
    "HttpImageAnalyzer",
    "ImageAnalysis",
    "ImageAnalyzer",
    "KeywordContentModerator",
    "ModerationVerdict",
    "PerceptualHashIndex",
    "StubImageAnalyzer",
    "build_image_analyzer",
]
