"""Content moderation capability consumed by the Content Moderation step."""

import re
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from terra_verify.config.logging import get_logger

logger = get_logger("capabilities.moderation")


class ModerationVerdict(BaseModel):
    appropriate: bool
    flags: list[str] = Field(default_factory=list)


class ContentModerator(ABC):
    """Contract for judging whether a submission's image/caption is appropriate."""

    @abstractmethod
    async def moderate(self, image_ref: Optional[str], caption: str) -> ModerationVerdict:
        """Return a verdict; ``flags`` names what was found."""


class KeywordContentModerator(ContentModerator):
    """Flags captions containing any blocked term (whole word, case-insensitive).

    Images are not inspected; an image moderation model can be plugged in
    by implementing ContentModerator.
    """

    def __init__(self, blocked_terms: Iterable[str]) -> None:
        self.blocked_terms = sorted({t.strip().lower() for t in blocked_terms if t.strip()})
        self._pattern = (
            re.compile(r"\b(" + "|".join(map(re.escape, self.blocked_terms)) + r")\b", re.IGNORECASE)
            if self.blocked_terms
            else None
        )

    async def moderate(self, image_ref: Optional[str], caption: str) -> ModerationVerdict:
        if self._pattern is None or not caption:
            return ModerationVerdict(appropriate=True)

        hits = sorted({m.group(1).lower() for m in self._pattern.finditer(caption)})
        if hits:
            logger.info(f"Caption flagged by keyword moderator: {hits}")
            return ModerationVerdict(
                appropriate=False,
                flags=["inappropriate_content"] + [f"term:{term}" for term in hits],
            )
        return ModerationVerdict(appropriate=True)
