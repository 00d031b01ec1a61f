"""Perceptual hash index for duplicate submission detection.

Compares a submission's perceptual hash (pHash, hex encoded) against every
previously registered submission. Similarity is the fraction of matching
bits: 1.0 for identical hashes, around 0.5 for unrelated images.

Registration happens after the comparison so a submission never matches
itself, and re-verifying the same submission id replaces its entry.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from terra_verify.config.logging import get_logger

logger = get_logger("capabilities.duplicates")


@dataclass
class DuplicateMatch:
    """Best similarity found and every submission above the threshold."""

    similarity_score: float = 0.0
    matched_submissions: List[str] = field(default_factory=list)

    @property
    def is_duplicate(self) -> bool:
        return bool(self.matched_submissions)


def hash_similarity(hash_a: str, hash_b: str) -> float:
    """Fraction of equal bits between two equal-length hex hashes.

    Raises:
        ValueError: If either hash is not valid hex.
    """
    if len(hash_a) != len(hash_b) or not hash_a:
        return 0.0
    bits = len(hash_a) * 4
    distance = bin(int(hash_a, 16) ^ int(hash_b, 16)).count("1")
    return 1.0 - distance / bits


class PerceptualHashIndex:
    """In-memory pHash index of prior submissions.

    Operations are synchronous, so a check-then-register sequence cannot
    interleave with another pipeline on the same event loop.
    """

    def __init__(self, duplicate_threshold: float = 0.9) -> None:
        self.duplicate_threshold = duplicate_threshold
        self._hashes: Dict[str, str] = {}  # submission_id -> normalized hash

    def __len__(self) -> int:
        return len(self._hashes)

    @staticmethod
    def _normalize(image_hash: str) -> str:
        normalized = image_hash.strip().lower()
        if normalized.startswith("0x"):
            normalized = normalized[2:]
        int(normalized, 16)  # validates hex
        return normalized

    def find_similar(self, submission_id: str, image_hash: str) -> DuplicateMatch:
        """Compare against every other registered submission."""
        normalized = self._normalize(image_hash)
        match = DuplicateMatch()

        for other_id, other_hash in self._hashes.items():
            if other_id == submission_id:
                continue
            similarity = hash_similarity(normalized, other_hash)
            match.similarity_score = max(match.similarity_score, similarity)
            if similarity > self.duplicate_threshold:
                match.matched_submissions.append(other_id)

        if match.is_duplicate:
            logger.debug(
                f"Duplicate candidates for {submission_id}: {match.matched_submissions} "
                f"(best similarity {match.similarity_score:.3f})"
            )
        return match

    def register(self, submission_id: str, image_hash: str) -> None:
        self._hashes[submission_id] = self._normalize(image_hash)

    def check_and_register(self, submission_id: str, image_hash: Optional[str]) -> DuplicateMatch:
        """Compare then register. No hash means nothing to compare."""
        if not image_hash:
            return DuplicateMatch()
        match = self.find_similar(submission_id, image_hash)
        self.register(submission_id, image_hash)
        return match
