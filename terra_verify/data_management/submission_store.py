"""Submission storage with user and status lookups.

Features:
- In-memory storage with optional JSON persistence
- O(1) lookup by submission id
- Filtering by user and status (newest first)
- Safe concurrent access with an asyncio lock

For production this would be replaced with a database backend exposing
the same coroutine interface.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from terra_verify.data_management.schemas.submission_schema import (
    Submission,
    SubmissionStatus,
)
from terra_verify.utils.logging import get_structured_logger


class SubmissionNotFoundError(LookupError):
    """Raised when a submission id is unknown."""


class SubmissionStore:
    """Storage adapter for submissions.

    Data structure:
    {
        submission_id: Submission,
        ...
    }
    """

    def __init__(self, persistence_path: Optional[str] = None) -> None:
        """Initialize SubmissionStore.

        Args:
            persistence_path: Optional path to JSON file for persistence.
                            Existing records are loaded on startup.
        """
        self._submissions: dict[str, Submission] = {}
        self._lock = asyncio.Lock()
        self._persistence_path = Path(persistence_path) if persistence_path else None
        self._logger = get_structured_logger("SubmissionStore")

        if self._persistence_path and self._persistence_path.exists():
            self._load_from_file()

    async def save(self, submission: Submission) -> Submission:
        """Insert or replace a submission.

        Args:
            submission: Submission to store.

        Returns:
            The stored submission.
        """
        async with self._lock:
            self._submissions[submission.id] = submission.model_copy(deep=True)

            self._logger.debug(
                "submission_saved",
                submission_id=submission.id,
                status=submission.status.value,
            )

            if self._persistence_path:
                self._save_to_file()
            return submission

    async def get(self, submission_id: str) -> Optional[Submission]:
        async with self._lock:
            submission = self._submissions.get(submission_id)
            return submission.model_copy(deep=True) if submission else None

    async def require(self, submission_id: str) -> Submission:
        """Get a submission or raise SubmissionNotFoundError."""
        submission = await self.get(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(f"Submission not found: {submission_id}")
        return submission

    async def update(self, submission_id: str, **changes: Any) -> Submission:
        """Apply field changes and re-validate the whole record.

        Re-validation keeps the points invariant intact regardless of the
        order in which status and points change.

        Args:
            submission_id: Submission to update.
            **changes: Field values to replace.

        Returns:
            The updated submission.

        Raises:
            SubmissionNotFoundError: Unknown submission id.
            ValueError: The resulting record is invalid.
        """
        async with self._lock:
            current = self._submissions.get(submission_id)
            if current is None:
                raise SubmissionNotFoundError(f"Submission not found: {submission_id}")

            data = current.model_dump()
            data.update(changes)
            updated = Submission.model_validate(data)
            self._submissions[submission_id] = updated

            self._logger.info(
                "submission_updated",
                submission_id=submission_id,
                status=updated.status.value,
                points_awarded=updated.points_awarded,
            )

            if self._persistence_path:
                self._save_to_file()
            return updated.model_copy(deep=True)

    async def list_submissions(
        self,
        user_id: Optional[str] = None,
        status: Optional[SubmissionStatus] = None,
    ) -> list[Submission]:
        """Submissions filtered by user and/or status, newest first."""
        async with self._lock:
            matches = [
                s
                for s in self._submissions.values()
                if (user_id is None or s.user_id == user_id)
                and (status is None or s.status == status)
            ]
            matches.sort(key=lambda s: s.submitted_at, reverse=True)
            return [s.model_copy(deep=True) for s in matches]

    async def get_pending_review(self) -> list[Submission]:
        return await self.list_submissions(status=SubmissionStatus.REVIEW)

    def _save_to_file(self) -> None:
        """Save to JSON file (synchronous)."""
        if not self._persistence_path:
            return
        try:
            self._persistence_path.parent.mkdir(parents=True, exist_ok=True)
            data = {
                sid: submission.model_dump(mode="json")
                for sid, submission in self._submissions.items()
            }
            with open(self._persistence_path, "w") as f:
                json.dump(data, f, indent=2, default=str)
        except OSError as e:
            self._logger.error("persistence_failed", error=str(e))

    def _load_from_file(self) -> None:
        """Load submissions from JSON file (synchronous)."""
        try:
            with open(self._persistence_path) as f:
                data = json.load(f)
            for sid, record in data.items():
                self._submissions[sid] = Submission.model_validate(record)
            self._logger.info("submissions_loaded", count=len(self._submissions))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            self._logger.error("load_failed", error=str(e))
