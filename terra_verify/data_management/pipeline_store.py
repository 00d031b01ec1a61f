"""Pipeline table: verification pipelines keyed by pipeline id.

Owned by the VerificationOrchestrator. Follows the same patterns as
SubmissionStore:
- O(1) lookup by pipeline_id
- Safe concurrent access with an asyncio lock
- Readers receive deep copies, never the live record
- Optional JSON persistence (write-through audit trail)
- Bounded: beyond max_terminal_pipelines, the oldest completed or failed
  pipelines are evicted; running and pending ones are never evicted

Usage:
    from terra_verify.data_management.pipeline_store import PipelineStore

    store = PipelineStore()
    await store.save_pipeline(pipeline)
    snapshot = await store.get_pipeline("pipeline_sub_1_1700000000000_ab12cd34")
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Optional


from terra_verify.data_management.schemas.verification_schema import (
    PipelineStatus,
    VerificationPipeline,
)
from terra_verify.utils.logging import get_structured_logger

_TERMINAL = (PipelineStatus.COMPLETED, PipelineStatus.FAILED)


class PipelineStore:
    """Storage for verification pipelines.

    Data structure:
    {
        pipeline_id: VerificationPipeline,
        ...
    }
    plus a submission_id -> [pipeline_id, ...] index in creation order.
    """

    def __init__(
        self,
        persistence_path: Optional[str] = None,
        max_terminal_pipelines: Optional[int] = None,
    ) -> None:
        """Initialize PipelineStore.

        Args:
            persistence_path: Optional path to JSON file for persistence.
                            If None, storage is memory-only.
            max_terminal_pipelines: Completed or failed pipelines to keep.
                            If None, nothing is evicted.
        """
        self._pipelines: dict[str, VerificationPipeline] = {}
        self._by_submission: dict[str, list[str]] = {}
        self._lock = asyncio.Lock()
        self._persistence_path = Path(persistence_path) if persistence_path else None
        self._max_terminal = max_terminal_pipelines
        # pipeline ids in the order they reached a terminal status
        self._terminal_order: dict[str, None] = {}
        self._logger = get_structured_logger("PipelineStore")

    async def save_pipeline(self, pipeline: VerificationPipeline) -> None:
        """Insert or replace a pipeline record.

        The store keeps its own copy, so later mutations of ``pipeline``
        are only visible after another save.

        Args:
            pipeline: Pipeline to store.
        """
        async with self._lock:
            pid = pipeline.pipeline_id
            if pid not in self._pipelines:
                self._by_submission.setdefault(pipeline.submission_id, []).append(pid)
            self._pipelines[pid] = pipeline.model_copy(deep=True)
            if pipeline.overall_status in _TERMINAL and pid not in self._terminal_order:
                self._terminal_order[pid] = None
                self._evict_terminal()

            self._logger.debug(
                "pipeline_saved",
                pipeline_id=pid,
                submission_id=pipeline.submission_id,
                status=pipeline.overall_status.value,
            )

            if self._persistence_path:
                self._save_to_file()

    async def get_pipeline(self, pipeline_id: str) -> Optional[VerificationPipeline]:
        """Snapshot of a pipeline by id.

        Args:
            pipeline_id: Pipeline identifier.

        Returns:
            Deep copy of the pipeline if found, None otherwise.
        """
        async with self._lock:
            pipeline = self._pipelines.get(pipeline_id)
            return pipeline.model_copy(deep=True) if pipeline else None

    async def get_for_submission(self, submission_id: str) -> list[VerificationPipeline]:
        """All pipelines for a submission, oldest first.

        Args:
            submission_id: Submission identifier.

        Returns:
            Deep copies of every pipeline created for the submission.
        """
        async with self._lock:
            return [
                self._pipelines[pid].model_copy(deep=True)
                for pid in self._by_submission.get(submission_id, [])
            ]

    async def get_by_status(self, status: PipelineStatus) -> list[VerificationPipeline]:
        async with self._lock:
            return [
                p.model_copy(deep=True)
                for p in self._pipelines.values()
                if p.overall_status == status
            ]

    async def get_stats(self) -> dict[str, Any]:
        """Pipeline counts by overall status."""
        async with self._lock:
            status_counts: dict[str, int] = {}
            for pipeline in self._pipelines.values():
                key = pipeline.overall_status.value
                status_counts[key] = status_counts.get(key, 0) + 1
            return {
                "total": len(self._pipelines),
                "status_counts": status_counts,
            }

    def _evict_terminal(self) -> None:
        """Drop the oldest terminal pipelines beyond the retention limit. Caller holds the lock."""
        if self._max_terminal is None:
            return
        excess = len(self._terminal_order) - self._max_terminal
        for pid in list(self._terminal_order)[:max(excess, 0)]:
            del self._terminal_order[pid]
            evicted = self._pipelines.pop(pid)
            siblings = self._by_submission.get(evicted.submission_id, [])
            if pid in siblings:
                siblings.remove(pid)
            if not siblings:
                self._by_submission.pop(evicted.submission_id, None)
            self._logger.debug("pipeline_evicted", pipeline_id=pid, submission_id=evicted.submission_id)

    def _save_to_file(self) -> None:
        """Save to JSON file (synchronous)."""
        if not self._persistence_path:
            return
        try:
            self._persistence_path.parent.mkdir(parents=True, exist_ok=True)
            data = {
                pid: pipeline.model_dump(mode="json", by_alias=True)
                for pid, pipeline in self._pipelines.items()
            }
            with open(self._persistence_path, "w") as f:
                json.dump(data, f, indent=2, default=str)
        except OSError as e:
            self._logger.error("persistence_failed", error=str(e))
