"""Data management package for quests, submissions and verification pipelines.

Storage adapters:
- QuestStore: read-only quest registry for intake
- SubmissionStore: submissions with user/status lookups
- PipelineStore: the orchestrator's pipeline table
"""

from terra_verify.data_management.pipeline_store import PipelineStore
from terra_verify.data_management.quest_store import QuestNotFoundError, QuestStore
from terra_verify.data_management.submission_store import (
    SubmissionNotFoundError,
    SubmissionStore,
)

__all__ = [
    "PipelineStore",
    "QuestNotFoundError",
    "QuestStore",
    "SubmissionNotFoundError",
    "SubmissionStore",
]
