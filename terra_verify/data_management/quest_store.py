"""Read-only quest registry used by intake to resolve quest ids.

The quest catalog itself lives elsewhere; this registry only needs to hand
verification a resolved Quest. A deployment seeds it from a JSON file holding
a list of quests in their camelCase wire form (TERRA_QUESTS_PATH or
``terra-verify serve --quests``).
"""

import asyncio
from pathlib import Path
from typing import Iterable, Optional, Union

from pydantic import TypeAdapter

from terra_verify.data_management.schemas.quest_schema import Quest
from terra_verify.utils.logging import get_structured_logger

_quest_list = TypeAdapter(list[Quest])


class QuestNotFoundError(LookupError):
    """Raised when a quest id cannot be resolved."""


def load_quests(path: Union[str, Path]) -> list[Quest]:
    """Read a quest catalog file.

    Raises:
        OSError: If the file cannot be read.
        pydantic.ValidationError: If the content is not a list of quests.
    """
    quests = _quest_list.validate_json(Path(path).read_bytes())
    get_structured_logger("QuestStore").info("quests_loaded", path=str(path), count=len(quests))
    return quests


class QuestStore:
    """In-memory quest registry keyed by quest id."""

    def __init__(self, quests: Optional[Iterable[Quest]] = None) -> None:
        self._quests: dict[str, Quest] = {q.id: q for q in quests or ()}
        self._lock = asyncio.Lock()
        self._logger = get_structured_logger("QuestStore")

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "QuestStore":
        return cls(load_quests(path))

    async def publish(self, quest: Quest) -> None:
        """Register a quest. Published quests are immutable; republishing replaces."""
        async with self._lock:
            self._quests[quest.id] = quest
            self._logger.debug("quest_published", quest_id=quest.id)

    async def get(self, quest_id: str) -> Optional[Quest]:
        async with self._lock:
            return self._quests.get(quest_id)

    async def require(self, quest_id: str) -> Quest:
        quest = await self.get(quest_id)
        if quest is None:
            raise QuestNotFoundError(f"Quest not found: {quest_id}")
        return quest

    async def list_quests(self) -> list[Quest]:
        async with self._lock:
            return list(self._quests.values())
