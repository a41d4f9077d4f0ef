"""Knowledge Sharing - one-shot copies of memories between teams."""

import time
import uuid
from dataclasses import replace
from typing import Callable, Iterable, List, Optional

from .constants import Permission
from .log import get_logger
from .telemetry import TeamMemoryMetrics
from .types import LearningMemory

logger = get_logger(__name__)


class KnowledgeSharingService:
    """Copies selected memories from one team's partition into another's.

    Copies are independent records: the source memory is never modified,
    and later changes on either side do not propagate.
    """

    def __init__(self, registry, memory_store, now: Callable[[], float] = time.time):
        self.registry = registry
        self.memory_store = memory_store
        self.now = now

    @staticmethod
    def shared_id(original_id: str) -> str:
        return f"shared_{original_id}_{uuid.uuid4().hex[:8]}"

    def share_knowledge(
        self,
        source_team_id: str,
        target_team_id: str,
        concepts: Iterable[str],
        member_id: Optional[str] = None
    ) -> List[LearningMemory]:
        """Copy every active source memory whose concept contains any of ``concepts``.

        Args:
            source_team_id: Team to copy from
            target_team_id: Team to copy into
            concepts: Substrings matched against memory concepts
            member_id: If given, must hold the share permission on the source team

        Returns:
            The new memories created in the target team

        Raises:
            TeamNotFound: If either team does not exist
            PermissionDenied: If ``member_id`` may not share from the source team
        """
        concepts = list(concepts)
        self.registry.require_team(source_team_id)
        self.registry.require_team(target_team_id)
        if member_id is not None:
            self.registry.require_permission(source_team_id, member_id, Permission.SHARE)

        relevant = [
            memory for memory in self.memory_store.active(source_team_id)
            if any(concept in memory.concept for concept in concepts)
        ]

        shared = []
        for memory in relevant:
            copy = replace(
                memory,
                id=self.shared_id(memory.id),
                timestamp=self.now(),
                embedding=list(memory.embedding),
                relationships=list(memory.relationships),
                context=memory.context.with_provenance(
                    shared_from=source_team_id,
                    shared_to=target_team_id,
                    original_id=memory.id,
                ),
                consolidated=False,
            )
            shared.append(self.memory_store.store(target_team_id, copy))

        self.memory_store.metrics.count(TeamMemoryMetrics.MEMORIES_SHARED, len(shared))
        logger.info("Shared %d memories from team %s to team %s",
                    len(shared), source_team_id, target_team_id,
                    extra={'team_id': target_team_id})
        return shared
