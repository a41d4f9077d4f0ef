"""Conflict Resolver - keep one active memory per (team, concept).

Two triggers open conflicts:

- write: storing a memory whose concept already has an active memory created
  within ``window`` seconds opens a conflict for just those memories.
- sync: a sync pass groups *all* active memories of a team by concept. This
  is wider than the write window on purpose; it catches conflicting writes
  made by other instances more than ``window`` apart.

Resolution keeps the memory with the highest confidence (ties: earliest
timestamp, then smallest id) and marks the rest ``consolidated``. Nothing is
deleted.
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple

from .constants import Defaults
from .errors import ConflictResolutionFailure, TeamMemoryError
from .log import get_logger
from .telemetry import TeamMemoryMetrics
from .types import ConflictTrigger, LearningMemory, MemoryConflict

if TYPE_CHECKING:
    from .memory_store import MemoryStore

logger = get_logger(__name__)

ConflictGroup = Tuple[MemoryConflict, List[LearningMemory]]


class TeamLocks:
    """One re-entrant lock per team."""

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, team_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(team_id)
            if lock is None:
                lock = self._locks[team_id] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, team_id: str):
        lock = self.get(team_id)
        with lock:
            yield


def winner_sort_key(memory: LearningMemory):
    return (-memory.confidence, memory.timestamp, memory.id)


def choose_winner(memories: Iterable[LearningMemory]) -> LearningMemory:
    """Pick the memory that stays active.

    Raises:
        ConflictResolutionFailure: If the group is empty
    """
    memories = list(memories)
    if not memories:
        raise ConflictResolutionFailure("Cannot choose a winner from an empty conflict group")
    return min(memories, key=winner_sort_key)


class ConflictResolver:
    """Detects and resolves same-concept memory conflicts within a team."""

    STRATEGY = Defaults.RESOLUTION_STRATEGY

    def __init__(
        self,
        memory_store: 'MemoryStore',
        window: float = Defaults.CONFLICT_WINDOW_SECONDS,
        locks: Optional[TeamLocks] = None,
        metrics: Optional[TeamMemoryMetrics] = None
    ):
        self.memory_store = memory_store
        self.window = window
        self.locks = locks or TeamLocks()
        self.metrics = metrics or memory_store.metrics

    def open_conflict(self, team_id: str, memories: List[LearningMemory], trigger: str) -> MemoryConflict:
        if not memories:
            raise ConflictResolutionFailure("Cannot open a conflict without memories")
        conflict = MemoryConflict(
            id=MemoryConflict.new_id(trigger),
            team_id=team_id,
            concept=memories[0].concept,
            conflicting_memories=[m.id for m in sorted(memories, key=lambda m: m.id)],
            resolution=self.STRATEGY,
            trigger=trigger,
        )
        self.metrics.count(TeamMemoryMetrics.CONFLICTS_OPENED, trigger=trigger)
        logger.info("Opened %s conflict %s for concept %s (%d memories)",
                    trigger, conflict.id, conflict.concept, len(memories),
                    extra={'team_id': team_id})
        return conflict

    def resolve(self, conflict: MemoryConflict, memories: List[LearningMemory]) -> MemoryConflict:
        """Apply keep-highest-confidence to a conflict group.

        Resolving an already resolved conflict, or a group of one, changes
        nothing. The conflict is only marked resolved once every losing
        memory has been persisted as consolidated; per-memory failures are
        logged and leave the conflict open for the next sync.
        """
        if conflict.resolved:
            return conflict

        winner = choose_winner(memories)
        conflict.winner_id = winner.id

        failed = []
        for memory in memories:
            if memory.id == winner.id or memory.consolidated:
                continue
            memory.consolidated = True
            try:
                self.memory_store.update(conflict.team_id, memory)
                self.metrics.count(TeamMemoryMetrics.MEMORIES_CONSOLIDATED)
            except TeamMemoryError as e:
                memory.consolidated = False
                failed.append(memory.id)
                logger.error("Failed to consolidate memory %s: %s", memory.id, str(e),
                             extra={'team_id': conflict.team_id})

        if not failed:
            conflict.resolved = True
            conflict.resolved_at = time.time()
            self.metrics.count(TeamMemoryMetrics.CONFLICTS_RESOLVED, trigger=conflict.trigger)

        if len(memories) > 1:
            try:
                self.memory_store.save_conflict(conflict.team_id, conflict)
            except TeamMemoryError as e:
                logger.error("Failed to persist conflict %s: %s", conflict.id, str(e),
                             extra={'team_id': conflict.team_id})
        return conflict

    def resolve_group(self, team_id: str, memories: List[LearningMemory],
                      trigger: str = ConflictTrigger.SYNC.value) -> MemoryConflict:
        """Open and resolve a conflict for a same-concept group."""
        if len({m.concept for m in memories}) > 1:
            raise ConflictResolutionFailure("Conflict group mixes concepts")
        with self.locks.hold(team_id):
            conflict = self.open_conflict(team_id, memories, trigger)
            return self.resolve(conflict, memories)

    def check_on_write(self, team_id: str, memory: LearningMemory) -> Optional[MemoryConflict]:
        """Open and resolve a conflict if ``memory`` collides within the window."""
        if memory.consolidated:
            return None
        with self.locks.hold(team_id):
            candidates = [
                m for m in self.memory_store.active(team_id, memory.concept)
                if m.concept == memory.concept
                and m.id != memory.id
                and abs(m.timestamp - memory.timestamp) < self.window
            ]
            if not candidates:
                return None
            group = [memory] + candidates
            conflict = self.open_conflict(team_id, group, ConflictTrigger.WRITE.value)
            return self.resolve(conflict, group)

    @staticmethod
    def group_by_concept(memories: Iterable[LearningMemory]) -> Dict[str, List[LearningMemory]]:
        groups: Dict[str, List[LearningMemory]] = defaultdict(list)
        for memory in memories:
            if not memory.consolidated:
                groups[memory.concept].append(memory)
        return dict(groups)

    def detect(self, team_id: str, memories: Iterable[LearningMemory]) -> List[ConflictGroup]:
        """Group active memories by concept; every group larger than one conflicts."""
        conflicts = []
        for concept, group in sorted(self.group_by_concept(memories).items()):
            if len(group) > 1:
                conflicts.append((self.open_conflict(team_id, group, ConflictTrigger.SYNC.value), group))
        return conflicts

