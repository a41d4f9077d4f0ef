"""Learning progress per domain for a team."""

from collections import defaultdict
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from .constants import Defaults
from .types import LearningProgress, SharedLearningState

if TYPE_CHECKING:
    from .memory_store import MemoryStore
    from .registry import TeamRegistry

# First match wins. Keyword containment is a heuristic, not a taxonomy.
DOMAIN_KEYWORDS = [
    ("neural_networks", ("neural", "network")),
    ("hyperbolic_geometry", ("hyperbolic", "geometric")),
    ("semantic_processing", ("wordnet", "semantic")),
    ("graph_structures", ("graph", "hierarchy")),
]
DEFAULT_DOMAIN = "general_concepts"


def extract_domain(concept: str) -> str:
    """Classify a concept into a coarse learning domain."""
    concept_lower = concept.lower()
    for domain, keywords in DOMAIN_KEYWORDS:
        if any(keyword in concept_lower for keyword in keywords):
            return domain
    return DEFAULT_DOMAIN


class LearningProgressService:
    """Summarizes a team's active memories by domain."""

    def __init__(
        self,
        memory_store: 'MemoryStore',
        registry: 'TeamRegistry',
        mastery_threshold: float = Defaults.MASTERY_THRESHOLD,
        last_sync: Optional[Callable[[str], Optional[float]]] = None
    ):
        self.memory_store = memory_store
        self.registry = registry
        self.mastery_threshold = mastery_threshold
        self._last_sync = last_sync or (lambda team_id: None)

    def get_learning_progress(self, team_id: str) -> List[LearningProgress]:
        """One entry per domain, ordered by domain name.

        mastery_level is the mean confidence of the domain's active memories;
        learned_concepts counts distinct concepts whose best confidence
        reaches the mastery threshold.
        """
        by_domain: Dict[str, list] = defaultdict(list)
        for memory in self.memory_store.active(team_id):
            by_domain[extract_domain(memory.concept)].append(memory)

        progress = []
        for domain in sorted(by_domain):
            memories = by_domain[domain]
            best: Dict[str, float] = {}
            for memory in memories:
                best[memory.concept] = max(best.get(memory.concept, 0.0), memory.confidence)

            progress.append(LearningProgress(
                domain=domain,
                total_concepts=len(best),
                learned_concepts=sum(1 for c in best.values() if c >= self.mastery_threshold),
                mastery_level=sum(m.confidence for m in memories) / len(memories),
                last_updated=max(m.timestamp for m in memories),
                learning_curve=[(m.timestamp, m.performance) for m in memories],
                weak_areas=sorted(c for c, v in best.items() if v < self.mastery_threshold),
                strong_areas=sorted(c for c, v in best.items() if v >= self.mastery_threshold),
            ))
        return progress

    def get_shared_learning_state(self, team_id: str) -> SharedLearningState:
        team = self.registry.require_team(team_id)
        return SharedLearningState(
            team_id=team_id,
            total_memories=self.memory_store.count(team_id),
            total_snapshots=len(self.memory_store.retrieve_snapshots(team_id)),
            last_sync=self._last_sync(team_id),
            conflicts=len(self.memory_store.list_conflicts(team_id)),
            shared_concepts=list(team.shared_concepts),
            learning_progress=self.get_learning_progress(team_id),
        )
