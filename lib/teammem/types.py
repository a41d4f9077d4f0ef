"""Team Memory Types - records persisted by the team memory store.

Every record is a self-describing JSON document: ``to_dict()`` produces the
stored form and ``from_dict()`` ignores unknown fields so older instances can
read documents written by newer ones.
"""

import time
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .constants import Defaults, ROLE_PERMISSIONS
from .errors import SerializationError


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PrivacyLevel(Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    RESTRICTED = "restricted"


class Role(Enum):
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class ConflictTrigger(Enum):
    """What opened a conflict."""
    WRITE = "write"
    SYNC = "sync"


def _from_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise SerializationError(f"{cls.__name__} record must be an object, got {type(data).__name__}")
    return {k: v for k, v in data.items() if k in cls.__dataclass_fields__}


@dataclass
class Team:
    """A tenant owning one partition of learning memories."""
    team_id: str
    name: str
    description: str = ""
    members: List[str] = field(default_factory=list)
    learning_domains: List[str] = field(default_factory=list)
    shared_concepts: List[str] = field(default_factory=list)
    privacy_level: str = PrivacyLevel.PRIVATE.value
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def __post_init__(self):
        self.privacy_level = PrivacyLevel(self.privacy_level).value
        # learning domains behave as a set but keep insertion order on disk
        self.learning_domains = list(dict.fromkeys(self.learning_domains))

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'Team':
        return cls(**_from_fields(cls, data))


@dataclass
class Member:
    """A team member; permissions are always derived from the role."""
    member_id: str
    team_id: str
    role: str = Role.MEMBER.value
    joined_at: float = field(default_factory=time.time)
    last_active: float = field(default_factory=time.time)

    def __post_init__(self):
        self.role = Role(self.role).value

    @property
    def permissions(self) -> frozenset:
        return ROLE_PERMISSIONS[self.role]

    def can(self, permission: str) -> bool:
        return permission in self.permissions

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['permissions'] = sorted(self.permissions)
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'Member':
        return cls(**_from_fields(cls, data))


@dataclass
class MemoryContext:
    """Where a memory came from.

    ``shared_from``, ``shared_to`` and ``original_id`` are only set on copies
    produced by knowledge sharing.
    """
    domain: str = "general_concepts"
    contributor: Optional[str] = None
    shared_from: Optional[str] = None
    shared_to: Optional[str] = None
    original_id: Optional[str] = None

    @property
    def is_shared(self) -> bool:
        return self.original_id is not None

    def with_provenance(self, shared_from: str, shared_to: str, original_id: str) -> 'MemoryContext':
        return MemoryContext(
            domain=self.domain,
            contributor=self.contributor,
            shared_from=shared_from,
            shared_to=shared_to,
            original_id=original_id,
        )

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'MemoryContext':
        return cls(**_from_fields(cls, data or {}))


@dataclass
class LearningMemory:
    """A timestamped record of a learned concept."""
    id: str
    concept: str
    timestamp: float = field(default_factory=time.time)
    embedding: List[float] = field(default_factory=list)
    context: MemoryContext = field(default_factory=MemoryContext)
    performance: float = 0.0
    confidence: float = 0.0
    relationships: List[str] = field(default_factory=list)
    consolidated: bool = False

    def __post_init__(self):
        if isinstance(self.context, dict):
            self.context = MemoryContext.from_dict(self.context)
        elif not isinstance(self.context, MemoryContext):
            raise ValueError(f"context must be an object, got {type(self.context).__name__}")
        for name in ('performance', 'confidence'):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")

    @staticmethod
    def new_id() -> str:
        return f"mem-{uuid.uuid4().hex[:12]}"

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['context'] = self.context.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'LearningMemory':
        return cls(**_from_fields(cls, data))


@dataclass
class MemoryConflict:
    """A set of same-concept memories competing to stay active."""
    id: str
    team_id: str
    concept: str
    conflicting_memories: List[str]
    resolution: str = Defaults.RESOLUTION_STRATEGY
    resolved: bool = False
    trigger: str = ConflictTrigger.SYNC.value
    winner_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    resolved_at: Optional[float] = None

    @staticmethod
    def new_id(trigger: str) -> str:
        return f"conflict-{trigger}-{uuid.uuid4().hex[:12]}"

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'MemoryConflict':
        return cls(**_from_fields(cls, data))


@dataclass
class UnderstandingSnapshot:
    """Periodic consolidated view of one domain."""
    id: str
    domain: str
    concepts: List[str] = field(default_factory=list)
    confidence: float = 0.0
    insights: List[str] = field(default_factory=list)
    patterns: List[str] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'UnderstandingSnapshot':
        return cls(**_from_fields(cls, data))


@dataclass
class TeamLearningInsight:
    id: str
    team_id: str
    concept: str
    insight: str
    confidence: float = 0.0
    contributors: List[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'TeamLearningInsight':
        return cls(**_from_fields(cls, data))


@dataclass
class StorageMetadata:
    """Describes where and how a value was stored."""
    backend: str
    size: int
    timestamp: str = field(default_factory=utc_now)
    content_hash: Optional[str] = None
    version: int = 1
    encrypted: bool = False

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class StorageResult:
    value: Any
    metadata: StorageMetadata
    cached: bool = False


@dataclass
class LearningProgress:
    domain: str
    total_concepts: int = 0
    learned_concepts: int = 0
    mastery_level: float = 0.0
    last_updated: float = 0.0
    learning_curve: List[Tuple[float, float]] = field(default_factory=list)
    weak_areas: List[str] = field(default_factory=list)
    strong_areas: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class SharedLearningState:
    team_id: str
    total_memories: int
    total_snapshots: int
    last_sync: Optional[float]
    conflicts: int
    shared_concepts: List[str] = field(default_factory=list)
    learning_progress: List[LearningProgress] = field(default_factory=list)
