"""Team Memory Store

Team-partitioned learning memories over cache, file and content-addressed
backends, with conflict resolution, periodic sync and knowledge sharing.
"""

from .backends import CacheBackend, ContentAddressedBackend, FileBackend, MemoryBackend, StorageBackend
from .config import StorageConfig, StorageMode, TeamMemoryConfig
from .conflicts import ConflictResolver, TeamLocks, choose_winner
from .constants import BackendTag, Defaults, Permission, StorageKeys
from .context import TeamMemoryContext
from .errors import (
    BackendError,
    BackendTimeout,
    BackendUnavailable,
    ConflictResolutionFailure,
    NotFound,
    PermissionDenied,
    SerializationError,
    TeamMemoryError,
    TeamNotFound,
)
from .log import SecureLogger, configure_logging, get_logger, sanitize
from .memory_store import EmbeddingProvider, MemoryStore, NullEmbedder
from .progress import LearningProgressService, extract_domain
from .redis_factory import RedisStartupError, create_redis_client, redis_client_for
from .registry import TeamRegistry
from .scheduler import Clock, ManualClock, PeriodicTask, SyncResult, SyncScheduler, SystemClock
from .sharing import KnowledgeSharingService
from .storage import StorageManager
from .telemetry import MetricSnapshot, SimpleMetrics, TeamMemoryMetrics
from .types import (
    ConflictTrigger,
    LearningMemory,
    LearningProgress,
    Member,
    MemoryConflict,
    MemoryContext,
    PrivacyLevel,
    Role,
    SharedLearningState,
    StorageMetadata,
    StorageResult,
    Team,
    TeamLearningInsight,
    UnderstandingSnapshot,
)

__all__ = [
    'StorageBackend',
    'CacheBackend',
    'FileBackend',
    'ContentAddressedBackend',
    'MemoryBackend',
    'StorageManager',
    'StorageConfig',
    'StorageMode',
    'TeamMemoryConfig',
    'TeamMemoryContext',
    'TeamRegistry',
    'MemoryStore',
    'EmbeddingProvider',
    'NullEmbedder',
    'ConflictResolver',
    'TeamLocks',
    'choose_winner',
    'SyncScheduler',
    'SyncResult',
    'PeriodicTask',
    'Clock',
    'SystemClock',
    'ManualClock',
    'KnowledgeSharingService',
    'LearningProgressService',
    'extract_domain',
    'BackendTag',
    'Defaults',
    'Permission',
    'StorageKeys',
    'TeamMemoryError',
    'BackendError',
    'BackendTimeout',
    'BackendUnavailable',
    'NotFound',
    'TeamNotFound',
    'SerializationError',
    'ConflictResolutionFailure',
    'PermissionDenied',
    'SecureLogger',
    'sanitize',
    'get_logger',
    'configure_logging',
    'RedisStartupError',
    'create_redis_client',
    'redis_client_for',
    'TeamMemoryMetrics',
    'SimpleMetrics',
    'MetricSnapshot',
    'Team',
    'Member',
    'Role',
    'PrivacyLevel',
    'LearningMemory',
    'MemoryContext',
    'MemoryConflict',
    'ConflictTrigger',
    'UnderstandingSnapshot',
    'TeamLearningInsight',
    'StorageMetadata',
    'StorageResult',
    'LearningProgress',
    'SharedLearningState',
]

__version__ = '0.1.0'
