"""Constants and storage key patterns for team memory."""


class StorageKeys:
    """Logical key patterns and prefixes.

    Every record lives under ``teams:<team_id>:<entity>:<record_id>`` and each
    partition keeps an index namespace ``teams:<team_id>:<entity>`` listing
    its record ids.
    """

    TEAMS = "teams"
    TEAM_INDEX = "teams:index"
    MEMBERS = "members"
    REFERENCES = "ref"

    MEMORIES = "memories"
    SNAPSHOTS = "snapshots"
    CONFLICTS = "conflicts"
    INSIGHTS = "insights"

    @classmethod
    def team(cls, team_id: str) -> str:
        return f"{cls.TEAMS}:{team_id}:config"

    @classmethod
    def member(cls, team_id: str, member_id: str) -> str:
        return f"{cls.TEAMS}:{team_id}:{cls.MEMBERS}:{member_id}"

    @classmethod
    def partition(cls, team_id: str, entity: str) -> str:
        return f"{cls.TEAMS}:{team_id}:{entity}"

    @classmethod
    def record(cls, team_id: str, entity: str, record_id: str) -> str:
        return f"{cls.partition(team_id, entity)}:{record_id}"

    @classmethod
    def reference(cls, key: str) -> str:
        return f"{cls.REFERENCES}:{key}"


class BackendTag:
    """Storage backend tags."""
    CACHE = "cache"
    FILE = "file"
    CONTENT = "content"
    MEMORY = "memory"

    ALL = (CACHE, FILE, CONTENT, MEMORY)


class Permission:
    """Member permission names."""
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    MANAGE = "manage"
    SHARE = "share"


ROLE_PERMISSIONS = {
    "admin": frozenset({Permission.READ, Permission.WRITE, Permission.DELETE,
                        Permission.MANAGE, Permission.SHARE}),
    "member": frozenset({Permission.READ, Permission.WRITE, Permission.SHARE}),
    "viewer": frozenset({Permission.READ}),
}


class Defaults:
    """Default configuration values."""
    CONFLICT_WINDOW_SECONDS = 60.0
    SYNC_INTERVAL_SECONDS = 300.0
    BACKEND_TIMEOUT_SECONDS = 5.0
    MAX_WORKERS = 8
    REDIS_URL = "redis://localhost:6379"
    STORAGE_PATH = "./shared-learning"
    MASTERY_THRESHOLD = 0.7
    RESOLUTION_STRATEGY = "keep-highest-confidence"
