"""Exception taxonomy for the team memory store."""

from typing import Optional

from .log import sanitize


class TeamMemoryError(Exception):
    """Base exception for team memory operations.

    Messages are sanitized so connection URLs and tokens never leak into
    logs or tracebacks.
    """

    def __init__(self, message: str):
        super().__init__(sanitize(message))


class BackendError(TeamMemoryError):
    """A single backend call failed."""

    def __init__(self, message: str, backend: Optional[str] = None):
        super().__init__(message)
        self.backend = backend


class BackendTimeout(BackendError):
    """A backend call exceeded its timeout."""
    pass


class BackendUnavailable(TeamMemoryError):
    """Neither the primary nor the fallback backend could serve the call."""
    pass


class NotFound(TeamMemoryError):
    """Key absent on every reachable backend."""
    pass


class TeamNotFound(NotFound):
    """Operation referenced a team that was never created."""

    def __init__(self, team_id: str):
        super().__init__(f"Team not found: {team_id}")
        self.team_id = team_id


class SerializationError(TeamMemoryError):
    """Payload cannot be encoded or decoded."""
    pass


class ConflictResolutionFailure(TeamMemoryError):
    """A conflict group could not produce a winner."""
    pass


class PermissionDenied(TeamMemoryError):
    """Member lacks the permission required for an operation."""
    pass
