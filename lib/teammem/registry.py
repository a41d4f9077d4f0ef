"""Team Registry - teams, members, roles and permissions"""

import time
from typing import Any, Dict, List, Optional

from .constants import StorageKeys, ROLE_PERMISSIONS
from .errors import NotFound, PermissionDenied, TeamNotFound
from .log import get_logger
from .storage import StorageManager
from .types import Member, Role, Team

logger = get_logger(__name__)


class TeamRegistry:
    """Manages team definitions and membership.

    All state lives in the storage manager; the registry holds no
    process-wide maps, so several instances sharing a backend see the same
    teams.
    """

    def __init__(self, storage: StorageManager, replicate: bool = True):
        self.storage = storage
        self.replicate = replicate

    def create_team(self, team_id: str, config: Optional[Dict[str, Any]] = None) -> Team:
        """Create a team, or overwrite the configuration of an existing one.

        Re-creating a team keeps its ``created_at`` and member list; every
        other field is replaced by ``config``.
        """
        existing = self.get_team(team_id)

        team = Team.from_dict({'name': team_id, **(config or {}), 'team_id': team_id})
        if existing is not None:
            team.created_at = existing.created_at
            team.members = list(dict.fromkeys(existing.members + team.members))
        team.updated_at = time.time()

        self._persist_team(team)
        logger.info("Team %s %s", team_id, "updated" if existing else "created",
                    extra={'team_id': team_id})
        return team

    def _persist_team(self, team: Team) -> None:
        self.storage.store(
            StorageKeys.team(team.team_id),
            team.to_dict(),
            replicate=self.replicate,
            index=(StorageKeys.TEAM_INDEX, team.team_id)
        )

    def get_team(self, team_id: str) -> Optional[Team]:
        data = self.storage.get(StorageKeys.team(team_id), use_cache=False)
        return Team.from_dict(data) if data else None

    def require_team(self, team_id: str) -> Team:
        """Return the team or raise TeamNotFound."""
        team = self.get_team(team_id)
        if team is None:
            raise TeamNotFound(team_id)
        return team

    def team_exists(self, team_id: str) -> bool:
        return self.get_team(team_id) is not None

    def list_team_ids(self) -> List[str]:
        return sorted(self.storage.list_index(StorageKeys.TEAM_INDEX))

    def list_teams(self) -> List[Team]:
        teams = []
        for team_id in self.list_team_ids():
            team = self.get_team(team_id)
            if team is not None:
                teams.append(team)
        return teams

    def add_member(self, team_id: str, member_id: str, role: str = Role.MEMBER.value) -> Member:
        """Add a member to a team with permissions derived from the role.

        Raises:
            TeamNotFound: If the team does not exist; nothing is written
            ValueError: If the role is unknown
        """
        if role not in ROLE_PERMISSIONS:
            raise ValueError(f"Unknown role: {role}")
        team = self.require_team(team_id)

        member = Member(member_id=member_id, team_id=team_id, role=role)
        self.storage.store(
            StorageKeys.member(team_id, member_id),
            member.to_dict(),
            replicate=self.replicate,
            index=(StorageKeys.partition(team_id, StorageKeys.MEMBERS), member_id)
        )

        if member_id not in team.members:
            team.members.append(member_id)
        team.updated_at = time.time()
        self._persist_team(team)

        logger.info("Member %s added to team %s as %s", member_id, team_id, role,
                    extra={'team_id': team_id})
        return member

    def get_member(self, team_id: str, member_id: str) -> Optional[Member]:
        data = self.storage.get(StorageKeys.member(team_id, member_id), use_cache=False)
        return Member.from_dict(data) if data else None

    def list_members(self, team_id: str) -> List[Member]:
        self.require_team(team_id)
        namespace = StorageKeys.partition(team_id, StorageKeys.MEMBERS)
        members = []
        for member_id in sorted(self.storage.list_index(namespace)):
            member = self.get_member(team_id, member_id)
            if member is not None:
                members.append(member)
        return members

    def touch_member(self, team_id: str, member_id: str) -> Member:
        """Refresh a member's last-active timestamp."""
        member = self.get_member(team_id, member_id)
        if member is None:
            raise NotFound(f"Member {member_id} not found in team {team_id}")
        member.last_active = time.time()
        self.storage.store(StorageKeys.member(team_id, member_id), member.to_dict(),
                           replicate=self.replicate)
        return member

    def has_permission(self, team_id: str, member_id: str, permission: str) -> bool:
        member = self.get_member(team_id, member_id)
        return member is not None and member.can(permission)

    def require_permission(self, team_id: str, member_id: str, permission: str) -> None:
        if not self.has_permission(team_id, member_id, permission):
            raise PermissionDenied(
                f"Member {member_id} lacks '{permission}' permission on team {team_id}")
