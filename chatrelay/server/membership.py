from typing import List, Optional

from .errors import NotFoundError, ValidationError
from .hub import Hub
from .models import Group, UNKNOWN_USER
from .repo import GroupsRepo, UsersRepo
from .sessions import SessionRegistry
from ..utils.logger import setup_logger

logger = setup_logger('chatrelay.membership')


class GroupMembershipService:
    """Authorizes and tracks which connections receive a group's traffic.

    Persisted membership (Group.members) decides who may join a room; room
    occupancy itself is transient and lives in the Hub.
    """

    def __init__(self, users_repo: UsersRepo, groups_repo: GroupsRepo, hub: Hub, sessions: SessionRegistry):
        self.users = users_repo
        self.groups = groups_repo
        self.hub = hub
        self.sessions = sessions

    def create_group(self, name: Optional[str], creator_user_id: Optional[str]) -> Group:
        """Create a group with its creator as the sole member.

        Raises:
            ValidationError: If name or creator_user_id is missing
            NotFoundError: If creator_user_id does not name an existing user
        """
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("groupName is required")
        if not isinstance(creator_user_id, str) or not creator_user_id:
            raise ValidationError("userId is required")
        if self.users.get(creator_user_id) is None:
            logger.warning(f"CreateGroup: unknown creator '{creator_user_id}'")
            raise NotFoundError(f"User {creator_user_id} not found")
        return self.groups.create_group(name.strip(), creator_user_id)

    def describe(self, group: Group) -> dict:
        rec = group.to_record()
        names = []
        for user_id in rec["members"]:
            user = self.users.get(user_id)
            names.append(user.username if user else UNKNOWN_USER)
        rec["memberUsernames"] = names
        return rec

    def list_groups(self) -> List[dict]:
        return [self.describe(g) for g in sorted(self.groups.all(), key=lambda g: g.created_at)]

    def is_member(self, group_id: str, user_id: Optional[str]) -> bool:
        if not isinstance(group_id, str) or not isinstance(user_id, str):
            return False
        return self.groups.is_member(group_id, user_id)

    def subscribe(self, connection_id: str, group_id: str, user_id: Optional[str]) -> bool:
        """Join a connection to a group's room if the user is a member.

        A non-member request leaves the room untouched.

        Returns:
            bool: True if the connection is now in the room
        """
        if not self.is_member(group_id, user_id):
            logger.warning(f"Subscribe denied: user {user_id} is not a member of group {group_id}")
            return False
        self.hub.join(group_id, connection_id)
        session = self.sessions.get(connection_id)
        if session:
            session.joined_group_ids.add(group_id)
        user = self.users.get(user_id)
        self.hub.broadcast(group_id, "userJoinedGroup", {
            "groupId": group_id,
            "userId": user_id,
            "username": user.username if user else UNKNOWN_USER,
        })
        logger.info(f"Connection {connection_id} (user {user_id}) joined group {group_id}")
        return True

    def unsubscribe(self, connection_id: str, group_id: str):
        self.hub.leave(group_id, connection_id)
        session = self.sessions.get(connection_id)
        if session:
            session.joined_group_ids.discard(group_id)
        logger.info(f"Connection {connection_id} left group {group_id}")

    def subscribe_all(self, connection_id: str, user_id: str) -> List[str]:
        """Join a connection to every room its user is a member of.

        Returns:
            list[str]: Group IDs the connection was joined to
        """
        joined = []
        for group in self.groups.get_user_groups(user_id):
            if self.subscribe(connection_id, group.group_id, user_id):
                joined.append(group.group_id)
        logger.debug(f"Auto-subscribed connection {connection_id} to {len(joined)} groups")
        return joined
