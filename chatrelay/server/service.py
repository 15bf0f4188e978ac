import asyncio
import uuid
from typing import List, Optional, Tuple

from .auth import AuthService
from .hub import Hub
from .membership import GroupMembershipService
from .relay import ChatRelay, SignalingRelay
from .repo import GroupsRepo, MessagesRepo, Store, UsersRepo
from .sessions import SessionRegistry
from ..utils.logger import setup_logger

logger = setup_logger('chatrelay.server')


class ChatService:
    """Connection lifecycle and event dispatch for the chat relay.

    Owns the repositories built on one Store, the session registry, the hub
    and the three relay-side services. The HTTP layer calls the plain
    methods (login, create_group, list_groups, history); the WebSocket layer
    calls connect, handle_event and disconnect.
    """

    def __init__(self, store: Store, hub: Optional[Hub] = None, bcrypt_rounds: int = 12,
                 strict_membership: bool = False):
        """Initialize chat service on top of a store.

        Args:
            store (Store): Loaded document store
            hub (Hub, optional): Real-time delivery hub, created if omitted
            bcrypt_rounds (int): Work factor for newly hashed passwords
            strict_membership (bool): Send an error event back on denied joins
        """
        self.store = store
        self.users = UsersRepo(store)
        self.groups = GroupsRepo(store)
        self.messages = MessagesRepo(store)
        self.hub = hub or Hub()
        self.sessions = SessionRegistry()
        self.strict_membership = strict_membership
        self.auth = AuthService(self.users, rounds=bcrypt_rounds)
        self.membership = GroupMembershipService(self.users, self.groups, self.hub, self.sessions)
        self.chat = ChatRelay(self.users, self.groups, self.messages, self.hub, self.sessions)
        self.signaling = SignalingRelay(self.hub, self.sessions)
        self._handlers = {
            "login": self._on_login,
            "chatMessage": self._on_chat_message,
            "joinGroup": self._on_join_group,
            "leaveGroup": self._on_leave_group,
            "offer": self._on_signal,
            "answer": self._on_signal,
            "ice-candidate": self._on_signal,
        }

    # HTTP-facing operations

    async def login(self, username, password) -> dict:
        user = await self.auth.login(username, password)
        return user.to_public()

    def create_group(self, name, creator_user_id) -> dict:
        return self.membership.create_group(name, creator_user_id).to_record()

    def list_groups(self) -> List[dict]:
        return self.membership.list_groups()

    def history(self, group_id: str) -> List[dict]:
        return self.chat.history(group_id)

    # Connection lifecycle

    def connect(self) -> Tuple[str, asyncio.Queue]:
        """Open an anonymous session for a new connection.

        Returns:
            tuple: (connection_id, outbound event queue)
        """
        connection_id = uuid.uuid4().hex
        self.sessions.open(connection_id)
        q = self.hub.register(connection_id)
        logger.info(f"ChatStream: connection '{connection_id}' opened")
        return connection_id, q

    def handle_event(self, connection_id: str, event: str, data) -> None:
        """Dispatch one client event. Never raises to the transport."""
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning(f"ChatStream: unknown event '{event}' from connection {connection_id}")
            return
        if not isinstance(data, dict):
            logger.warning(f"ChatStream: dropped '{event}' with non-object data from connection {connection_id}")
            return
        if self.sessions.get(connection_id) is None:
            logger.warning(f"ChatStream: dropped '{event}' from closed connection {connection_id}")
            return
        handler(connection_id, event, data)

    def disconnect(self, connection_id: str) -> List[str]:
        """Tear down a connection and notify the user's groups.

        Broadcasts userLeftGroup once per group the user is a member of,
        whether or not this connection had joined that group's room.

        Returns:
            list[str]: Group IDs that were notified
        """
        self.hub.remove(connection_id)
        session = self.sessions.close(connection_id)
        notified = []
        if session and session.user_id:
            for group in self.groups.get_user_groups(session.user_id):
                self.hub.broadcast(group.group_id, "userLeftGroup", {
                    "groupId": group.group_id,
                    "userId": session.user_id,
                })
                notified.append(group.group_id)
        user = session.user_id if session else None
        logger.info(f"ChatStream: connection '{connection_id}' (user {user}) disconnected")
        return notified

    # Event handlers

    def _deny(self, connection_id: str, event: str, group_id):
        if self.strict_membership:
            self.hub.send(connection_id, "error", {
                "code": "permission_denied",
                "event": event,
                "groupId": group_id,
            })

    def _on_login(self, connection_id: str, event: str, data: dict):
        user_id = data.get("userId")
        if not isinstance(user_id, str) or self.users.get(user_id) is None:
            logger.warning(f"ChatStream: login with unknown user '{user_id}' on connection {connection_id}")
            return
        session = self.sessions.get(connection_id)
        if session.user_id and session.user_id != user_id:
            for group_id in list(session.joined_group_ids):
                self.membership.unsubscribe(connection_id, group_id)
        self.sessions.bind(connection_id, user_id)
        self.membership.subscribe_all(connection_id, user_id)

    def _on_chat_message(self, connection_id: str, event: str, data: dict):
        self.chat.send(connection_id, data.get("groupId"), data.get("messageText"))

    def _on_join_group(self, connection_id: str, event: str, data: dict):
        group_id = data.get("groupId")
        user_id = self.sessions.lookup(connection_id)
        if not self.membership.subscribe(connection_id, group_id, user_id):
            self._deny(connection_id, event, group_id)

    def _on_leave_group(self, connection_id: str, event: str, data: dict):
        group_id = data.get("groupId")
        if not isinstance(group_id, str) or not group_id:
            return
        self.membership.unsubscribe(connection_id, group_id)
        user_id = self.sessions.lookup(connection_id)
        if user_id:
            self.hub.broadcast(group_id, "userLeftGroup", {"groupId": group_id, "userId": user_id})

    def _on_signal(self, connection_id: str, event: str, data: dict):
        self.signaling.relay(event, connection_id, data.get("groupId"), data.get("payload"), data.get("to"))
