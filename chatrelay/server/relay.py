from typing import Any, List, Optional

from .hub import Hub
from .models import Message
from .repo import GroupsRepo, MessagesRepo, UsersRepo
from .sessions import SessionRegistry
from ..utils.logger import setup_logger

logger = setup_logger('chatrelay.relay')

SIGNALING_EVENTS = ("offer", "answer", "ice-candidate")


class ChatRelay:
    """Persists group chat messages and fans them out to the group's room."""

    def __init__(self, users_repo: UsersRepo, groups_repo: GroupsRepo, messages_repo: MessagesRepo,
                 hub: Hub, sessions: SessionRegistry):
        self.users = users_repo
        self.groups = groups_repo
        self.messages = messages_repo
        self.hub = hub
        self.sessions = sessions

    def send(self, connection_id: str, group_id: Optional[str], text: Optional[str]) -> Optional[Message]:
        """Store a message and broadcast it to the room, sender included.

        Fire-and-forget: invalid sends are dropped and nothing is reported
        back to the sender.

        Returns:
            Optional[Message]: The stored message, None if the send was dropped
        """
        user_id = self.sessions.lookup(connection_id)
        if not user_id:
            logger.warning(f"ChatRelay: dropped message from unidentified connection {connection_id}")
            return None
        if not isinstance(group_id, str) or not group_id or not isinstance(text, str) or not text:
            logger.warning(f"ChatRelay: dropped malformed message from user {user_id}")
            return None
        if self.groups.get_group(group_id) is None:
            logger.warning(f"ChatRelay: dropped message from user {user_id} to unknown group {group_id}")
            return None

        msg = self.messages.append(group_id, user_id, text)
        delivered = self.hub.broadcast(group_id, "message", msg.enriched(self.users.get(user_id)))
        logger.debug(f"ChatRelay: message {msg.message_id} from '{user_id}' to '{group_id}' reached {delivered} connections")
        return msg

    def history(self, group_id: str) -> List[dict]:
        """Messages of a group, oldest first, with sender usernames resolved."""
        return [m.enriched(self.users.get(m.sender_id)) for m in self.messages.get_group_messages(group_id)]


class SignalingRelay:
    """Forwards WebRTC signaling payloads to the other connections of a room.

    Payloads are opaque and passed through unchanged. Every other connection
    in the room receives them; recipients filter on senderId (and ``to``,
    which is forwarded but never used for routing).
    """

    def __init__(self, hub: Hub, sessions: SessionRegistry):
        self.hub = hub
        self.sessions = sessions

    def relay(self, event: str, connection_id: str, group_id: Optional[str], payload: Any,
              to: Optional[str] = None) -> int:
        """Broadcast a signaling event to everyone in the room but the sender.

        Returns:
            int: Number of connections the event was queued for, 0 if dropped
        """
        if event not in SIGNALING_EVENTS:
            raise ValueError(f"Not a signaling event: {event}")
        user_id = self.sessions.lookup(connection_id)
        if not user_id:
            logger.warning(f"SignalingRelay: dropped {event} from unidentified connection {connection_id}")
            return 0
        if not isinstance(group_id, str) or not group_id:
            logger.warning(f"SignalingRelay: dropped {event} without groupId from user {user_id}")
            return 0

        data = {"groupId": group_id, "payload": payload, "senderId": user_id}
        if to is not None:
            data["to"] = to
        sent = self.hub.broadcast(group_id, event, data, exclude=connection_id)
        logger.debug(f"SignalingRelay: {event} from '{user_id}' in group '{group_id}' relayed to {sent} peers")
        return sent

    def relay_offer(self, connection_id, group_id, payload, to=None) -> int:
        return self.relay("offer", connection_id, group_id, payload, to)

    def relay_answer(self, connection_id, group_id, payload, to=None) -> int:
        return self.relay("answer", connection_id, group_id, payload, to)

    def relay_ice_candidate(self, connection_id, group_id, payload, to=None) -> int:
        return self.relay("ice-candidate", connection_id, group_id, payload, to)
