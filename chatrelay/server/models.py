from dataclasses import dataclass, field
from typing import Optional, Set

UNKNOWN_USER = "Unknown User"


@dataclass
class User:
    """Represents a registered user.

    Attributes:
        user_id (str): Server generated unique identifier
        username (str): Unique login name
        password_hash (str): bcrypt hash of the user's password
    """
    user_id: str
    username: str
    password_hash: str

    @classmethod
    def from_record(cls, rec: dict) -> "User":
        return cls(user_id=rec["userId"], username=rec["username"], password_hash=rec["passwordHash"])

    def to_record(self) -> dict:
        return {"userId": self.user_id, "username": self.username, "passwordHash": self.password_hash}

    def to_public(self) -> dict:
        """Wire form without the password hash."""
        return {"userId": self.user_id, "username": self.username}


@dataclass
class Group:
    """Represents a chat group.

    Attributes:
        group_id (str): Server generated unique identifier
        group_name (str): Display name, not required to be unique
        members (Set[str]): User IDs allowed to receive the group's traffic
        created_at (int): Unix timestamp in milliseconds when group was created
    """
    group_id: str
    group_name: str
    members: Set[str] = field(default_factory=set)
    created_at: int = 0

    @classmethod
    def from_record(cls, rec: dict) -> "Group":
        return cls(
            group_id=rec["groupId"],
            group_name=rec["groupName"],
            members=set(rec.get("members", [])),
            created_at=rec.get("createdAt", 0),
        )

    def to_record(self) -> dict:
        # Sorted so rewrites of an unchanged group are byte-identical
        return {
            "groupId": self.group_id,
            "groupName": self.group_name,
            "members": sorted(self.members),
            "createdAt": self.created_at,
        }


@dataclass
class Message:
    """Represents a message sent to a group.

    Attributes:
        message_id (str): Server generated unique identifier
        group_id (str): Group the message was sent to
        sender_id (str): User ID of the sender
        text (str): Message body
        timestamp (int): Milliseconds, strictly increasing per insertion
    """
    message_id: str
    group_id: str
    sender_id: str
    text: str
    timestamp: int

    @classmethod
    def from_record(cls, rec: dict) -> "Message":
        return cls(
            message_id=rec["messageId"],
            group_id=rec["groupId"],
            sender_id=rec["senderId"],
            text=rec["messageText"],
            timestamp=rec["timestamp"],
        )

    def to_record(self) -> dict:
        return {
            "messageId": self.message_id,
            "groupId": self.group_id,
            "senderId": self.sender_id,
            "messageText": self.text,
            "timestamp": self.timestamp,
        }

    def enriched(self, sender: Optional[User]) -> dict:
        """Wire form with the sender's username resolved."""
        rec = self.to_record()
        rec["senderUsername"] = sender.username if sender else UNKNOWN_USER
        return rec
