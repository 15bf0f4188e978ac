import contextlib
import json
import os
import time
import uuid
from typing import Dict, Iterable, List, Optional

from .errors import PersistenceError
from .models import User, Message, Group
from ..utils.logger import setup_logger

logger = setup_logger('chatrelay.repo')

COLLECTIONS = ("users", "groups", "messages")


def new_id() -> str:
    """Generate a unique record identifier."""
    return uuid.uuid4().hex


def now_ms() -> int:
    return int(time.time() * 1000)


DECODERS = {"users": User.from_record, "groups": Group.from_record, "messages": Message.from_record}


def check_document(doc: dict):
    """Check that every collection is a list of records the models can decode.

    A missing collection counts as empty.

    Raises:
        PersistenceError: On the first malformed collection or record
    """
    for name, decode in DECODERS.items():
        records = doc.get(name, [])
        if not isinstance(records, list):
            raise PersistenceError(f"Collection '{name}' is not a list")
        for i, rec in enumerate(records):
            if not isinstance(rec, dict):
                raise PersistenceError(f"Record {name}[{i}] is not an object")
            try:
                decoded = decode(rec)
            except (KeyError, TypeError, ValueError) as e:
                raise PersistenceError(f"Record {name}[{i}] is malformed: {e!r}") from e
            if name == "messages" and not isinstance(decoded.timestamp, int):
                raise PersistenceError(f"Record {name}[{i}] has a non-integer timestamp")


class Store:
    """In-memory document of users, groups and messages.

    Holds three ordered lists of JSON-compatible records. Subclasses decide
    where the document is loaded from and written to; the whole document is
    rewritten on every commit.
    """

    def __init__(self):
        self.users: List[dict] = []
        self.groups: List[dict] = []
        self.messages: List[dict] = []
        self._depth = 0
        self._dirty = False

    def load(self):
        """Populate the collections from the backing medium."""

    def save(self) -> bool:
        """Write the collections to the backing medium.

        Returns:
            bool: True if the document was written
        """
        return True

    def document(self) -> dict:
        return {"users": self.users, "groups": self.groups, "messages": self.messages}

    def replace(self, doc: dict):
        """Swap in a whole document after checking its shape.

        Raises:
            PersistenceError: If a collection is not a list of decodable records
        """
        check_document(doc)
        for name in COLLECTIONS:
            setattr(self, name, list(doc.get(name) or []))

    @contextlib.contextmanager
    def transaction(self):
        """Group several mutations into a single save.

        Nested blocks save once, when the outermost block exits. Each server
        operation writes a single record today; callers that change several
        records use this to save once.
        """
        self._depth += 1
        try:
            yield self
        finally:
            self._depth -= 1
            if self._depth == 0 and self._dirty:
                self._dirty = False
                self.save()

    def commit(self):
        """Persist now, or at the end of the enclosing transaction."""
        if self._depth:
            self._dirty = True
        else:
            self.save()


class MemoryStore(Store):
    """Store without a backing file, used by tests and throwaway servers."""


class JsonFileStore(Store):
    """Store backed by a single JSON document on disk."""

    def __init__(self, path: str):
        """Initialize the store and load the existing document.

        Args:
            path (str): Path to the JSON file

        Side Effects:
            - Creates directory structure if not exists
            - Loads existing records from file
        """
        super().__init__()
        self.path = path
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self.load()

    def _read(self) -> dict:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                doc = json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Cannot read {self.path}: {e}") from e
        if not isinstance(doc, dict):
            raise PersistenceError(f"Cannot read {self.path}: top level is not an object")
        return doc

    def _write(self):
        tmp_path = self.path + ".tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self.document(), f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Cannot write {self.path}: {e}") from e

    def load(self):
        """Load the document, starting empty if it is missing or unreadable.

        Side Effects:
            - Replaces all in-memory collections
            - Logs an error if the file exists but cannot be parsed or
              does not have the users/groups/messages record layout
        """
        if not os.path.exists(self.path):
            logger.info(f"No store at {self.path}, starting empty")
            return
        try:
            self.replace(self._read())
        except PersistenceError as e:
            logger.error(f"Store {self.path} not loaded: {e}; continuing with empty in-memory state")
            return
        logger.info(
            f"Loaded store {self.path}: {len(self.users)} users, "
            f"{len(self.groups)} groups, {len(self.messages)} messages"
        )

    def save(self) -> bool:
        """Rewrite the whole document.

        Failures are logged and reported through the return value; the
        in-memory state is kept either way.
        """
        try:
            self._write()
        except PersistenceError as e:
            logger.error(f"{e}; in-memory state kept, changes are not durable")
            return False
        logger.debug(f"Store saved to {self.path}")
        return True


class UsersRepo:
    """Repository for managing registered users."""

    def __init__(self, store: Store):
        self.store = store
        self.users_by_id: Dict[str, User] = {}
        for rec in store.users:
            user = User.from_record(rec)
            self.users_by_id[user.user_id] = user

    def create(self, username: str, password_hash: str) -> User:
        """Add a new user to the repository.

        Args:
            username (str): Unique login name
            password_hash (str): Hash of the user's password

        Returns:
            User: The newly created user

        Side Effects:
            - Appends the user record and persists the store
            - Logs user registration
        """
        user = User(user_id=new_id(), username=username, password_hash=password_hash)
        self.users_by_id[user.user_id] = user
        self.store.users.append(user.to_record())
        self.store.commit()
        logger.info(f"New user registered: {user.username} (ID: {user.user_id})")
        return user

    def get(self, user_id: str) -> Optional[User]:
        return self.users_by_id.get(user_id)

    def all(self) -> Iterable[User]:
        return self.users_by_id.values()

    def find_by_username(self, username: str) -> Optional[User]:
        """Find user by username (case sensitive).

        Returns:
            Optional[User]: User object if found, None otherwise
        """
        for user in self.users_by_id.values():
            if user.username == username:
                return user
        return None


class GroupsRepo:
    """Repository for managing chat groups and their memberships."""

    def __init__(self, store: Store):
        self.store = store
        self.groups_by_id: Dict[str, Group] = {}
        for rec in store.groups:
            group = Group.from_record(rec)
            self.groups_by_id[group.group_id] = group

    def _save_group(self, group: Group):
        rec = group.to_record()
        for i, existing in enumerate(self.store.groups):
            if existing.get("groupId") == group.group_id:
                self.store.groups[i] = rec
                break
        else:
            self.store.groups.append(rec)
        self.store.commit()

    def create_group(self, name: str, creator_id: str, created_at: Optional[int] = None) -> Group:
        """Create a new chat group with the creator as sole member.

        Args:
            name (str): Display name for the group
            creator_id (str): User ID of group creator
            created_at (int, optional): Creation timestamp, defaults to now

        Returns:
            Group: Newly created group object

        Side Effects:
            - Saves group to the store
            - Logs group creation
        """
        group = Group(
            group_id=new_id(),
            group_name=name,
            members={creator_id},
            created_at=now_ms() if created_at is None else created_at,
        )
        self.groups_by_id[group.group_id] = group
        self._save_group(group)
        logger.info(f"New group created: {name} ({group.group_id}) by user {creator_id}")
        return group

    def add_member(self, group_id: str, user_id: str) -> bool:
        """Add a member to an existing group.

        Returns:
            bool: True if user was added, False if already a member

        Raises:
            ValueError: If group does not exist
        """
        group = self.groups_by_id.get(group_id)
        if not group:
            logger.warning(f"Attempt to add member to non-existent group: {group_id}")
            raise ValueError(f"Group {group_id} does not exist")

        if user_id in group.members:
            logger.debug(f"User {user_id} already in group {group_id}")
            return False

        group.members.add(user_id)
        self._save_group(group)
        logger.info(f"Added user {user_id} to group {group_id}")
        return True

    def get_group(self, group_id: str) -> Optional[Group]:
        return self.groups_by_id.get(group_id)

    def all(self) -> List[Group]:
        return list(self.groups_by_id.values())

    def get_user_groups(self, user_id: str) -> List[Group]:
        """Get all groups that a user is a member of."""
        return [
            group for group in self.groups_by_id.values()
            if user_id in group.members
        ]

    def is_member(self, group_id: str, user_id: str) -> bool:
        """Check if a user is a member of a specific group.

        Returns:
            bool: True if user is a member, False if not or if group doesn't exist
        """
        group = self.groups_by_id.get(group_id)
        return group is not None and user_id in group.members


class MessagesRepo:
    """Repository for group messages."""

    def __init__(self, store: Store):
        self.store = store
        self._messages: List[Message] = [Message.from_record(rec) for rec in store.messages]
        self._last_ts = max((m.timestamp for m in self._messages), default=0)

    def _next_timestamp(self) -> int:
        # Strictly increasing even if the wall clock stalls or steps back
        self._last_ts = max(now_ms(), self._last_ts + 1)
        return self._last_ts

    def append(self, group_id: str, sender_id: str, text: str) -> Message:
        """Store a new message.

        Args:
            group_id (str): Group the message was sent to
            sender_id (str): User ID of the sender
            text (str): Message body

        Returns:
            Message: The stored message with its ID and timestamp

        Side Effects:
            - Appends message record and persists the store
        """
        m = Message(
            message_id=new_id(),
            group_id=group_id,
            sender_id=sender_id,
            text=text,
            timestamp=self._next_timestamp(),
        )
        self._messages.append(m)
        self.store.messages.append(m.to_record())
        self.store.commit()
        logger.info(f"New group message saved: {m.message_id} from {sender_id} to group {group_id}")
        return m

    def get_group_messages(self, group_id: str, limit: int = 0) -> List[Message]:
        """Get message history for a group.

        Args:
            group_id (str): Group to read
            limit (int, optional): Max messages to return, 0 for all

        Returns:
            list[Message]: Messages sorted by timestamp, newest last
        """
        messages = [m for m in self._messages if m.group_id == group_id]
        messages.sort(key=lambda m: m.timestamp)
        return messages[-limit:] if limit > 0 else messages
