from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from ..utils.logger import setup_logger

logger = setup_logger('chatrelay.sessions')

ANONYMOUS = "anonymous"
IDENTIFIED = "identified"
CLOSED = "closed"


@dataclass
class ConnectionSession:
    """State of one live connection.

    Attributes:
        connection_id (str): Transport-level connection identifier
        user_id (Optional[str]): Bound user, None until the login event
        joined_group_ids (Set[str]): Rooms this connection currently occupies
        state (str): One of anonymous, identified, closed
    """
    connection_id: str
    user_id: Optional[str] = None
    joined_group_ids: Set[str] = field(default_factory=set)
    state: str = ANONYMOUS


class SessionRegistry:
    """Tracks which live connection represents which user.

    A user may hold any number of connections at once. Bindings live exactly
    as long as the connection; there is no expiry.
    """

    def __init__(self):
        self.sessions: Dict[str, ConnectionSession] = {}

    def open(self, connection_id: str) -> ConnectionSession:
        session = ConnectionSession(connection_id=connection_id)
        self.sessions[connection_id] = session
        logger.debug(f"Session opened: {connection_id}")
        return session

    def get(self, connection_id: str) -> Optional[ConnectionSession]:
        return self.sessions.get(connection_id)

    def bind(self, connection_id: str, user_id: str) -> ConnectionSession:
        """Record that a connection represents a user.

        Opens the session first if the connection is not yet known.
        """
        session = self.sessions.get(connection_id) or self.open(connection_id)
        session.user_id = user_id
        session.state = IDENTIFIED
        logger.info(f"Connection {connection_id} bound to user {user_id}")
        return session

    def lookup(self, connection_id: str) -> Optional[str]:
        session = self.sessions.get(connection_id)
        return session.user_id if session else None

    def unbind(self, connection_id: str):
        session = self.sessions.get(connection_id)
        if session and session.user_id:
            logger.info(f"Connection {connection_id} unbound from user {session.user_id}")
            session.user_id = None
            session.state = ANONYMOUS

    def close(self, connection_id: str) -> Optional[ConnectionSession]:
        """Remove a session for good and return its final state."""
        session = self.sessions.pop(connection_id, None)
        if session:
            session.state = CLOSED
            logger.debug(f"Session closed: {connection_id}")
        return session

    def connections_for(self, user_id: str) -> List[str]:
        return [cid for cid, s in self.sessions.items() if s.user_id == user_id]
