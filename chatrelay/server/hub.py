import asyncio
from typing import Dict, Optional, Set

from ..utils.logger import setup_logger

logger = setup_logger('chatrelay.hub')


def envelope(event: str, data: dict) -> dict:
    return {"event": event, "data": data}


class Hub:
    """Event routing hub for real-time delivery.

    Every live connection has a dedicated asyncio Queue that its transport
    writer drains. Rooms group connection IDs under a group ID; broadcasts
    put one envelope into the queue of each connection in the room.

    All mutation happens on the event loop thread, so no lock is taken.
    Queues are unbounded: fan-out never waits on a slow reader.
    """

    def __init__(self):
        """Initialize message hub.

        Attributes:
            queues (Dict[str, asyncio.Queue]): Maps connection IDs to their outbound queues
            rooms (Dict[str, Set[str]]): Maps group IDs to the connection IDs joined to them
        """
        self.queues: Dict[str, asyncio.Queue] = {}
        self.rooms: Dict[str, Set[str]] = {}
        logger.info("Message Hub initialized")

    def register(self, connection_id: str) -> asyncio.Queue:
        """Register a new outbound queue for a connection.

        Returns:
            asyncio.Queue: New queue for the connection's events
        """
        q = asyncio.Queue()
        self.queues[connection_id] = q
        logger.info(f"Registered queue for connection {connection_id}")
        logger.debug(f"Active connections: {list(self.queues.keys())}")
        return q

    def remove(self, connection_id: str):
        """Drop a connection's queue and take it out of every room."""
        self.queues.pop(connection_id, None)
        for room in list(self.rooms_of(connection_id)):
            self.leave(room, connection_id)
        logger.info(f"Removed queue for connection {connection_id}")
        logger.debug(f"Remaining active connections: {list(self.queues.keys())}")

    def join(self, room: str, connection_id: str):
        self.rooms.setdefault(room, set()).add(connection_id)
        logger.debug(f"Connection {connection_id} joined room {room} ({len(self.rooms[room])} in room)")

    def leave(self, room: str, connection_id: str):
        members = self.rooms.get(room)
        if not members:
            return
        members.discard(connection_id)
        if not members:
            del self.rooms[room]
        logger.debug(f"Connection {connection_id} left room {room}")

    def members(self, room: str) -> Set[str]:
        return set(self.rooms.get(room, ()))

    def rooms_of(self, connection_id: str) -> Set[str]:
        return {room for room, members in self.rooms.items() if connection_id in members}

    def send(self, connection_id: str, event: str, data: dict) -> bool:
        """Queue an event for a single connection.

        Returns:
            bool: True if the event was queued, False if the connection is gone
        """
        q = self.queues.get(connection_id)
        if q is None:
            logger.warning(f"Failed to send {event} to connection {connection_id} - not connected")
            return False
        q.put_nowait(envelope(event, data))
        return True

    def broadcast(self, room: str, event: str, data: dict, exclude: Optional[str] = None) -> int:
        """Queue an event for every connection in a room.

        Args:
            room (str): Group ID of the room
            event (str): Event name
            data (dict): Event payload, shared by all recipients
            exclude (str, optional): Connection ID to skip, usually the sender

        Returns:
            int: Number of connections the event was queued for
        """
        sent = 0
        for connection_id in self.members(room):
            if connection_id == exclude:
                continue
            if self.send(connection_id, event, data):
                sent += 1
        logger.debug(f"Broadcast {event} to room {room}: {sent} recipients")
        return sent
