"""Session registry: room membership and per-connection metadata."""

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from roomrelay.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_DISPLAY_NAME = "Anonymous"


@dataclass
class Member:
    """Registry entry for one connection."""
    connection_id: str
    display_name: Optional[str] = None
    room_id: Optional[str] = None


class SessionRegistry:
    """Authoritative mapping of connections to rooms.

    Rooms are never created or deleted explicitly: a room is the set of
    connections whose ``room_id`` equals its key, and its entry disappears
    as soon as the last member leaves. Every public method runs under a
    single lock and never performs I/O, so each call is atomic with respect
    to every other call.
    """

    def __init__(self, default_display_name: str = DEFAULT_DISPLAY_NAME):
        """Initialize registry.

        Args:
            default_display_name: Name reported for connections that never set one
        """
        self.default_display_name = default_display_name

        self._lock = threading.Lock()
        self._members: Dict[str, Member] = {}
        # room_id -> connection ids in join order (dict used as ordered set)
        self._rooms: Dict[str, Dict[str, None]] = {}

    def join(self, connection_id: str, room_id: str, display_name: Optional[str] = None) -> List[str]:
        """Put a connection into a room.

        A connection already in another room is moved silently; the caller
        owes the old room a departure notice.

        Args:
            connection_id: Joining connection
            room_id: Room key
            display_name: Name to show to other members

        Returns:
            Ids of the other members present at the moment of joining
        """
        with self._lock:
            member = self._members.get(connection_id)
            if member is None:
                member = Member(connection_id=connection_id)
                self._members[connection_id] = member
            elif member.room_id is not None:
                self._detach(member)

            member.display_name = display_name or None
            peers = list(self._rooms.get(room_id, {}))

            self._rooms.setdefault(room_id, {})[connection_id] = None
            member.room_id = room_id

        logger.debug(f"{connection_id} joined {room_id} ({len(peers)} peers already present)")
        return peers

    def leave(self, connection_id: str) -> Optional[str]:
        """Remove a connection from its room.

        Returns:
            The room that was left, or None if the connection held no room
        """
        with self._lock:
            member = self._members.get(connection_id)
            if member is None or member.room_id is None:
                return None
            return self._detach(member)

    def forget(self, connection_id: str) -> Optional[str]:
        """Leave the current room and drop all metadata for a connection.

        Returns:
            The room that was left, or None
        """
        with self._lock:
            member = self._members.pop(connection_id, None)
            if member is None or member.room_id is None:
                return None
            return self._detach(member)

    def members_of(self, room_id: str, exclude: Optional[str] = None) -> List[str]:
        """Get connection ids in a room, in join order.

        Args:
            room_id: Room key
            exclude: Optional connection id to leave out

        Returns:
            List of connection ids (empty for unknown rooms)
        """
        with self._lock:
            return [cid for cid in self._rooms.get(room_id, {}) if cid != exclude]

    def room_of(self, connection_id: str) -> Optional[str]:
        with self._lock:
            member = self._members.get(connection_id)
            return member.room_id if member else None

    def display_name_of(self, connection_id: str) -> str:
        with self._lock:
            member = self._members.get(connection_id)
            if member is None or not member.display_name:
                return self.default_display_name
            return member.display_name

    def rooms(self) -> Dict[str, List[str]]:
        """Snapshot of every non-empty room."""
        with self._lock:
            return {room_id: list(members) for room_id, members in self._rooms.items()}

    def __contains__(self, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self._members

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)

    def _detach(self, member: Member) -> str:
        # Caller holds the lock and has checked member.room_id is set.
        room_id = member.room_id
        members = self._rooms.get(room_id)
        if members is not None:
            members.pop(member.connection_id, None)
            if not members:
                del self._rooms[room_id]
        member.room_id = None

        logger.debug(f"{member.connection_id} left {room_id}")
        return room_id
