"""Room registry — who receives which broadcasts.

Learn: a room is just a named set of connection ids. Rooms come into
existence on first join and disappear when the last member leaves, so a
long-running server doesn't accumulate empty rooms for every meeting it
ever saw.

The registry keeps both directions (room → members and connection →
rooms) and updates them together, so "c is a member of r" and "r is in
c's subscriptions" can never disagree.
"""


def meeting_room(meeting_id: str) -> str:
    return f"meeting:{meeting_id}"


def tenant_room(tenant_id: str) -> str:
    return f"tenant:{tenant_id}"


class RoomRegistry:
    """In-memory room membership, owned by a single BroadcastServer."""

    def __init__(self):
        self._rooms: dict[str, set[str]] = {}
        self._subscriptions: dict[str, set[str]] = {}

    def join(self, connection_id: str, room_id: str) -> None:
        self._rooms.setdefault(room_id, set()).add(connection_id)
        self._subscriptions.setdefault(connection_id, set()).add(room_id)

    def leave(self, connection_id: str, room_id: str) -> None:
        members = self._rooms.get(room_id)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._rooms[room_id]

        rooms = self._subscriptions.get(connection_id)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                del self._subscriptions[connection_id]

    def members_of(self, room_id: str) -> frozenset[str]:
        return frozenset(self._rooms.get(room_id, ()))

    def rooms_of(self, connection_id: str) -> frozenset[str]:
        return frozenset(self._subscriptions.get(connection_id, ()))

    def remove_connection(self, connection_id: str) -> None:
        """Drop a connection from every room it joined."""
        for room_id in self.rooms_of(connection_id):
            self.leave(connection_id, room_id)

    def room_counts(self) -> dict[str, int]:
        return {room_id: len(members) for room_id, members in self._rooms.items()}

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
