"""Per-room presence tables and the session manager that owns them.

A room's table remembers everyone who joined it while the process is alive.
Leaving or disconnecting only flips ``is_online``; the record goes away when
the user is kicked or the whole room is dropped. The member count a room
reports is always ``len(table)``.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Participant:
    id: str
    username: str
    role: str
    is_online: bool = True
    joined_at: datetime = field(default_factory=_utc_now)
    last_seen: datetime = field(default_factory=_utc_now)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role,
            "isOnline": self.is_online,
            "joinedAt": self.joined_at.isoformat(),
            "lastSeen": self.last_seen.isoformat(),
        }


class PresenceTable:
    def __init__(self, room_id: str) -> None:
        self.room_id = room_id
        # insertion order is join order, which is the order clients display
        self._participants: dict[str, Participant] = {}

    def __len__(self) -> int:
        return len(self._participants)

    def __contains__(self, username: object) -> bool:
        return username in self._participants

    def get(self, username: str) -> Participant | None:
        return self._participants.get(username)

    def join(self, username: str, role: str, *, refresh_role: bool = False) -> Participant:
        now = _utc_now()
        participant = self._participants.get(username)
        if participant:
            participant.is_online = True
            participant.last_seen = now
            if refresh_role:
                participant.role = role
            return participant

        participant = Participant(
            id=uuid4().hex,
            username=username,
            role=role,
            is_online=True,
            joined_at=now,
            last_seen=now,
        )
        self._participants[username] = participant
        return participant

    def leave(self, username: str) -> Participant | None:
        participant = self._participants.get(username)
        if not participant:
            return None
        participant.is_online = False
        participant.last_seen = _utc_now()
        return participant

    def kick(self, username: str) -> Participant | None:
        return self._participants.pop(username, None)

    def snapshot(self) -> list[Participant]:
        return list(self._participants.values())


class SessionManager:
    """Owns every room's PresenceTable for this process.

    All calls happen on the event loop thread, so there is no locking. The
    state is not shared between processes.
    """

    def __init__(self) -> None:
        self._tables: dict[str, PresenceTable] = {}

    def table(self, room_id: str) -> PresenceTable | None:
        return self._tables.get(room_id)

    def join(
        self,
        room_id: str,
        username: str,
        role: str,
        *,
        refresh_role: bool = False,
    ) -> Participant:
        # only a join creates a table
        table = self._tables.get(room_id)
        if table is None:
            table = PresenceTable(room_id)
            self._tables[room_id] = table
        return table.join(username, role, refresh_role=refresh_role)

    def leave(self, room_id: str, username: str) -> Participant | None:
        table = self._tables.get(room_id)
        return table.leave(username) if table else None

    def kick(self, room_id: str, username: str) -> Participant | None:
        table = self._tables.get(room_id)
        return table.kick(username) if table else None

    def is_present(self, room_id: str, username: str) -> bool:
        table = self._tables.get(room_id)
        return bool(table and username in table)

    def snapshot(self, room_id: str) -> list[Participant]:
        table = self._tables.get(room_id)
        return table.snapshot() if table else []

    def snapshot_payload(self, room_id: str) -> list[dict[str, Any]]:
        return [participant.to_payload() for participant in self.snapshot(room_id)]

    def member_count(self, room_id: str) -> int:
        table = self._tables.get(room_id)
        return len(table) if table else 0

    def drop_room(self, room_id: str) -> bool:
        return self._tables.pop(room_id, None) is not None

    def room_ids(self) -> list[str]:
        return list(self._tables.keys())

    def clear(self) -> None:
        self._tables.clear()
