from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import Room
from app.realtime.messages import PRIVATE_ROOM_PREFIX, is_private_room
from app.schemas.room import RoomCreateRequest, RoomRead

PRIVATE_ROOM_CAPACITY = 2


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RoomInfo:
    id: str
    name: str
    description: str
    managed_by: str
    max_members: int
    created_by: str
    type: str = "room"
    created_at: datetime = field(default_factory=_utc_now)


DEFAULT_ROOMS = (
    RoomInfo(
        id="1",
        name="General Chat",
        description="General Chat - Welcome to merchant official chatroom",
        managed_by="admin_user",
        max_members=100,
        created_by="admin_user",
    ),
    RoomInfo(
        id="2",
        name="Tech Talk",
        description="Tech Talk - Welcome to merchant official chatroom",
        managed_by="tech_admin",
        max_members=50,
        created_by="tech_admin",
    ),
    RoomInfo(
        id="3",
        name="Indonesia",
        description="Indonesia - Welcome to merchant official chatroom",
        managed_by="admin_user",
        max_members=80,
        created_by="admin_user",
    ),
)


def _private_room_info(room_id: str) -> RoomInfo:
    members = room_id[len(PRIVATE_ROOM_PREFIX):].split("_")
    return RoomInfo(
        id=room_id,
        name="Private chat",
        description=f"Private chat between {' and '.join(members)}",
        managed_by="system",
        max_members=PRIVATE_ROOM_CAPACITY,
        created_by="system",
        type="private",
    )


def build_room_snapshot(room: RoomInfo, member_count: int) -> RoomRead:
    return RoomRead(
        id=room.id,
        name=room.name,
        description=room.description,
        managedBy=room.managed_by,
        type=room.type,
        members=member_count,
        maxMembers=room.max_members,
        createdBy=room.created_by,
        createdAt=room.created_at,
    )


class RoomDirectory:
    """Room metadata by id. Presence lives elsewhere; a room's member count
    comes from its presence table at read time."""

    def __init__(self, seed: tuple[RoomInfo, ...] = DEFAULT_ROOMS) -> None:
        self._rooms: dict[str, RoomInfo] = {}
        self._lock = Lock()
        for room in seed:
            self._rooms[room.id] = RoomInfo(**room.__dict__)

    def list_rooms(self) -> list[RoomInfo]:
        with self._lock:
            return list(self._rooms.values())

    def get(self, room_id: str) -> RoomInfo | None:
        with self._lock:
            room = self._rooms.get(room_id)
        if room is None and is_private_room(room_id):
            return _private_room_info(room_id)
        return room

    def load(self, db: Session) -> int:
        rows = db.scalars(select(Room)).all()
        if not rows:
            # store the built-in rooms so created rooms get ids after them
            with self._lock:
                seeded = [room for room in self._rooms.values() if room.id.isdigit()]
            for room in seeded:
                db.add(
                    Room(
                        id=int(room.id),
                        name=room.name,
                        description=room.description,
                        managed_by=room.managed_by,
                        type=room.type,
                        max_members=room.max_members,
                        created_by=room.created_by,
                        created_at=room.created_at,
                    )
                )
            db.commit()
            rows = db.scalars(select(Room)).all()
        with self._lock:
            for row in rows:
                self._rooms[str(row.id)] = self._from_row(row)
        return len(rows)

    def create(self, payload: RoomCreateRequest, db: Session | None = None) -> RoomInfo:
        creator = (payload.createdBy or "admin").strip() or "admin"
        if db is not None:
            row = Room(
                name=payload.name.strip(),
                description=payload.description.strip(),
                managed_by=creator,
                type=payload.type or "room",
                max_members=payload.maxMembers,
                created_by=creator,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            room = self._from_row(row)
        else:
            with self._lock:
                next_id = max((int(key) for key in self._rooms if key.isdigit()), default=0) + 1
            room = RoomInfo(
                id=str(next_id),
                name=payload.name.strip(),
                description=payload.description.strip(),
                managed_by=creator,
                max_members=payload.maxMembers,
                created_by=creator,
                type=payload.type or "room",
            )
        with self._lock:
            self._rooms[room.id] = room
        return room

    def delete(self, room_id: str, db: Session | None = None) -> RoomInfo | None:
        with self._lock:
            room = self._rooms.pop(room_id, None)
        if room is not None and db is not None and room_id.isdigit():
            row = db.get(Room, int(room_id))
            if row is not None:
                db.delete(row)
                db.commit()
        return room

    @staticmethod
    def _from_row(row: Room) -> RoomInfo:
        return RoomInfo(
            id=str(row.id),
            name=row.name,
            description=row.description,
            managed_by=row.managed_by,
            max_members=row.max_members,
            created_by=row.created_by,
            type=row.type,
            created_at=row.created_at or _utc_now(),
        )
