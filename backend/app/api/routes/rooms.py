from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.api.deps import get_chat_runtime, get_current_user, require_min_role
from app.core.config import get_settings
from app.db.models import User
from app.db.session import get_db
from app.realtime.runtime import ChatRuntime
from app.schemas.chat import MessageHistoryRead, ParticipantRead
from app.schemas.room import ParticipantAddRequest, RoomCreateRequest, RoomRead
from app.services.admin_service import normalize_role
from app.services.room_service import RoomInfo, build_room_snapshot

router = APIRouter()


def _require_room(runtime: ChatRuntime, room_id: str) -> RoomInfo:
    room = runtime.rooms.get(room_id)
    if not room:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Room with ID {room_id} not found",
        )
    return room


def _snapshot(runtime: ChatRuntime, room_id: str) -> RoomRead:
    room = _require_room(runtime, room_id)
    return build_room_snapshot(room, runtime.sessions.member_count(room_id))


@router.get("", response_model=list[RoomRead])
async def list_rooms(runtime: ChatRuntime = Depends(get_chat_runtime)) -> list[RoomRead]:
    return [
        build_room_snapshot(room, runtime.sessions.member_count(room.id))
        for room in runtime.rooms.list_rooms()
    ]


@router.post("", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
async def create_room(
    payload: RoomCreateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> RoomRead:
    allowed = get_settings().room_allowed_capacities
    if payload.maxMembers not in allowed:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid capacity. Must be one of {', '.join(str(value) for value in allowed)}",
        )
    if not payload.createdBy:
        payload = payload.model_copy(update={"createdBy": current_user.username})
    room = await run_in_threadpool(runtime.rooms.create, payload, db)
    return build_room_snapshot(room, runtime.sessions.member_count(room.id))


@router.post("/{room_id}/join", response_model=RoomRead)
async def join_room(
    room_id: str,
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> RoomRead:
    snapshot = _snapshot(runtime, room_id)
    if snapshot.members >= snapshot.maxMembers:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Room is at maximum capacity",
        )
    return snapshot


@router.delete("/{room_id}")
async def delete_room(
    room_id: str,
    _: User = Depends(require_min_role("admin")),
    db: Session = Depends(get_db),
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> dict:
    if await run_in_threadpool(runtime.rooms.delete, room_id, db) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    await runtime.close_room(room_id)
    return {"message": "Room deleted successfully"}


@router.get("/{room_id}/participants", response_model=list[ParticipantRead])
async def list_participants(
    room_id: str,
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> list[dict]:
    _require_room(runtime, room_id)
    return runtime.sessions.snapshot_payload(room_id)


@router.post(
    "/{room_id}/participants",
    response_model=ParticipantRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_participant(
    room_id: str,
    payload: ParticipantAddRequest,
    _: User = Depends(get_current_user),
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> dict:
    _require_room(runtime, room_id)
    participant = runtime.sessions.join(
        room_id,
        payload.username.strip(),
        normalize_role(payload.role),
        refresh_role=True,
    )
    return participant.to_payload()


@router.get("/{room_id}/messages/history", response_model=MessageHistoryRead)
def message_history(
    room_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    before: datetime | None = None,
    after: datetime | None = None,
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> MessageHistoryRead:
    messages = runtime.sink.store.history(room_id, limit=limit, before=before, after=after)
    return MessageHistoryRead(
        messages=messages,
        hasMore=len(messages) == limit,
        oldest=messages[0]["timestamp"] if messages else None,
        newest=messages[-1]["timestamp"] if messages else None,
    )
