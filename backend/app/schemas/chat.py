from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter


class _CamelModel(BaseModel):
    # Clients send camelCase keys; snake_case is accepted too.
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _coerce_room_id(value: Any) -> str:
    if isinstance(value, bool):
        raise ValueError("roomId must be a string or number")
    if isinstance(value, (int, str)):
        normalized = str(value).strip()
        if normalized:
            return normalized
    raise ValueError("roomId is required")


RoomId = Annotated[str, BeforeValidator(_coerce_room_id)]


class GiftPayload(_CamelModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str | int | None = None
    name: str
    icon: str | None = None
    price: int | float | None = None
    animation: str | None = None
    type: str | None = None


class JoinRoomEvent(_CamelModel):
    event: Literal["join-room"] = "join-room"
    room_id: RoomId = Field(alias="roomId")
    username: str = Field(min_length=1, max_length=50)
    role: str | None = None


class LeaveRoomEvent(_CamelModel):
    event: Literal["leave-room"] = "leave-room"
    room_id: RoomId = Field(alias="roomId")
    username: str = Field(min_length=1, max_length=50)
    role: str | None = None


class SendMessageEvent(_CamelModel):
    event: Literal["send-message"] = "send-message"
    room_id: RoomId = Field(alias="roomId")
    sender: str | None = None
    content: str = ""
    role: str | None = None
    level: int | None = None
    type: Literal["message", "gift"] = "message"
    gift: GiftPayload | None = None
    temp_id: str | None = Field(default=None, alias="tempId", max_length=128)


class KickUserEvent(_CamelModel):
    event: Literal["kick-user"] = "kick-user"
    room_id: RoomId = Field(alias="roomId")
    kicked_user: str = Field(alias="kickedUser", min_length=1)
    kicked_by: str = Field(alias="kickedBy", min_length=1)


class MuteUserEvent(_CamelModel):
    event: Literal["mute-user"] = "mute-user"
    room_id: RoomId = Field(alias="roomId")
    muted_user: str = Field(alias="mutedUser", min_length=1)
    muted_by: str = Field(alias="mutedBy", min_length=1)
    action: Literal["mute", "unmute"] = "mute"


InboundEvent = Annotated[
    Union[JoinRoomEvent, LeaveRoomEvent, SendMessageEvent, KickUserEvent, MuteUserEvent],
    Field(discriminator="event"),
]

_inbound_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)


def parse_inbound_event(event_name: str, data: Any) -> InboundEvent:
    """Validate a raw socket payload against the model for ``event_name``.

    Raises ``pydantic.ValidationError`` for malformed payloads and unknown
    event names alike.
    """
    payload = dict(data) if isinstance(data, dict) else {}
    payload["event"] = event_name
    return _inbound_adapter.validate_python(payload)


class ParticipantRead(BaseModel):
    id: str
    username: str
    role: str
    isOnline: bool
    joinedAt: datetime
    lastSeen: datetime


class ChatMessageRead(BaseModel):
    id: str
    roomId: str
    sender: str
    content: str
    type: str
    role: str = "user"
    level: int = 1
    gift: dict | None = None
    timestamp: datetime
    isPrivate: bool = False


class MessageHistoryRead(BaseModel):
    messages: list[ChatMessageRead]
    hasMore: bool
    oldest: datetime | None = None
    newest: datetime | None = None
