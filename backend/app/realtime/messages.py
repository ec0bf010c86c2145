import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

MESSAGE_TYPES = frozenset({"message", "gift", "system", "join", "leave", "kick", "mute"})
DURABLE_TYPES = frozenset({"message", "gift"})
PRIVATE_ROOM_PREFIX = "private_"
SYSTEM_SENDER = "System"
TEMP_ID_MARKER = "temp_"
CONFIRMED_SUFFIX = "_confirmed"

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
_SUFFIX_LENGTH = 9


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_private_room(room_id: str) -> bool:
    return room_id.startswith(PRIVATE_ROOM_PREFIX)


def confirmed_message_id(temp_id: str) -> str:
    """Map a client's optimistic ``temp_<x>`` id to the id the server confirms."""
    return temp_id.replace(TEMP_ID_MARKER, "", 1) + CONFIRMED_SUFFIX


def generate_message_id(sender: str, now: float | None = None) -> str:
    # Not collision-free: two senders with the same name in the same millisecond
    # share a prefix and only the random suffix separates them.
    millis = int((time.time() if now is None else now) * 1000)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(_SUFFIX_LENGTH))
    return f"{millis}_{sender}_{suffix}"


@dataclass
class ChatMessage:
    id: str
    room_id: str
    sender: str
    content: str
    type: str = "message"
    role: str = "user"
    level: int = 1
    gift: dict[str, Any] | None = None
    timestamp: datetime | None = None
    is_private: bool = False

    def __post_init__(self) -> None:
        if self.type not in MESSAGE_TYPES:
            raise ValueError(f"unknown message type: {self.type}")
        if self.timestamp is None:
            self.timestamp = _utc_now()

    @property
    def is_durable(self) -> bool:
        return self.type in DURABLE_TYPES

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "roomId": self.room_id,
            "sender": self.sender,
            "content": self.content,
            "type": self.type,
            "role": self.role,
            "level": self.level,
            "gift": self.gift,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.is_private:
            payload["isPrivate"] = True
        return payload


def build_chat_message(
    room_id: str,
    sender: str,
    content: str,
    *,
    message_type: str = "message",
    role: str = "user",
    level: int = 1,
    gift: dict[str, Any] | None = None,
    temp_id: str | None = None,
) -> ChatMessage:
    message_id = confirmed_message_id(temp_id) if temp_id else generate_message_id(sender)
    return ChatMessage(
        id=message_id,
        room_id=room_id,
        sender=sender,
        content=content,
        type=message_type,
        role=role,
        level=level,
        gift=gift,
        is_private=is_private_room(room_id),
    )


def system_message(
    room_id: str,
    content: str,
    *,
    message_type: str = "system",
    sender: str = SYSTEM_SENDER,
    role: str = "system",
) -> ChatMessage:
    return ChatMessage(
        id=generate_message_id("system"),
        room_id=room_id,
        sender=sender,
        content=content,
        type=message_type,
        role=role,
        is_private=is_private_room(room_id),
    )
