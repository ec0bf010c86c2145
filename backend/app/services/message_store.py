import json
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.models import ChatMessageRecord
from app.db.session import SessionLocal
from app.realtime.messages import is_private_room
from app.services.auth_service import get_user_by_username

MAX_HISTORY_LIMIT = 200


def _serialize_record(record: ChatMessageRecord) -> dict[str, Any]:
    return {
        "id": str(record.id),
        "roomId": record.room_id,
        "sender": record.username,
        "content": record.content,
        "type": record.message_type,
        "role": record.user_role,
        "level": record.user_level,
        "gift": json.loads(record.media_data) if record.media_data else None,
        "timestamp": record.created_at,
        "isPrivate": record.is_private,
    }


class MessageStore:
    """Durable chat history on top of the ``chat_messages`` table."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    def insert(
        self,
        room_id: str,
        sender: str,
        content: str,
        message_type: str,
        meta: dict[str, Any],
    ) -> int:
        gift = meta.get("gift")
        db = self._session_factory()
        try:
            user = get_user_by_username(db, sender)
            record = ChatMessageRecord(
                room_id=room_id,
                user_id=user.id if user else None,
                username=sender,
                content=content,
                media_data=json.dumps(gift) if gift else None,
                message_type=message_type,
                user_role=meta.get("role") or "user",
                user_level=meta.get("level") or 1,
                is_private=bool(meta.get("is_private", is_private_room(room_id))),
            )
            db.add(record)
            db.commit()
            return record.id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def history(
        self,
        room_id: str,
        *,
        limit: int = 50,
        before: datetime | None = None,
        after: datetime | None = None,
    ) -> list[dict[str, Any]]:
        safe_limit = max(1, min(MAX_HISTORY_LIMIT, int(limit)))
        stmt = select(ChatMessageRecord).where(ChatMessageRecord.room_id == room_id)
        if before is not None:
            stmt = stmt.where(ChatMessageRecord.created_at < before)
        if after is not None:
            stmt = stmt.where(ChatMessageRecord.created_at > after)
        stmt = stmt.order_by(ChatMessageRecord.created_at.desc(), ChatMessageRecord.id.desc()).limit(
            safe_limit
        )

        db = self._session_factory()
        try:
            records = list(db.scalars(stmt).all())
        finally:
            db.close()
        records.reverse()
        return [_serialize_record(record) for record in records]

    def delete(self, message_id: int) -> str | None:
        """Delete one message and return the room it belonged to."""
        db = self._session_factory()
        try:
            record = db.scalar(select(ChatMessageRecord).where(ChatMessageRecord.id == message_id))
            if not record:
                return None
            room_id = record.room_id
            db.delete(record)
            db.commit()
            return room_id
        finally:
            db.close()
