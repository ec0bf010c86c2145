from typing import Any, Protocol

from app.core.logging import get_logger
from app.realtime.messages import ChatMessage

logger = get_logger(__name__)


class SocketServer(Protocol):
    async def emit(self, event: str, data: Any = None, **kwargs: Any) -> None: ...

    async def enter_room(self, sid: str, room: str) -> None: ...

    async def leave_room(self, sid: str, room: str) -> None: ...


def room_channel(room_id: str) -> str:
    return f"room:{room_id}"


class FanoutBroadcaster:
    """Delivers room events to every connection subscribed to the room.

    Each call awaits the emit before returning, so events broadcast from this
    process reach a room in the order the calls were made.
    """

    def __init__(self, server: SocketServer) -> None:
        self._server = server

    async def subscribe(self, sid: str, room_id: str) -> None:
        await self._server.enter_room(sid, room_channel(room_id))

    async def unsubscribe(self, sid: str, room_id: str) -> None:
        await self._server.leave_room(sid, room_channel(room_id))

    async def emit(
        self,
        room_id: str,
        event: str,
        payload: Any,
        *,
        skip_sid: str | None = None,
    ) -> None:
        await self._server.emit(event, payload, room=room_channel(room_id), skip_sid=skip_sid)

    async def send_to(self, sid: str, event: str, payload: Any) -> None:
        await self._server.emit(event, payload, room=sid)

    async def broadcast(self, room_id: str, message: ChatMessage) -> None:
        await self.emit(room_id, "new-message", message.to_payload())
        if message.type == "gift" and message.gift:
            await self.emit(
                room_id,
                "gift-animation",
                {
                    "gift": message.gift,
                    "sender": message.sender,
                    "timestamp": message.timestamp.isoformat(),
                },
            )
        logger.debug("Broadcast %s %s to room %s", message.type, message.id, room_id)

    async def participants_updated(self, room_id: str, participants: list[dict]) -> None:
        await self.emit(room_id, "participants-updated", participants)
