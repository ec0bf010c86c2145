from app.core.logging import get_logger
from app.realtime.broadcaster import FanoutBroadcaster
from app.realtime.connections import ConnectionRegistry
from app.realtime.messages import system_message
from app.realtime.presence import SessionManager
from app.services.room_service import RoomDirectory

logger = get_logger(__name__)

MUTE_ACTIONS = ("mute", "unmute")


class ModerationActuator:
    """Kick and mute. Kick removes the participant; mute only announces.

    Nothing here stops a muted user from sending messages.
    """

    def __init__(
        self,
        sessions: SessionManager,
        broadcaster: FanoutBroadcaster,
        registry: ConnectionRegistry,
        rooms: RoomDirectory,
    ) -> None:
        self.sessions = sessions
        self.broadcaster = broadcaster
        self.registry = registry
        self.rooms = rooms

    async def kick(self, room_id: str, target_username: str, acting_username: str) -> bool:
        if not self.sessions.is_present(room_id, target_username):
            logger.info(
                "%s tried to kick %s from room %s but they are not in it",
                acting_username,
                target_username,
                room_id,
            )
            return False

        self.sessions.kick(room_id, target_username)
        logger.info("%s kicked %s from room %s", acting_username, target_username, room_id)

        room = self.rooms.get(room_id)
        # the target is still subscribed here, so they receive their own kick event
        await self.broadcaster.emit(
            room_id,
            "user-kicked",
            {
                "roomId": room_id,
                "kickedUser": target_username,
                "kickedBy": acting_username,
                "roomName": room.name if room else "Unknown Room",
            },
        )
        await self.broadcaster.broadcast(
            room_id,
            system_message(
                room_id,
                f"{target_username} was kicked by {acting_username}",
                message_type="kick",
            ),
        )
        await self.broadcaster.participants_updated(
            room_id, self.sessions.snapshot_payload(room_id)
        )

        for sid in self.registry.sids_in_room(room_id, target_username):
            await self.broadcaster.unsubscribe(sid, room_id)
            connection = self.registry.get(sid)
            if connection:
                connection.rooms.pop(room_id, None)
        return True

    async def mute(
        self,
        room_id: str,
        target_username: str,
        acting_username: str,
        action: str = "mute",
    ) -> bool:
        if action not in MUTE_ACTIONS:
            raise ValueError(f"unknown mute action: {action}")
        logger.info("%s %sd %s in room %s", acting_username, action, target_username, room_id)

        await self.broadcaster.emit(
            room_id,
            "user-muted",
            {
                "roomId": room_id,
                "mutedUser": target_username,
                "mutedBy": acting_username,
                "action": action,
            },
        )
        await self.broadcaster.broadcast(
            room_id,
            system_message(
                room_id,
                f"{target_username} was {action}d by {acting_username}",
                message_type="mute",
            ),
        )
        return True
