"""The per-process chat session and the handlers for each inbound event.

Handlers receive the ``ChatRuntime`` explicitly; nothing here reads module
globals. Each handler returns the acknowledgement sent back to the client.
"""
from collections.abc import Callable
from dataclasses import dataclass

from app.core.config import Settings, get_settings
from app.core.logging import get_logger
from app.realtime.broadcaster import FanoutBroadcaster, SocketServer
from app.realtime.connections import ConnectionIdentity, ConnectionRegistry
from app.realtime.messages import system_message
from app.realtime.moderation import ModerationActuator
from app.realtime.persistence import AsyncPersistenceSink, MessageSink
from app.realtime.presence import SessionManager
from app.realtime.router import GameBotAdapter, MessageRouter, OutgoingChat
from app.schemas.chat import (
    JoinRoomEvent,
    KickUserEvent,
    LeaveRoomEvent,
    MuteUserEvent,
    SendMessageEvent,
)
from app.services.admin_service import has_role_at_least, normalize_role
from app.services.room_service import RoomDirectory

logger = get_logger(__name__)

MODERATOR_ROLE = "mentor"

GameBotFactory = Callable[[FanoutBroadcaster], GameBotAdapter]


@dataclass
class ChatRuntime:
    settings: Settings
    registry: ConnectionRegistry
    sessions: SessionManager
    rooms: RoomDirectory
    broadcaster: FanoutBroadcaster
    sink: AsyncPersistenceSink
    router: MessageRouter
    moderation: ModerationActuator

    @property
    def game_bot(self) -> GameBotAdapter | None:
        return self.router.game_bot

    def reset(self) -> None:
        self.registry.clear()
        self.sessions.clear()

    async def close_room(self, room_id: str) -> None:
        """Drop a room's presence and detach every connection that joined it."""
        for connection in self.registry.connections():
            if connection.rooms.pop(room_id, None) is not None:
                await self.broadcaster.unsubscribe(connection.sid, room_id)
        self.sessions.drop_room(room_id)
        logger.info("Closed room %s", room_id)


def build_runtime(
    server: SocketServer,
    store: MessageSink,
    *,
    game_bot_factory: GameBotFactory | None = None,
    registry: ConnectionRegistry | None = None,
    rooms: RoomDirectory | None = None,
    settings: Settings | None = None,
) -> ChatRuntime:
    settings = settings or get_settings()
    registry = registry or ConnectionRegistry()
    rooms = rooms or RoomDirectory()
    sessions = SessionManager()
    broadcaster = FanoutBroadcaster(server)
    game_bot: GameBotAdapter | None = None
    if game_bot_factory is not None:
        try:
            game_bot = game_bot_factory(broadcaster)
        except Exception:
            # chat keeps working, bot commands get an "unavailable" reply
            logger.exception("Game bot failed to load")
    sink = AsyncPersistenceSink(store, max_queue_size=settings.chat_persistence_queue_size)
    router = MessageRouter(
        broadcaster,
        sink,
        game_bot,
        install_phrase=settings.chat_bot_install_phrase,
        sigil=settings.chat_bot_command_sigil,
        max_message_length=settings.chat_max_message_length,
    )
    return ChatRuntime(
        settings=settings,
        registry=registry,
        sessions=sessions,
        rooms=rooms,
        broadcaster=broadcaster,
        sink=sink,
        router=router,
        moderation=ModerationActuator(sessions, broadcaster, registry, rooms),
    )


def _display_name(identity: ConnectionIdentity, claimed: str | None) -> str | None:
    if identity.is_authenticated:
        return identity.username
    return claimed.strip() if isinstance(claimed, str) and claimed.strip() else None


def _can_moderate(runtime: ChatRuntime, identity: ConnectionIdentity, room_id: str) -> bool:
    if not identity.is_authenticated:
        return False
    if has_role_at_least(identity.role, MODERATOR_ROLE):
        return True
    room = runtime.rooms.get(room_id)
    return bool(room and room.managed_by == identity.username)


async def handle_join_room(runtime: ChatRuntime, sid: str, event: JoinRoomEvent) -> dict:
    connection = runtime.registry.get(sid)
    if connection is None:
        return {"ok": False, "error": "unknown connection"}

    room_id = event.room_id
    await runtime.broadcaster.subscribe(sid, room_id)

    identity = connection.identity
    if not identity.is_authenticated:
        # anonymous connections only listen, they are not listed as participants
        await runtime.broadcaster.send_to(
            sid, "participants-updated", runtime.sessions.snapshot_payload(room_id)
        )
        return {"ok": True, "roomId": room_id, "participant": None}

    username = identity.username
    role = normalize_role(identity.role or event.role)
    participant = runtime.sessions.join(room_id, username, role)
    connection.rooms[room_id] = username
    logger.info("%s joined room %s", username, room_id)

    join_message = system_message(
        room_id, f"{username} joined the room", message_type="join", sender=username, role=role
    )
    await runtime.broadcaster.emit(room_id, "user-joined", join_message.to_payload(), skip_sid=sid)
    await runtime.broadcaster.participants_updated(
        room_id, runtime.sessions.snapshot_payload(room_id)
    )
    return {"ok": True, "roomId": room_id, "participant": participant.to_payload()}


async def handle_leave_room(runtime: ChatRuntime, sid: str, event: LeaveRoomEvent) -> dict:
    connection = runtime.registry.get(sid)
    if connection is None:
        return {"ok": False, "error": "unknown connection"}

    room_id = event.room_id
    await runtime.broadcaster.unsubscribe(sid, room_id)
    username = connection.rooms.pop(room_id, None)
    if username is None:
        return {"ok": True, "roomId": room_id}

    participant = runtime.sessions.leave(room_id, username)
    logger.info("%s left room %s", username, room_id)
    await runtime.broadcaster.participants_updated(
        room_id, runtime.sessions.snapshot_payload(room_id)
    )
    leave_message = system_message(
        room_id,
        f"{username} left the room",
        message_type="leave",
        sender=username,
        role=participant.role if participant else "user",
    )
    await runtime.broadcaster.emit(room_id, "user-left", leave_message.to_payload(), skip_sid=sid)
    return {"ok": True, "roomId": room_id}


async def handle_send_message(runtime: ChatRuntime, sid: str, event: SendMessageEvent) -> dict:
    connection = runtime.registry.get(sid)
    if connection is None:
        return {"ok": False, "error": "unknown connection"}

    identity = connection.identity
    if not identity.is_authenticated and not runtime.settings.chat_allow_anonymous_send:
        return {"ok": False, "error": "unauthorized"}
    sender = _display_name(identity, event.sender)
    if not sender:
        return {"ok": False, "error": "sender required"}
    if identity.is_authenticated and event.room_id not in connection.rooms:
        return {"ok": False, "error": "join the room first"}

    result = await runtime.router.route(
        OutgoingChat(
            room_id=event.room_id,
            sender=sender,
            content=event.content,
            role=normalize_role(identity.role if identity.is_authenticated else event.role),
            level=(identity.level if identity.is_authenticated else event.level) or 1,
            message_type=event.type,
            gift=event.gift.model_dump(exclude_none=True) if event.gift else None,
            temp_id=event.temp_id,
            user_id=str(identity.user_id) if identity.user_id is not None else None,
        )
    )
    if not result.ok:
        return {"ok": False, "error": result.error}
    return {
        "ok": True,
        "route": result.route.value,
        "message": result.message.to_payload() if result.message else None,
    }


async def handle_kick_user(runtime: ChatRuntime, sid: str, event: KickUserEvent) -> dict:
    identity = runtime.registry.identity(sid)
    if not _can_moderate(runtime, identity, event.room_id):
        return {"ok": False, "error": "not allowed to moderate this room"}
    if event.kicked_user == identity.username:
        return {"ok": False, "error": "cannot kick yourself"}
    kicked = await runtime.moderation.kick(event.room_id, event.kicked_user, identity.username)
    return {"ok": True, "kicked": kicked}


async def handle_mute_user(runtime: ChatRuntime, sid: str, event: MuteUserEvent) -> dict:
    identity = runtime.registry.identity(sid)
    if not _can_moderate(runtime, identity, event.room_id):
        return {"ok": False, "error": "not allowed to moderate this room"}
    await runtime.moderation.mute(event.room_id, event.muted_user, identity.username, event.action)
    return {"ok": True, "action": event.action}


async def handle_disconnect(runtime: ChatRuntime, sid: str) -> None:
    connection = runtime.registry.unbind(sid)
    if connection is None:
        return
    logger.info("Disconnected %s", connection.identity.username or sid)
    for room_id, username in connection.rooms.items():
        if runtime.registry.sids_in_room(room_id, username):
            # another tab of the same user is still in the room
            continue
        if runtime.sessions.leave(room_id, username) is None:
            continue
        await runtime.broadcaster.participants_updated(
            room_id, runtime.sessions.snapshot_payload(room_id)
        )
