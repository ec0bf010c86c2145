import asyncio
from collections.abc import Awaitable, Callable

import socketio
from pydantic import ValidationError

from app.core.config import get_settings
from app.core.logging import get_logger
from app.realtime import runtime as handlers
from app.realtime.connections import extract_client_ip, resolve_token
from app.realtime.runtime import ChatRuntime, build_runtime
from app.schemas.chat import parse_inbound_event
from app.services.lowcard_service import LowCardBot
from app.services.message_store import MessageStore
from app.services.rate_limit_service import rate_limit_service

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")

settings = get_settings()
logger = get_logger(__name__)


def _build_game_bot(broadcaster) -> LowCardBot:
    return LowCardBot(broadcaster, sigil=settings.chat_bot_command_sigil)


runtime: ChatRuntime = build_runtime(
    sio,
    MessageStore(),
    game_bot_factory=_build_game_bot if settings.lowcard_enabled else None,
)

EventHandler = Callable[[ChatRuntime, str, object], Awaitable[dict]]


def _socket_rate_limit_key(scope: str, identifier: str) -> str:
    safe_identifier = identifier or "unknown"
    return f"ws:{scope}:{safe_identifier}"


def _is_socket_connect_allowed(client_ip: str) -> bool:
    if not settings.rate_limit_enabled:
        return True
    decision = rate_limit_service.check(
        _socket_rate_limit_key("connect", client_ip),
        limit=settings.websocket_connect_limit,
        window_seconds=settings.websocket_connect_window_seconds,
    )
    return decision.allowed


def _is_socket_event_allowed(sid: str, event_name: str) -> bool:
    if not settings.rate_limit_enabled:
        return True
    identity = runtime.registry.identity(sid)
    subject = str(identity.user_id) if identity.is_authenticated else f"sid:{sid}"
    decision = rate_limit_service.check(
        _socket_rate_limit_key(f"event:{event_name}", subject),
        limit=settings.websocket_event_limit,
        window_seconds=settings.websocket_event_window_seconds,
    )
    return decision.allowed


async def _socket_rate_limited_payload(sid: str, event_name: str) -> dict:
    await sio.emit(
        "rate-limited",
        {"event": event_name, "message": "Too many requests. Slow down."},
        room=sid,
    )
    return {"ok": False, "error": "rate limit exceeded"}


async def _dispatch(event_name: str, sid: str, data, handler: EventHandler) -> dict:
    if not _is_socket_event_allowed(sid, event_name):
        return await _socket_rate_limited_payload(sid, event_name)
    try:
        event = parse_inbound_event(event_name, data)
    except ValidationError as exc:
        logger.info("Invalid %s payload from %s: %s", event_name, sid, exc.errors()[:1])
        return {"ok": False, "error": "invalid payload"}
    return await handler(runtime, sid, event)


@sio.event
async def connect(sid: str, environ: dict, auth: dict | None = None) -> bool:
    client_ip = extract_client_ip(environ)
    if not _is_socket_connect_allowed(client_ip):
        return False

    token = resolve_token(auth, environ)
    # the user lookup hits the database; keep it off the event loop
    identity = await asyncio.to_thread(runtime.registry.authenticate, token)
    runtime.registry.bind(sid, identity, client_ip=client_ip)
    if identity.is_authenticated:
        logger.info("Connected %s as %s", sid, identity.username)
    else:
        logger.info("Connected %s anonymously", sid)

    await sio.emit(
        "system",
        {
            "message": "connected",
            "userId": identity.user_id,
            "username": identity.username,
            "role": identity.role,
            "level": identity.level,
            "authenticated": identity.is_authenticated,
        },
        room=sid,
    )
    return True


@sio.event
async def disconnect(sid: str, *args) -> None:
    await handlers.handle_disconnect(runtime, sid)


@sio.on("join-room")
async def join_room(sid: str, data: dict | None = None) -> dict:
    return await _dispatch("join-room", sid, data, handlers.handle_join_room)


@sio.on("leave-room")
async def leave_room(sid: str, data: dict | None = None) -> dict:
    return await _dispatch("leave-room", sid, data, handlers.handle_leave_room)


@sio.on("send-message")
async def send_message(sid: str, data: dict | None = None) -> dict:
    return await _dispatch("send-message", sid, data, handlers.handle_send_message)


@sio.on("sendMessage")
async def send_message_legacy(sid: str, data: dict | None = None) -> dict:
    return await send_message(sid, data)


@sio.on("kick-user")
async def kick_user(sid: str, data: dict | None = None) -> dict:
    return await _dispatch("kick-user", sid, data, handlers.handle_kick_user)


@sio.on("mute-user")
async def mute_user(sid: str, data: dict | None = None) -> dict:
    return await _dispatch("mute-user", sid, data, handlers.handle_mute_user)


def build_socket_app(api_app) -> socketio.ASGIApp:
    return socketio.ASGIApp(sio, other_asgi_app=api_app, socketio_path="socket.io")
