"""Classification and dispatch of inbound chat messages.

Precedence, first match wins:

1. the bot install phrase (exact, case-insensitive, surrounding blanks ignored)
2. anything starting with the bot sigil, forwarded verbatim to the game bot
3. everything else is an ordinary message or gift: broadcast, then queued
   for storage

Classification looks only at the raw text, so a chat line that really starts
with the sigil can never be sent as plain text.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from app.core.logging import get_logger
from app.realtime.broadcaster import FanoutBroadcaster
from app.realtime.messages import ChatMessage, build_chat_message, system_message
from app.realtime.persistence import AsyncPersistenceSink

logger = get_logger(__name__)

BOT_INIT_COMMAND = "/init_bot"


class GameBotAdapter(Protocol):
    async def handle_command(
        self,
        room_id: str,
        raw_command: str,
        acting_user_id: str,
        acting_username: str,
    ) -> None: ...

    def is_active(self, room_id: str) -> bool: ...

    def status(self, room_id: str) -> Any: ...

    def active_room_ids(self) -> list[str]: ...


class Route(str, Enum):
    BOT_INSTALL = "bot_install"
    BOT_COMMAND = "bot_command"
    CHAT = "chat"


def classify(content: str, *, install_phrase: str, sigil: str) -> Route:
    if content.strip().lower() == install_phrase.strip().lower():
        return Route.BOT_INSTALL
    if sigil and content.startswith(sigil):
        return Route.BOT_COMMAND
    return Route.CHAT


@dataclass
class OutgoingChat:
    room_id: str
    sender: str
    content: str
    role: str = "user"
    level: int = 1
    message_type: str = "message"
    gift: dict[str, Any] | None = None
    temp_id: str | None = None
    user_id: str | None = None


@dataclass
class RouteResult:
    route: Route
    message: ChatMessage | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class MessageRouter:
    def __init__(
        self,
        broadcaster: FanoutBroadcaster,
        sink: AsyncPersistenceSink,
        game_bot: GameBotAdapter | None = None,
        *,
        install_phrase: str = "/add bot lowcard",
        sigil: str = "!",
        max_message_length: int = 2000,
    ) -> None:
        self.broadcaster = broadcaster
        self.sink = sink
        self.game_bot = game_bot
        self.install_phrase = install_phrase
        self.sigil = sigil
        self.max_message_length = max_message_length

    async def route(self, outgoing: OutgoingChat) -> RouteResult:
        route = classify(outgoing.content, install_phrase=self.install_phrase, sigil=self.sigil)
        if route is Route.BOT_INSTALL:
            await self._install_bot(outgoing)
            return RouteResult(route)
        if route is Route.BOT_COMMAND:
            await self._forward_bot_command(outgoing)
            return RouteResult(route)
        return await self._relay(outgoing)

    async def _install_bot(self, outgoing: OutgoingChat) -> None:
        logger.info("Installing game bot in room %s for %s", outgoing.room_id, outgoing.sender)
        if self.game_bot is None:
            await self._notify(outgoing.room_id, "❌ LowCard Bot is not available at the moment.")
            return
        try:
            await self.game_bot.handle_command(
                outgoing.room_id,
                BOT_INIT_COMMAND,
                outgoing.user_id or outgoing.sender,
                outgoing.sender,
            )
        except Exception:
            logger.exception("Game bot failed to initialise in room %s", outgoing.room_id)
            await self._notify(outgoing.room_id, "❌ LowCard Bot is not available at the moment.")
            return
        await self._notify(
            outgoing.room_id,
            f"🎮 LowCard Bot has been added to this room! Type {self.sigil}help to see available commands.",
        )

    async def _forward_bot_command(self, outgoing: OutgoingChat) -> None:
        room_id = outgoing.room_id
        if not self._bot_ready(room_id):
            await self._notify(
                room_id,
                f"❌ LowCard Bot is not available in this room. Type {self.install_phrase} to add it.",
            )
            return
        logger.info("Forwarding bot command %r in room %s", outgoing.content, room_id)
        try:
            await self.game_bot.handle_command(
                room_id,
                outgoing.content,
                outgoing.user_id or outgoing.sender,
                outgoing.sender,
            )
        except Exception:
            logger.exception("Game bot failed on %r in room %s", outgoing.content, room_id)
            await self._notify(room_id, "❌ LowCard Bot could not process that command.")

    def _bot_ready(self, room_id: str) -> bool:
        if self.game_bot is None:
            return False
        try:
            return bool(self.game_bot.is_active(room_id))
        except Exception:
            logger.exception("Game bot status check failed for room %s", room_id)
            return False

    async def _relay(self, outgoing: OutgoingChat) -> RouteResult:
        content = outgoing.content
        if outgoing.message_type == "gift" and not outgoing.gift:
            return RouteResult(Route.CHAT, error="gift payload required")
        if not content.strip() and outgoing.message_type != "gift":
            return RouteResult(Route.CHAT, error="message is empty")
        if len(content) > self.max_message_length:
            return RouteResult(Route.CHAT, error="message too long")

        message = build_chat_message(
            outgoing.room_id,
            outgoing.sender,
            content,
            message_type=outgoing.message_type,
            role=outgoing.role,
            level=outgoing.level,
            gift=outgoing.gift,
            temp_id=outgoing.temp_id,
        )
        await self.broadcaster.broadcast(outgoing.room_id, message)
        self.sink.persist(message)
        return RouteResult(Route.CHAT, message=message)

    async def _notify(self, room_id: str, content: str) -> None:
        await self.broadcaster.broadcast(room_id, system_message(room_id, content))
