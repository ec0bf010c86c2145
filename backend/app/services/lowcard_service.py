import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from app.core.logging import get_logger
from app.realtime.broadcaster import FanoutBroadcaster
from app.realtime.messages import system_message

logger = get_logger(__name__)

Card = str
SUITS = ("S", "H", "D", "C")
RANKS = ("2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A")
BOT_NAME = "LowCardBot"
DEFAULT_BET = 1
MAX_BET = 1_000_000
MIN_PLAYERS = 2


def build_deck() -> list[Card]:
    deck = [f"{rank}{suit}" for suit in SUITS for rank in RANKS]
    rng = secrets.SystemRandom()
    rng.shuffle(deck)
    return deck


def card_rank(card: Card) -> int:
    return RANKS.index(card[:-1])


@dataclass
class LowCardGame:
    room_id: str
    phase: str = "idle"
    host: str | None = None
    bet: int = DEFAULT_BET
    pot: int = 0
    players: list[str] = field(default_factory=list)
    draws: dict[str, Card] = field(default_factory=dict)
    round_number: int = 0
    deck: list[Card] = field(default_factory=build_deck)
    activated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def reset(self) -> None:
        self.phase = "idle"
        self.host = None
        self.bet = DEFAULT_BET
        self.pot = 0
        self.players = []
        self.draws = {}
        self.round_number = 0


class LowCardBot:
    """Turn-based LowCard game played through chat commands.

    Every player draws one card per round; the single lowest card is out.
    The last player standing wins the pot.
    """

    def __init__(self, broadcaster: FanoutBroadcaster, *, sigil: str = "!") -> None:
        self._broadcaster = broadcaster
        self._sigil = sigil
        self._games: dict[str, LowCardGame] = {}

    def is_active(self, room_id: str) -> bool:
        return room_id in self._games

    def status(self, room_id: str) -> dict[str, Any] | None:
        game = self._games.get(room_id)
        if not game:
            return None
        return {
            "phase": game.phase,
            "host": game.host,
            "bet": game.bet,
            "pot": game.pot,
            "players": list(game.players),
            "drawn": sorted(game.draws.keys()),
            "round": game.round_number,
            "activatedAt": game.activated_at.isoformat(),
        }

    def active_room_ids(self) -> list[str]:
        return list(self._games.keys())

    async def handle_command(
        self,
        room_id: str,
        raw_command: str,
        acting_user_id: str,
        acting_username: str,
    ) -> None:
        command = raw_command.strip()
        lowered = command.lower()
        if lowered == "/init_bot":
            self._games.setdefault(room_id, LowCardGame(room_id=room_id))
            logger.info("LowCard bot active in room %s (by %s)", room_id, acting_username)
            return
        if lowered == "/bot off":
            if self._games.pop(room_id, None):
                await self._say(room_id, "LowCard Bot has left the room.")
            return

        game = self._games.get(room_id)
        if not game or not command.startswith(self._sigil):
            return

        name, _, argument = command[len(self._sigil):].partition(" ")
        handler = {
            "help": self._help,
            "start": self._start,
            "j": self._join,
            "go": self._go,
            "d": self._draw,
            "stop": self._stop,
        }.get(name.lower())
        if handler is None:
            return
        await handler(game, acting_username, argument.strip())

    async def _help(self, game: LowCardGame, _: str, __: str) -> None:
        s = self._sigil
        await self._say(
            game.room_id,
            f"LowCard commands: {s}start [bet] open a game, {s}j join, {s}go deal (host), "
            f"{s}d draw your card, {s}stop end the game (host). Lowest card each round is out.",
        )

    async def _start(self, game: LowCardGame, username: str, argument: str) -> None:
        if game.phase != "idle":
            await self._say(game.room_id, "A LowCard game is already running.")
            return
        bet = DEFAULT_BET
        if argument:
            try:
                bet = int(argument)
            except ValueError:
                await self._say(game.room_id, f"Invalid bet: {argument}")
                return
            if bet < 1 or bet > MAX_BET:
                await self._say(game.room_id, f"Bet must be between 1 and {MAX_BET}.")
                return
        game.phase = "joining"
        game.host = username
        game.bet = bet
        game.players = [username]
        game.draws = {}
        game.round_number = 0
        await self._say(
            game.room_id,
            f"{username} started LowCard with a bet of {bet}. "
            f"Type {self._sigil}j to join, {username} types {self._sigil}go to deal.",
        )

    async def _join(self, game: LowCardGame, username: str, _: str) -> None:
        if game.phase != "joining" or username in game.players:
            return
        game.players.append(username)
        await self._say(game.room_id, f"{username} joined LowCard ({len(game.players)} players).")

    async def _go(self, game: LowCardGame, username: str, _: str) -> None:
        if game.phase != "joining" or username != game.host:
            return
        if len(game.players) < MIN_PLAYERS:
            await self._say(game.room_id, f"Need at least {MIN_PLAYERS} players to deal.")
            return
        game.phase = "drawing"
        game.pot = game.bet * len(game.players)
        await self._next_round(game)

    async def _draw(self, game: LowCardGame, username: str, _: str) -> None:
        if game.phase != "drawing" or username not in game.players or username in game.draws:
            return
        if not game.deck:
            game.deck = build_deck()
        card = game.deck.pop()
        game.draws[username] = card
        await self._say(game.room_id, f"{username} drew {card}.")
        if len(game.draws) == len(game.players):
            await self._settle_round(game)

    async def _stop(self, game: LowCardGame, username: str, _: str) -> None:
        if game.phase == "idle" or username != game.host:
            return
        game.reset()
        await self._say(game.room_id, f"{username} ended the LowCard game.")

    async def _next_round(self, game: LowCardGame) -> None:
        game.round_number += 1
        game.draws = {}
        await self._say(
            game.room_id,
            f"Round {game.round_number}: {', '.join(game.players)} type {self._sigil}d to draw.",
        )

    async def _settle_round(self, game: LowCardGame) -> None:
        lowest = min(card_rank(card) for card in game.draws.values())
        losers = [player for player, card in game.draws.items() if card_rank(card) == lowest]
        if len(losers) > 1:
            game.draws = {}
            await self._say(
                game.room_id,
                f"Tie for the lowest card between {', '.join(losers)}. Everyone type {self._sigil}d to draw again.",
            )
            return

        loser = losers[0]
        game.players.remove(loser)
        await self._say(game.room_id, f"{loser} is out with {game.draws[loser]}.")
        if len(game.players) == 1:
            winner = game.players[0]
            await self._say(game.room_id, f"🏆 {winner} wins LowCard and takes the pot of {game.pot}!")
            game.reset()
            return
        await self._next_round(game)

    async def _say(self, room_id: str, content: str) -> None:
        await self._broadcaster.broadcast(room_id, system_message(room_id, content, sender=BOT_NAME))
