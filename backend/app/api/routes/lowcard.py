from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_chat_runtime, get_current_user
from app.db.models import User
from app.realtime.router import BOT_INIT_COMMAND, GameBotAdapter
from app.realtime.runtime import ChatRuntime
from app.schemas.game import LowCardCommandRequest, LowCardStatusRead

router = APIRouter()

BOT_SHUTDOWN_COMMAND = "/bot off"


def _require_bot(runtime: ChatRuntime) -> GameBotAdapter:
    if runtime.game_bot is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="LowCard bot is not available",
        )
    return runtime.game_bot


def _status_read(bot: GameBotAdapter, room_id: str) -> LowCardStatusRead:
    return LowCardStatusRead(
        roomId=room_id,
        isActive=bot.is_active(room_id),
        status=bot.status(room_id),
    )


@router.get("/status/{room_id}", response_model=LowCardStatusRead)
async def lowcard_status(
    room_id: str,
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> LowCardStatusRead:
    return _status_read(_require_bot(runtime), room_id)


@router.get("/games", response_model=list[LowCardStatusRead])
async def active_games(runtime: ChatRuntime = Depends(get_chat_runtime)) -> list[LowCardStatusRead]:
    bot = _require_bot(runtime)
    return [_status_read(bot, room_id) for room_id in bot.active_room_ids()]


@router.post("/command", response_model=LowCardStatusRead)
async def lowcard_command(
    payload: LowCardCommandRequest,
    current_user: User = Depends(get_current_user),
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> LowCardStatusRead:
    bot = _require_bot(runtime)
    await bot.handle_command(
        payload.roomId,
        payload.message,
        str(current_user.id),
        current_user.username,
    )
    return _status_read(bot, payload.roomId)


@router.post("/init/{room_id}", response_model=LowCardStatusRead)
async def lowcard_init(
    room_id: str,
    current_user: User = Depends(get_current_user),
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> LowCardStatusRead:
    bot = _require_bot(runtime)
    await bot.handle_command(room_id, BOT_INIT_COMMAND, str(current_user.id), current_user.username)
    return _status_read(bot, room_id)


@router.post("/shutdown/{room_id}", response_model=LowCardStatusRead)
async def lowcard_shutdown(
    room_id: str,
    current_user: User = Depends(get_current_user),
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> LowCardStatusRead:
    bot = _require_bot(runtime)
    await bot.handle_command(room_id, BOT_SHUTDOWN_COMMAND, str(current_user.id), current_user.username)
    return _status_read(bot, room_id)
