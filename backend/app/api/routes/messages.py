from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool

from app.api.deps import get_chat_runtime, require_min_role
from app.core.logging import get_logger
from app.db.models import User
from app.realtime.runtime import ChatRuntime

router = APIRouter()
logger = get_logger(__name__)


@router.delete("/{message_id}")
async def delete_message(
    message_id: int,
    current_user: User = Depends(require_min_role("admin")),
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> dict:
    room_id = await run_in_threadpool(runtime.sink.store.delete, message_id)
    if room_id is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    logger.info("Message %s in room %s deleted by %s", message_id, room_id, current_user.username)
    await runtime.broadcaster.emit(
        room_id,
        "message-deleted",
        {"messageId": str(message_id), "roomId": room_id},
    )
    return {"message": "Message deleted successfully", "messageId": message_id}
