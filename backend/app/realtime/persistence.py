"""Best-effort background persistence for chat history.

``AsyncPersistenceSink.persist`` only enqueues; a single worker task drains
the queue and writes each message through the store on a worker thread.
Nothing is retried. A failed write is logged and the message is dropped from
history, and whatever is still queued when the process dies is lost. Live
delivery never waits on any of this.
"""
import asyncio
from typing import Any, Protocol

from app.core.logging import get_logger
from app.realtime.messages import ChatMessage

logger = get_logger(__name__)


class MessageSink(Protocol):
    def insert(
        self,
        room_id: str,
        sender: str,
        content: str,
        message_type: str,
        meta: dict[str, Any],
    ) -> int | None: ...


class AsyncPersistenceSink:
    def __init__(self, store: MessageSink, *, max_queue_size: int = 1000) -> None:
        self._store = store
        self._max_queue_size = max(1, max_queue_size)
        self._queue: asyncio.Queue[ChatMessage] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._worker_task: asyncio.Task | None = None
        self.dropped = 0

    @property
    def store(self) -> MessageSink:
        return self._store

    def persist(self, message: ChatMessage) -> bool:
        """Queue ``message`` for storage. Returns False when it will not be stored."""
        if not message.is_durable:
            return False
        queue = self._ensure_worker()
        try:
            queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Persistence queue full, dropping message %s for room %s",
                message.id,
                message.room_id,
            )
            return False
        return True

    async def drain(self) -> None:
        """Wait until everything queued so far has been written or dropped."""
        if self._queue is not None and self._loop is asyncio.get_running_loop():
            await self._queue.join()

    async def close(self) -> None:
        if self._worker_task is None:
            return
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None

    def _ensure_worker(self) -> asyncio.Queue[ChatMessage]:
        loop = asyncio.get_running_loop()
        if self._queue is None or self._loop is not loop:
            # a queue is bound to the loop it was first awaited on
            self._queue = asyncio.Queue(maxsize=self._max_queue_size)
            self._loop = loop
            self._worker_task = None
        if self._worker_task is None or self._worker_task.done():
            self._worker_task = loop.create_task(
                self._run(self._queue), name="chat-persistence-worker"
            )
        return self._queue

    async def _run(self, queue: asyncio.Queue[ChatMessage]) -> None:
        while True:
            message = await queue.get()
            try:
                await asyncio.to_thread(self._write, message)
            except Exception:
                logger.exception(
                    "Failed to persist message %s for room %s", message.id, message.room_id
                )
            finally:
                queue.task_done()

    def _write(self, message: ChatMessage) -> int | None:
        return self._store.insert(
            message.room_id,
            message.sender,
            message.content,
            message.type,
            {
                "role": message.role,
                "level": message.level,
                "gift": message.gift,
                "is_private": message.is_private,
            },
        )
