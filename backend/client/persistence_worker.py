import asyncio
import logging
from typing import Awaitable, Callable, Optional

from config.logging import log_event
from models.chat import Message

SaveFn = Callable[[Message], Awaitable[None]]


class PersistenceWorker:
    """Saves messages in the background, one at a time, in enqueue order.

    Enqueue never blocks and never raises; a full queue or a failed save is
    logged and the message is dropped. The drain task starts on the first
    enqueue if start() was not called; after stop() messages only queue up.
    """

    def __init__(self, save: SaveFn, maxsize: int = 256):
        self._save = save
        self._queue: "asyncio.Queue[Message]" = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        self._stopped = False
        if not self.running:
            self._task = asyncio.create_task(self._drain())

    def enqueue(self, message: Message) -> bool:
        if not self.running:
            self._start_lazily()
        try:
            self._queue.put_nowait(message.model_copy(deep=True))
        except asyncio.QueueFull:
            log_event(
                "persistence.enqueue_failed",
                level=logging.WARNING,
                message_id=message.id,
                conversation_id=message.chat_id,
                reason="queue full",
            )
            return False
        return True

    def _start_lazily(self) -> None:
        if not self._stopped:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                pass
            else:
                self.start()
                return
        log_event(
            "persistence.not_running",
            level=logging.WARNING,
            reason="stopped" if self._stopped else "no event loop",
        )

    async def flush(self) -> None:
        """Wait until everything enqueued so far has been attempted."""
        await self._queue.join()

    async def stop(self, drain: bool = True) -> None:
        self._stopped = True
        if drain and self.running:
            await self.flush()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _drain(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self._save(message)
            except Exception as e:
                log_event(
                    "persistence.save_failed",
                    level=logging.WARNING,
                    message_id=message.id,
                    conversation_id=message.chat_id,
                    error=str(e),
                )
            finally:
                self._queue.task_done()
