"""주기 작업 스케줄러 인터페이스와 asyncio 구현입니다."""

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]
CancelHandle = Callable[[], None]


class Scheduler(Protocol):
    def every(self, seconds: float, callback: Job) -> CancelHandle: ...


class AsyncioScheduler:
    """Independent fixed-interval loops on the running event loop.

    Cancelling stops future runs; a callback already in flight is not awaited.
    """

    async def _run(self, seconds: float, callback: Job) -> None:
        while True:
            await asyncio.sleep(seconds)
            try:
                await callback()
            except Exception as exc:
                logger.warning("[scheduler] job %s failed: %s", getattr(callback, "__name__", callback), exc)

    def every(self, seconds: float, callback: Job) -> CancelHandle:
        task = asyncio.get_running_loop().create_task(self._run(seconds, callback))
        return task.cancel
