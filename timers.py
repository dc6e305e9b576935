"""
Cancellable deferred actions owned by a call session.
"""
import asyncio
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class RearmableTimer:
    """Runs a callback once after `delay` seconds of not being rearmed.

    At most one pending run exists; `rearm()` cancels and replaces it.
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]], name: str = "timer"):
        self.delay = delay
        self._callback = callback
        self._name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def rearm(self) -> None:
        self.cancel()
        self._task = asyncio.create_task(self._run(), name=self._name)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        try:
            await self._callback()
        except Exception:
            logger.exception("Timer callback failed", timer=self._name)
