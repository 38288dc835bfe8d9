"""Fire-and-forget background work (summary regeneration, image job enqueue).

Each spawned task resolves to True/False; failures are logged here and never
propagate into the request that spawned them.
"""

import asyncio
import logging
from collections.abc import Awaitable

logger = logging.getLogger(__name__)


class BackgroundRunner:
    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, work: Awaitable, label: str) -> asyncio.Task:
        task = asyncio.create_task(self._run(work, label))
        # Hold a reference until completion so the task is not garbage-collected
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, work: Awaitable, label: str) -> bool:
        try:
            await work
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("background task %s failed", label, exc_info=True)
            return False
        return True

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every spawned task, including ones spawned while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
