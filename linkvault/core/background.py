"""Detached background tasks.

Cache touches and reindex triggers run without blocking the request that
spawned them. Their failures end up in the log and never reach the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine

logger = logging.getLogger(__name__)


class TaskRunner:
    """Keeps references to spawned tasks until they finish."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        """Schedule coro on the running loop and return immediately."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug(f"Background task {task.get_name()} cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                f"Background task {task.get_name()} failed: {type(exc).__name__}: {exc}",
                exc_info=exc,
            )

    async def drain(self) -> None:
        """Wait until all outstanding tasks (and tasks they spawn) are done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
