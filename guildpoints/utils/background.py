from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Set

log = logging.getLogger(__name__)


class BackgroundTasks:
    """Fire-and-forget work for one bot; failures are logged, never dropped."""

    def __init__(self) -> None:
        # Strong references; the loop only keeps weak ones to running tasks.
        self._pending: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._pending)

    def _done(self, what: str) -> Callable[[asyncio.Task], None]:
        def _callback(task: asyncio.Task) -> None:
            self._pending.discard(task)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                log.error("background.%s failed: %s", what, exc, exc_info=exc)

        return _callback

    def spawn(self, coro: Awaitable[Any], what: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._done(what))
        return task

    def spawn_in_thread(self, func: Callable[..., Any], *args: Any, what: str) -> asyncio.Task:
        """Blocking store call off the event loop."""
        return self.spawn(asyncio.to_thread(func, *args), what)

    async def drain(self) -> None:
        """Wait for every spawned task; used on shutdown and in tests."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
