"""
Supervised background tasks for pipeline turns.

Turns are dispatched off the request path. The supervisor keeps a strong
reference to every task until it finishes, logs failures, and hands them to an
error callback that surfaces them as push events instead of letting the event
loop's default handler swallow them.
"""

from __future__ import annotations

import asyncio

from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from utils.logger import logger
from utils.metrics import pipeline_tasks_active

ErrorCallback = Callable[[BaseException], Awaitable[None] | None]


class TaskSupervisor:
    """Tracks fire-and-forget pipeline tasks.

    Usage:
        supervisor = TaskSupervisor()
        supervisor.submit(orchestrator.process_user_message(...), name="turn:room", on_error=notify)

        # On shutdown:
        await supervisor.drain(timeout=30.0)
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self._accepting = True
        self.completed_count = 0
        self.failed_count = 0

    def submit(
        self,
        coro: Coroutine[Any, Any, Any],
        *,
        name: str,
        on_error: ErrorCallback | None = None,
    ) -> asyncio.Task[Any] | None:
        """Schedule ``coro`` and return immediately.

        Returns None (and closes the coroutine) once draining has started.
        """
        if not self._accepting:
            logger.warning(f"Rejecting task {name}: supervisor is draining")
            coro.close()
            return None

        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        pipeline_tasks_active.inc()
        task.add_done_callback(lambda t: self._on_done(t, on_error))
        return task

    def _on_done(self, task: asyncio.Task[Any], on_error: ErrorCallback | None) -> None:
        self._tasks.discard(task)
        pipeline_tasks_active.dec()

        if task.cancelled():
            logger.info(f"Task {task.get_name()} cancelled")
            return

        exc = task.exception()
        if exc is None:
            self.completed_count += 1
            return

        self.failed_count += 1
        logger.error(
            f"Task {task.get_name()} failed: {type(exc).__name__}: {exc}",
            exc_info=exc,
        )
        if on_error is None:
            return

        try:
            result = on_error(exc)
        except Exception as callback_error:
            logger.error(f"Error callback for task {task.get_name()} raised: {callback_error}")
            return
        if asyncio.iscoroutine(result):
            self.submit(result, name=f"{task.get_name()}:on_error")

    async def drain(self, timeout: float = 30.0) -> int:
        """Stop accepting work and wait for in-flight tasks.

        Tasks still running after ``timeout`` are cancelled.

        Returns:
            Number of tasks that had to be cancelled
        """
        self._accepting = False
        pending = set(self._tasks)
        if not pending:
            return 0

        logger.info(f"Draining {len(pending)} pipeline tasks (timeout: {timeout}s)")
        _done, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning(f"Cancelled {len(still_running)} pipeline tasks after drain timeout")
        return len(still_running)

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def get_stats(self) -> dict[str, Any]:
        return {
            "active_tasks": self.active_count,
            "completed_tasks": self.completed_count,
            "failed_tasks": self.failed_count,
            "accepting": self._accepting,
        }


__all__ = ["TaskSupervisor"]
