"""
Task Supervisor

Owns every background chain started from a request handler:
- Keeps a strong reference to each running asyncio.Task
- Records the outcome (succeeded / failed + error) on a TaskHandle
- Keeps a bounded history of finished handles for inspection
- `wait_idle()` lets tests and shutdown drain in-flight work

Chains are expected to persist their own failures; the supervisor is the
last line that makes sure nothing ends as an unobserved exception.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable

from postcraft.services.publisher_adapter import sanitize
from postcraft.settings import get_settings

logger = logging.getLogger(__name__)


@dataclass
class TaskHandle:
    id: int
    name: str
    status: str = "running"
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class TaskSupervisor:

    def __init__(self, history_size: int = 500):
        self._ids = itertools.count(1)
        self._running: dict[int, tuple[TaskHandle, asyncio.Task]] = {}
        self._history: deque[TaskHandle] = deque(maxlen=history_size)

    def spawn(self, name: str, coro: Awaitable[Any]) -> TaskHandle:
        handle = TaskHandle(id=next(self._ids), name=name)
        task = asyncio.ensure_future(self._run(handle, coro))
        self._running[handle.id] = (handle, task)
        return handle

    async def _run(self, handle: TaskHandle, coro: Awaitable[Any]) -> None:
        try:
            await coro
            handle.status = "succeeded"
        except asyncio.CancelledError:
            handle.status = "failed"
            handle.error = "cancelled"
            raise
        except Exception as exc:
            handle.status = "failed"
            handle.error = sanitize(str(exc) or type(exc).__name__)
            logger.exception(f"[supervisor] task {handle.name}#{handle.id} failed: {handle.error}")
        finally:
            handle.finished_at = datetime.now(timezone.utc)
            self._running.pop(handle.id, None)
            self._history.append(handle)

    @property
    def active(self) -> list[TaskHandle]:
        return [handle for handle, _ in self._running.values()]

    def history(self, limit: int = 50) -> list[TaskHandle]:
        return list(self._history)[-limit:]

    def failures(self, limit: int = 50) -> list[TaskHandle]:
        return [h for h in self._history if h.status == "failed"][-limit:]

    async def wait_idle(self, timeout: float | None = None) -> None:
        """Wait until no task is running, including tasks spawned while waiting."""
        async def _drain():
            while self._running:
                tasks = [task for _, task in list(self._running.values())]
                await asyncio.wait(tasks)

        await asyncio.wait_for(_drain(), timeout)

    async def shutdown(self, timeout: float = 10.0) -> None:
        try:
            await self.wait_idle(timeout)
        except asyncio.TimeoutError:
            pending = list(self._running.values())
            logger.warning(f"[supervisor] cancelling {len(pending)} unfinished task(s) on shutdown")
            for _, task in pending:
                task.cancel()
            await asyncio.gather(*(task for _, task in pending), return_exceptions=True)


_supervisor: TaskSupervisor | None = None


def get_supervisor() -> TaskSupervisor:
    global _supervisor
    if _supervisor is None:
        _supervisor = TaskSupervisor(history_size=get_settings().task_history_size)
    return _supervisor


def set_supervisor(supervisor: TaskSupervisor | None) -> None:
    global _supervisor
    _supervisor = supervisor
