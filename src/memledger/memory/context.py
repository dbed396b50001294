"""Explicit process-level state shared by the memory services.

``SessionContext`` owns the session map, chat buffers, summarization
lock set, per-agent write locks and background jobs. It is constructed
once and injected; replacing it (e.g. with a shared cache plus a
distributed mutex) is how the services scale past one process.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import TYPE_CHECKING
from typing import Any

from memledger.memory.schemas import ChatMessage

if TYPE_CHECKING:
    from memledger.memory.state import SessionState

logger = logging.getLogger(__name__)


class SummaryLockSet:
    """Non-blocking per-agent locks: acquisition either succeeds or fails."""

    def __init__(self) -> None:
        self._held: set[str] = set()

    def try_acquire(self, agent_id: str) -> bool:
        if agent_id in self._held:
            return False
        self._held.add(agent_id)
        return True

    def release(self, agent_id: str) -> None:
        self._held.discard(agent_id)

    def is_held(self, agent_id: str) -> bool:
        return agent_id in self._held


class SessionContext:
    """Holds every piece of mutable, process-wide memory state."""

    def __init__(self) -> None:
        self.sessions: dict[str, SessionState] = {}
        self.buffers: dict[str, list[ChatMessage]] = {}
        self.summary_locks = SummaryLockSet()
        self._write_locks: dict[str, asyncio.Lock] = {}
        self._jobs: set[asyncio.Task[Any]] = set()
        self._closed = False

    def write_lock(self, agent_id: str) -> asyncio.Lock:
        """The lock ordering all pointer writes for *agent_id*."""
        lock = self._write_locks.get(agent_id)
        if lock is None:
            lock = self._write_locks[agent_id] = asyncio.Lock()
        return lock

    # -- background jobs --

    @property
    def pending_jobs(self) -> int:
        return len(self._jobs)

    def spawn(
        self, coro: Coroutine[Any, Any, Any], *, name: str
    ) -> asyncio.Task[Any]:
        """Run *coro* detached; its failure is logged, never raised."""
        if self._closed:
            coro.close()
            raise RuntimeError("session context is closed")
        task = asyncio.create_task(coro, name=name)
        self._jobs.add(task)
        task.add_done_callback(self._on_job_done)
        return task

    def _on_job_done(self, task: asyncio.Task[Any]) -> None:
        self._jobs.discard(task)
        if task.cancelled():
            logger.info("Background job %s cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background job %s failed",
                task.get_name(),
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self) -> None:
        """Wait until no background job is pending."""
        while self._jobs:
            await asyncio.gather(*list(self._jobs), return_exceptions=True)

    async def close(self) -> None:
        """Finish pending jobs and drop all cached state."""
        self._closed = True
        await self.drain()
        self.sessions.clear()
        self.buffers.clear()
        self._write_locks.clear()
