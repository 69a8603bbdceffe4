"""
Supervised background tasks with bounded concurrency.

Usage
-----
    manager = TaskManager(max_concurrent=4, max_background=2)

    manager.submit(document_id, extract(document_id))   # one per key
    manager.spawn(annotate(document_id))                # fire-and-forget
    ...
    await manager.drain()                               # tests / shutdown

Keyed tasks share one semaphore and spawned tasks another, so at most
``max_concurrent`` keyed bodies and ``max_background`` spawned bodies execute at
once, and slow background work never holds a keyed slot.  Crashes are logged.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Dict, Optional, Set

logger = logging.getLogger(__name__)


class TaskAlreadyRunning(RuntimeError):
    """Raised when a keyed task is submitted while one is still in flight."""


class TaskManager:
    """Tracks keyed (exclusive) and anonymous background asyncio.Tasks."""

    def __init__(self, max_concurrent: int = 4, max_background: Optional[int] = None) -> None:
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._background = asyncio.Semaphore(max_background or max_concurrent)
        self._keyed: Dict[str, asyncio.Task] = {}
        self._anonymous: Set[asyncio.Task] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_running(self, key: str) -> bool:
        task = self._keyed.get(key)
        return task is not None and not task.done()

    def get(self, key: str) -> Optional[asyncio.Task]:
        return self._keyed.get(key)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active_count(self) -> int:
        return sum(1 for t in self._all_tasks() if not t.done())

    # ------------------------------------------------------------------
    # Launching
    # ------------------------------------------------------------------

    def submit(self, key: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """
        Launch *coro* as the only task for *key*.

        Raises TaskAlreadyRunning (and closes *coro*) if a task for *key* has
        not finished yet.
        """
        if self._closed:
            coro.close()
            raise RuntimeError("TaskManager is shut down")
        if self.is_running(key):
            coro.close()
            raise TaskAlreadyRunning(f"Task already running for {key}")

        task = asyncio.create_task(
            self._supervise(key, coro, self._semaphore), name=f"folio:{key}"
        )
        self._keyed[key] = task
        task.add_done_callback(lambda t: self._cleanup_keyed(key, t))
        logger.info("Task started for %s", key)
        return task

    def spawn(self, coro: Coroutine[Any, Any, Any], label: str = "background") -> asyncio.Task:
        """Launch *coro* without exclusivity; tracked and limited by the background pool."""
        if self._closed:
            coro.close()
            raise RuntimeError("TaskManager is shut down")
        task = asyncio.create_task(
            self._supervise(label, coro, self._background), name=f"folio:{label}"
        )
        self._anonymous.add(task)
        task.add_done_callback(self._cleanup_anonymous)
        return task

    async def _supervise(
        self, label: str, coro: Coroutine[Any, Any, Any], semaphore: asyncio.Semaphore
    ) -> Any:
        async with semaphore:
            try:
                return await coro
            except asyncio.CancelledError:
                logger.warning("Task %s cancelled", label)
                raise
            except Exception as exc:
                logger.error("Task %s crashed: %s", label, exc, exc_info=True)
                raise

    def _cleanup_keyed(self, key: str, task: asyncio.Task) -> None:
        """Drop the reference unless a newer task already replaced it."""
        if self._keyed.get(key) is task:
            self._keyed.pop(key, None)
        self._retrieve(task)

    def _cleanup_anonymous(self, task: asyncio.Task) -> None:
        self._anonymous.discard(task)
        self._retrieve(task)

    @staticmethod
    def _retrieve(task: asyncio.Task) -> None:
        # already logged by _supervise; retrieving stops asyncio's
        # "exception was never retrieved" warning
        if not task.cancelled():
            task.exception()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _all_tasks(self):
        return list(self._keyed.values()) + list(self._anonymous)

    async def drain(self) -> None:
        """Wait until every tracked task, including ones spawned meanwhile, is done."""
        while True:
            pending = [t for t in self._all_tasks() if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Stop accepting work, wait up to *timeout* seconds, then cancel the rest."""
        self._closed = True
        try:
            await asyncio.wait_for(self.drain(), timeout=timeout)
        except asyncio.TimeoutError:
            remaining = [t for t in self._all_tasks() if not t.done()]
            logger.warning("Cancelling %d unfinished background tasks", len(remaining))
            for task in remaining:
                task.cancel()
            await asyncio.gather(*remaining, return_exceptions=True)
