"""Deduplicating work queue and the worker pool that drains it."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable

from . import metrics
from .utils.errors import sanitize_exception

logger = logging.getLogger(__name__)


class WorkQueue:
    """Queue of object keys with coalescing and per-key exclusion.

    A key added several times before a worker picks it up is delivered once.
    A key added while a worker holds it is delivered again after ``done``, so
    the same key is never processed by two workers at once.
    """

    def __init__(self, min_delay: float = 1.0, max_delay: float = 60.0):
        self.min_delay = min_delay
        self.max_delay = max_delay
        self._ready: asyncio.Queue[str | None] = asyncio.Queue()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._failures: dict[str, int] = {}
        self._timers: dict[str, tuple[float, asyncio.TimerHandle]] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._dirty - self._processing)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def _update_depth(self) -> None:
        metrics.queue_depth.set(len(self))

    def add(self, key: str) -> None:
        """Mark a key as needing reconciliation."""
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key not in self._processing:
            self._ready.put_nowait(key)
        self._update_depth()

    def add_after(self, key: str, delay: float) -> None:
        """Add a key once delay seconds have passed.

        Only the earliest pending timer per key is kept.
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        pending = self._timers.get(key)
        if pending is not None:
            if pending[0] <= when:
                return
            pending[1].cancel()
        handle = loop.call_at(when, self._fire, key)
        self._timers[key] = (when, handle)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        self.add(key)

    def backoff(self, key: str) -> float:
        """Delay before the next retry of key: min_delay * 2**failures, capped."""
        failures = self._failures.get(key, 0)
        return min(self.min_delay * (2 ** failures), self.max_delay)

    def add_rate_limited(self, key: str) -> float:
        """Re-add a failed key with exponential backoff.

        Returns:
            The delay that was applied
        """
        delay = self.backoff(key)
        self._failures[key] = self._failures.get(key, 0) + 1
        metrics.queue_retries_total.inc()
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        """Reset the failure count of a key after a successful pass."""
        self._failures.pop(key, None)

    def failures(self, key: str) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> str | None:
        """Wait for the next key; None once the queue is shut down."""
        while True:
            key = await self._ready.get()
            if key is None or self._shutting_down:
                # let every other waiting worker see the shutdown too
                self._ready.put_nowait(None)
                return None
            if key not in self._dirty:
                continue
            self._dirty.discard(key)
            self._processing.add(key)
            self._update_depth()
            return key

    def done(self, key: str) -> None:
        """Release a key; it is handed out again if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._ready.put_nowait(key)
        self._update_depth()

    def shutdown(self) -> None:
        """Stop accepting keys and wake every waiting worker."""
        self._shutting_down = True
        for _, handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._ready.put_nowait(None)


class Controller:
    """Worker pool pulling keys from a WorkQueue, plus a periodic resync.

    ``reconcile`` is blocking and runs in a thread; contextvars are copied so
    code in it can still post Kubernetes events through kopf.
    """

    def __init__(
        self,
        reconcile: Callable[[str], Any],
        list_keys: Callable[[], Iterable[str]],
        workers: int = 4,
        resync_interval: float = 300.0,
        min_retry_delay: float = 1.0,
        max_retry_delay: float = 60.0,
    ):
        self.reconcile = reconcile
        self.list_keys = list_keys
        self.workers = workers
        self.resync_interval = resync_interval
        self.queue = WorkQueue(min_retry_delay, max_retry_delay)
        self._worker_tasks: list[asyncio.Task[None]] = []
        self._resync_task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return bool(self._worker_tasks) and not self.queue.shutting_down

    def enqueue(self, key: str) -> None:
        self.queue.add(key)

    async def start(self) -> None:
        """Start the workers and the resync loop."""
        self._worker_tasks = [
            asyncio.create_task(self._worker(i), name=f"worker-{i}") for i in range(self.workers)
        ]
        self._resync_task = asyncio.create_task(self._resync_loop(), name="resync")
        logger.info("Controller started with %d workers", self.workers)

    async def _worker(self, index: int) -> None:
        while True:
            key = await self.queue.get()
            if key is None:
                logger.debug("Worker %d stopping", index)
                return
            try:
                await asyncio.to_thread(self.reconcile, key)
            except Exception as e:
                delay = self.queue.add_rate_limited(key)
                logger.warning(
                    "Requeued %s in %.1fs after %s: %s", key, delay, type(e).__name__, sanitize_exception(e)
                )
            else:
                self.queue.forget(key)
            finally:
                self.queue.done(key)

    async def resync(self) -> int:
        """Enqueue every known key once.

        Returns:
            Number of keys enqueued
        """
        keys = list(await asyncio.to_thread(self.list_keys))
        for key in keys:
            self.queue.add(key)
        logger.debug("Resync enqueued %d keys", len(keys))
        return len(keys)

    async def _resync_loop(self) -> None:
        while not self.queue.shutting_down:
            await asyncio.sleep(self.resync_interval)
            try:
                await self.resync()
            except Exception as e:
                # the next interval tries again
                logger.warning("Resync failed: %s", sanitize_exception(e))

    async def stop(self, grace: float = 20.0) -> None:
        """Stop accepting work and let in-flight reconciliations finish.

        Workers still busy after grace seconds are cancelled.
        """
        self.queue.shutdown()
        if self._resync_task is not None:
            self._resync_task.cancel()
            await asyncio.gather(self._resync_task, return_exceptions=True)
            self._resync_task = None

        if self._worker_tasks:
            _, pending = await asyncio.wait(self._worker_tasks, timeout=grace)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning("Cancelled %d workers still busy after %.0fs", len(pending), grace)
                await asyncio.gather(*pending, return_exceptions=True)
        self._worker_tasks = []
        logger.info("Controller stopped")
