"""
WarmingScheduler: idle-gated, concurrency-limited cache population.

Tasks wait in a priority list (highest first, ties in insertion order) and
are dispatched by a single background coroutine:

1. Wait for a free worker slot (at most ``max_concurrent`` running).
2. If foreground requests are in flight, leave the head task in place and
   poll again with backoff. After ``max_requeues`` consecutive deferrals the
   head task is dispatched anyway.
3. Run the task: skip it if the store already holds a valid entry,
   otherwise call the producer and write the result. A write the store
   drops counts as a failure.
4. Sleep ``task_delay_ms`` before the next dispatch.

Failures are logged per task and never halt the queue. Nothing is retried.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
from collections import deque
from dataclasses import dataclass
from typing import Any

from warmcache.cache.store import TieredStore
from warmcache.exceptions import TaskError
from warmcache.logging import get_logger, log_context
from warmcache.types import TaskState, WarmingTask
from warmcache.warming.idle import InFlightCounter

logger = get_logger(__name__)

IDLE_BACKOFF_FACTOR = 1.5


@dataclass(frozen=True)
class SchedulerStats:
    """Point-in-time view of the scheduler."""

    queue_length: int
    active_tasks: int
    is_running: bool
    completed: int
    failed: int
    skipped: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "queueLength": self.queue_length,
            "activeTasks": self.active_tasks,
            "isRunning": self.is_running,
            "completed": self.completed,
            "failed": self.failed,
            "skipped": self.skipped,
        }


class WarmingScheduler:
    """Priority queue of warming tasks with a bounded worker count."""

    def __init__(
        self,
        store: TieredStore,
        in_flight: InFlightCounter | None = None,
        max_concurrent: int = 2,
        task_delay_ms: int = 1500,
        idle_poll_ms: int = 500,
        idle_poll_max_ms: int = 5000,
        max_requeues: int | None = 20,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store: Store the task results are written to.
            in_flight: Foreground request counter; None means always idle.
            max_concurrent: Maximum tasks in the running state at once.
            task_delay_ms: Pause between dispatches.
            idle_poll_ms: First idle re-check interval.
            idle_poll_max_ms: Ceiling for the idle re-check backoff.
            max_requeues: Consecutive idle deferrals before forcing the head
                task; None waits for idle indefinitely.
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.store = store
        self.in_flight = in_flight
        self.max_concurrent = max_concurrent
        self.task_delay_ms = task_delay_ms
        self.idle_poll_ms = idle_poll_ms
        self.idle_poll_max_ms = max(idle_poll_max_ms, idle_poll_ms)
        self.max_requeues = max_requeues

        self._queue: list[tuple[int, WarmingTask]] = []
        self._seq = itertools.count()
        self._active: dict[str, WarmingTask] = {}
        self._workers: set[asyncio.Task[None]] = set()
        self._slots = asyncio.Semaphore(max_concurrent)
        self._dispatcher: asyncio.Task[None] | None = None

        self._completed = 0
        self._failed = 0
        self._skipped = 0
        self.recent_failures: deque[TaskError] = deque(maxlen=20)

    # Queue

    def add_task(self, task: WarmingTask) -> bool:
        """Queue a task, merging with an existing one of the same key.

        A duplicate key keeps the higher of the two priorities. Tasks whose
        key is already running are ignored.

        Returns:
            True if a new entry was queued.
        """
        if task.key in self._active:
            logger.debug("Warming task already running", key=task.key)
            return False

        for _, queued in self._queue:
            if queued.key == task.key:
                if task.priority > queued.priority:
                    queued.priority = task.priority
                    self._sort()
                return False

        task.state = TaskState.QUEUED
        self._queue.append((next(self._seq), task))
        self._sort()
        logger.debug("Warming task added", key=task.key, priority=task.priority)
        return True

    def _sort(self) -> None:
        self._queue.sort(key=lambda item: (-item[1].priority, item[0]))

    def queued(self) -> list[WarmingTask]:
        """Queued tasks in dispatch order."""
        return [task for _, task in self._queue]

    def clear_queue(self) -> int:
        """Drop every task that has not started. Running tasks continue."""
        dropped = len(self._queue)
        self._queue.clear()
        if dropped:
            logger.info("Warming queue cleared", dropped=dropped)
        return dropped

    # Lifecycle

    @property
    def is_running(self) -> bool:
        return self._dispatcher is not None and not self._dispatcher.done()

    def start(self) -> None:
        """Start draining the queue. Does nothing if already running."""
        if self.is_running:
            return
        logger.info("Starting cache warming", queued=len(self._queue))
        self._dispatcher = asyncio.create_task(self._dispatch_loop(), name="warmcache-warming")

    async def join(self) -> None:
        """Wait until the queue is drained and no task is running."""
        if self._dispatcher is not None:
            await asyncio.wait({self._dispatcher})
        if self._workers:
            await asyncio.wait(set(self._workers))

    async def stop(self) -> None:
        """Clear the queue and stop dispatching; in-flight tasks finish."""
        self.clear_queue()
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._dispatcher
            self._dispatcher = None
        if self._workers:
            await asyncio.wait(set(self._workers))

    def stats(self) -> SchedulerStats:
        return SchedulerStats(
            queue_length=len(self._queue),
            active_tasks=len(self._active),
            is_running=self.is_running,
            completed=self._completed,
            failed=self._failed,
            skipped=self._skipped,
        )

    # Dispatch

    def _is_idle(self) -> bool:
        return self.in_flight is None or self.in_flight.is_idle()

    async def _dispatch_loop(self) -> None:
        deferrals = 0
        poll_ms = float(self.idle_poll_ms)

        with log_context(component="warming"):
            try:
                while True:
                    while self._queue:
                        await self._slots.acquire()
                        if not self._queue:
                            self._slots.release()
                            break

                        if not self._is_idle():
                            if self.max_requeues is None or deferrals < self.max_requeues:
                                self._slots.release()
                                deferrals += 1
                                await asyncio.sleep(poll_ms / 1000)
                                poll_ms = min(poll_ms * IDLE_BACKOFF_FACTOR, self.idle_poll_max_ms)
                                continue
                            logger.info(
                                "Idle wait exhausted, dispatching anyway",
                                key=self._queue[0][1].key,
                                deferrals=deferrals,
                            )

                        deferrals = 0
                        poll_ms = float(self.idle_poll_ms)
                        _, task = self._queue.pop(0)
                        self._launch(task)

                        if self._queue and self.task_delay_ms > 0:
                            await asyncio.sleep(self.task_delay_ms / 1000)

                    if not self._workers:
                        break
                    # Tasks added while workers finish are picked up on the next pass
                    await asyncio.wait(set(self._workers), return_when=asyncio.FIRST_COMPLETED)
            finally:
                logger.debug("Cache warming stopped", stats=self.stats().to_dict())

    def _launch(self, task: WarmingTask) -> None:
        task.state = TaskState.RUNNING
        self._active[task.key] = task
        worker = asyncio.create_task(self._execute(task), name=f"warmcache-task-{task.key}")
        self._workers.add(worker)
        worker.add_done_callback(self._workers.discard)

    async def _execute(self, task: WarmingTask) -> None:
        """Run one task. Never raises."""
        try:
            with log_context(component="warming"):
                existing = await self.store.get(task.key, task.target_class)
                if existing is not None:
                    task.state = TaskState.COMPLETED
                    self._skipped += 1
                    logger.debug("Cache already warm", key=task.key)
                    return

                value = await task.producer()
                if not await self.store.set(task.key, value, task.target_class):
                    error = TaskError("Warming result not stored", context={"key": task.key})
                    task.state = TaskState.FAILED
                    task.error = str(error)
                    self._failed += 1
                    self.recent_failures.append(error)
                    logger.warning("Cache warming result dropped", key=task.key)
                    return
                task.state = TaskState.COMPLETED
                self._completed += 1
                logger.info("Cache warmed", key=task.key, cache_class=task.target_class.name.value)
        except asyncio.CancelledError:
            task.state = TaskState.FAILED
            task.error = "cancelled"
            raise
        except Exception as e:
            error = TaskError(
                "Warming task failed",
                context={"key": task.key, "error": f"{e.__class__.__name__}: {e}"},
            )
            task.state = TaskState.FAILED
            task.error = str(error)
            self._failed += 1
            self.recent_failures.append(error)
            logger.warning("Cache warming failed", key=task.key, error=str(e))
        finally:
            self._active.pop(task.key, None)
            self._slots.release()
