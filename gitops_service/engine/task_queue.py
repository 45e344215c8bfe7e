"""
Concurrency-capped, depth-bounded task queue.

Bounds how much outbound work the process performs at once. At most
``concurrency`` tasks run simultaneously; up to ``max_depth`` more wait in a
FIFO list, and anything beyond that is rejected immediately with
``QueueFullError`` so callers can retry later instead of piling up.

Execution Flow:
    1. ``submit`` checks admission and appends the task with a fresh future
    2. ``_drain`` starts waiting tasks while a slot is free
    3. ``_run`` awaits the task, resolves its future, frees the slot and
       drains again, in one control path whatever the outcome

Everything runs on one event loop, so the counters need no locks.

Example:
    >>> queue = TaskQueue(concurrency=5, max_depth=50)
    >>> result = await queue.enqueue(lambda: publisher.create_feat_branch(request))
    >>> queue.stats().to_dict()
    {'active': 0, 'queued': 0, 'concurrency': 5}
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from gitops_service.exceptions import QueueFullError

log = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class QueuedTask:
    """A deferred unit of work and the future that receives its outcome."""

    task: Callable[[], Awaitable[Any]]
    future: asyncio.Future


@dataclass(frozen=True)
class QueueStats:
    """Point-in-time queue counters, for health reporting only."""

    active: int
    queued: int
    concurrency: int

    def to_dict(self) -> dict[str, int]:
        return {"active": self.active, "queued": self.queued, "concurrency": self.concurrency}


class TaskQueue:
    """In-memory FIFO queue with a concurrency cap and a backlog limit."""

    def __init__(self, concurrency: int = 5, max_depth: int = 50, retry_after: int = 5):
        """Initialize queue.

        Args:
            concurrency: Maximum simultaneously running tasks
            max_depth: Maximum tasks waiting for a slot
            retry_after: Seconds suggested to rejected callers
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if max_depth < 0:
            raise ValueError("max_depth must not be negative")
        self.concurrency = concurrency
        self.max_depth = max_depth
        self.retry_after = retry_after
        self._active = 0
        self._waiting: deque[QueuedTask] = deque()
        self._running: set[asyncio.Task] = set()

    def submit(self, task: Callable[[], Awaitable[T]]) -> "asyncio.Future[T]":
        """Admit a task and return the future of its result.

        Admission is decided synchronously: when the queue is full this
        raises before the task is stored, so a fire-and-forget caller still
        learns about backpressure.

        Raises:
            QueueFullError: Every slot is busy and the backlog is at max_depth
        """
        if self._active >= self.concurrency and len(self._waiting) >= self.max_depth:
            log.warning("queue_full", active=self._active, queued=len(self._waiting), max_depth=self.max_depth)
            raise QueueFullError(self.max_depth, retry_after=self.retry_after)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._waiting.append(QueuedTask(task=task, future=future))
        self._drain()
        return future

    async def enqueue(self, task: Callable[[], Awaitable[T]]) -> T:
        """Run a task once a slot is free and return its result.

        Raises:
            QueueFullError: The backlog is full; the task was not started
            Exception: Whatever the task itself raised
        """
        return await self.submit(task)

    def stats(self) -> QueueStats:
        return QueueStats(active=self._active, queued=len(self._waiting), concurrency=self.concurrency)

    def _drain(self) -> None:
        while self._active < self.concurrency and self._waiting:
            item = self._waiting.popleft()
            self._active += 1
            runner = asyncio.ensure_future(self._run(item))
            self._running.add(runner)
            runner.add_done_callback(self._running.discard)

    async def _run(self, item: QueuedTask) -> None:
        try:
            result = await item.task()
        except Exception as e:
            if not item.future.done():
                item.future.set_exception(e)
        else:
            if not item.future.done():
                item.future.set_result(result)
        finally:
            self._active -= 1
            self._drain()
