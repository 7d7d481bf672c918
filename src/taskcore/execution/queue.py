"""Bounded task queue: priority FIFO with a concurrency limit.

WHY
───
Fan-out to an upstream (HTTP API, database, LLM endpoint) needs a hard cap on
in-flight calls, a bounded backlog so callers learn early when the system is
saturated, and an orderly way to stop. ``asyncio.Semaphore`` alone gives the
cap but no backlog bound, no priorities, no per-task cancellation and no
drain/close lifecycle.

ARCHITECTURE
────────────
::

    TaskQueue(max_concurrency=4, max_queue_length=100)
      ├── .enqueue(task)   → TaskHandle   ─ admit or raise QueueFull/QueueClosed
      ├── .submit(task)    → await result ─ enqueue + wait
      ├── .resize(...)                     ─ change bounds at runtime
      └── .shutdown(drain)                 ─ ACCEPTING → DRAINING → CLOSED

    Per task:  QUEUED ──► RUNNING ──► SUCCEEDED | FAILED | CANCELLED
                  └──────────────────────────────► CANCELLED (never ran)

    Waiting slots live in a heap keyed on (-priority, seq): higher priority
    first, insertion order among equals. Admission is eager: every enqueue
    and every completion immediately fills free slots, so no slot idles while
    work is waiting. Running tasks are never preempted.

USAGE
─────
- Set ``max_concurrency`` to what the upstream tolerates.
- Set ``max_queue_length`` so overload surfaces as ``QueueFull`` instead of
  unbounded memory growth and latency.
- Use ``async with TaskQueue(...)`` so pending work drains on exit.

Related modules:
    retry.py   : RetryingExecutor, the unit of work TaskRunner schedules
    runner.py  : TaskRunner, cache → queue → executor composition

Example::

    async with TaskQueue(max_concurrency=2) as queue:
        report = await queue.submit(Task(key="report:q3", operation=build_report))
"""

from __future__ import annotations

import asyncio
import contextvars
import heapq
import itertools
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from taskcore.core.cancellation import CancellationToken
from taskcore.core.errors import Cancelled, QueueClosed, QueueFull
from taskcore.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class TaskState(str, Enum):
    """Lifecycle of a queued task."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED, TaskState.CANCELLED)


class QueueState(str, Enum):
    """Lifecycle of the queue itself."""

    ACCEPTING = "accepting"
    DRAINING = "draining"
    CLOSED = "closed"


@dataclass
class Task(Generic[T]):
    """A keyed unit of async work.

    Attributes:
        key: Identity of the work (cache key for TaskRunner)
        operation: Zero-argument async callable
        priority: Higher runs earlier; equal priorities keep FIFO order
        token: Caller's cancellation token, if any
    """

    key: str
    operation: Callable[[], Awaitable[T]]
    priority: int = 0
    token: CancellationToken | None = None
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: datetime = field(default_factory=utcnow)


@dataclass(eq=False)
class QueueSlot:
    """Queue-owned bookkeeping for one task.

    Compared by identity; ordering is ``(-priority, seq)`` for the heap.
    ``context`` is the enqueuing caller's contextvars snapshot; the task
    runs inside it regardless of which coroutine admits it.
    """

    task: Task[Any]
    deferred: asyncio.Future[Any]
    seq: int
    token: CancellationToken
    state: TaskState = TaskState.QUEUED
    runner: asyncio.Task[None] | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    release_token: Callable[[], None] | None = None
    context: contextvars.Context = field(default_factory=contextvars.copy_context)

    def __lt__(self, other: QueueSlot) -> bool:
        return (-self.task.priority, self.seq) < (-other.task.priority, other.seq)

    @property
    def duration_seconds(self) -> float | None:
        """Run time if both timestamps are set."""
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None


class TaskHandle(Generic[T]):
    """Caller-facing view of a submitted task."""

    def __init__(self, queue: TaskQueue, slot: QueueSlot) -> None:
        self._queue = queue
        self._slot = slot

    @property
    def task_id(self) -> str:
        return self._slot.task.task_id

    @property
    def key(self) -> str:
        return self._slot.task.key

    @property
    def state(self) -> TaskState:
        return self._slot.state

    def done(self) -> bool:
        return self._slot.state.is_terminal

    def cancel(self, reason: str | None = None) -> bool:
        """Cancel the task. A queued task never runs; a running one is aborted."""
        return self._queue._cancel_slot(self._slot, reason or "cancelled via handle")

    async def result(self) -> T:
        """Wait for the task and return its result (or raise its error).

        Cancelling the awaiting coroutine cancels the task.
        """
        try:
            return await asyncio.shield(self._slot.deferred)
        except asyncio.CancelledError:
            if not self._slot.deferred.done():
                self.cancel("awaiting caller cancelled")
            raise

    def __repr__(self) -> str:
        return f"TaskHandle(task_id={self.task_id!r}, key={self.key!r}, state={self.state.value})"


@dataclass
class QueueStats:
    """Counters for queue monitoring."""

    submitted: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: int = 0
    rejected: int = 0
    peak_running: int = 0


class TaskQueue:
    """Priority FIFO of async tasks with bounded concurrency and backlog.

    Parameters
    ----------
    max_concurrency : int
        Maximum tasks in RUNNING at any instant.
    max_queue_length : int | None
        Maximum tasks waiting in QUEUED (``None`` → unbounded).
    name : str
        Label used in logs and errors.
    """

    def __init__(
        self,
        *,
        max_concurrency: int = 10,
        max_queue_length: int | None = None,
        name: str = "default",
    ) -> None:
        _check_bounds(max_concurrency, max_queue_length)
        self.name = name
        self._max_concurrency = max_concurrency
        self._max_queue_length = max_queue_length
        self._heap: list[QueueSlot] = []
        self._running: set[QueueSlot] = set()
        self._queued = 0
        self._seq = itertools.count()
        self._state = QueueState.ACCEPTING
        self._idle = asyncio.Event()
        self._idle.set()
        self._stats = QueueStats()

    @classmethod
    def from_settings(cls, settings: Any, name: str = "default") -> TaskQueue:
        return cls(
            max_concurrency=settings.max_concurrency,
            max_queue_length=settings.max_queue_length,
            name=name,
        )

    # ── Inspection ───────────────────────────────────────────────────

    @property
    def state(self) -> QueueState:
        return self._state

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    @property
    def max_queue_length(self) -> int | None:
        return self._max_queue_length

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def queued_count(self) -> int:
        return self._queued

    @property
    def stats(self) -> QueueStats:
        return self._stats

    def to_dict(self) -> dict[str, Any]:
        """Serialise for logging / health endpoints."""
        return {
            "name": self.name,
            "state": self._state.value,
            "running": self.running_count,
            "queued": self._queued,
            "max_concurrency": self._max_concurrency,
            "max_queue_length": self._max_queue_length,
            "submitted": self._stats.submitted,
            "succeeded": self._stats.succeeded,
            "failed": self._stats.failed,
            "cancelled": self._stats.cancelled,
            "rejected": self._stats.rejected,
            "peak_running": self._stats.peak_running,
        }

    # ── Submission ───────────────────────────────────────────────────

    def enqueue(self, task: Task[T]) -> TaskHandle[T]:
        """Admit a task without waiting for it.

        Raises:
            QueueClosed: The queue is draining or closed.
            QueueFull: The task would have to wait and the backlog is full.
            Cancelled: The task's token is already cancelled.
        """
        if self._state != QueueState.ACCEPTING:
            self._stats.rejected += 1
            logger.info("queue.rejected", queue=self.name, key=task.key, reason=self._state.value)
            raise QueueClosed(self.name, self._state.value)

        must_wait = len(self._running) >= self._max_concurrency
        if (
            must_wait
            and self._max_queue_length is not None
            and self._queued >= self._max_queue_length
        ):
            self._stats.rejected += 1
            logger.info("queue.rejected", queue=self.name, key=task.key, reason="full")
            raise QueueFull(self._max_queue_length, self.name)

        if task.token is not None:
            task.token.raise_if_cancelled()

        slot = QueueSlot(
            task=task,
            deferred=asyncio.get_running_loop().create_future(),
            seq=next(self._seq),
            token=CancellationToken(parent=task.token),
            context=contextvars.copy_context(),
        )
        slot.release_token = slot.token.add_callback(
            lambda: self._cancel_slot(slot, slot.token.reason)
        )
        heapq.heappush(self._heap, slot)
        self._queued += 1
        self._stats.submitted += 1
        self._idle.clear()
        logger.debug(
            "queue.enqueued",
            queue=self.name,
            key=task.key,
            task_id=task.task_id,
            priority=task.priority,
            queued=self._queued,
        )

        self._pump()
        return TaskHandle(self, slot)

    async def submit(self, task: Task[T]) -> T:
        """Enqueue ``task`` and wait for its result."""
        return await self.enqueue(task).result()

    # ── Scheduling ───────────────────────────────────────────────────

    def _pump(self) -> None:
        """Admit queued slots while there is a free concurrency slot."""
        while self._heap and len(self._running) < self._max_concurrency:
            slot = heapq.heappop(self._heap)
            if slot.state != TaskState.QUEUED:
                continue  # cancelled while waiting
            self._queued -= 1
            slot.state = TaskState.RUNNING
            slot.started_at = utcnow()
            self._running.add(slot)
            self._stats.peak_running = max(self._stats.peak_running, len(self._running))
            slot.runner = asyncio.create_task(
                self._run_slot(slot),
                name=f"taskcore:{self.name}:{slot.task.task_id}",
                context=slot.context,
            )
            logger.debug(
                "queue.task_started",
                queue=self.name,
                key=slot.task.key,
                task_id=slot.task.task_id,
                running=len(self._running),
                queued=self._queued,
            )
        self._check_idle()

    async def _run_slot(self, slot: QueueSlot) -> None:
        try:
            result = await slot.token.guard(slot.task.operation())
        except Cancelled as e:
            self._settle(slot, TaskState.CANCELLED, error=e)
        except asyncio.CancelledError:
            self._settle(slot, TaskState.CANCELLED, error=Cancelled(slot.token.reason or "task cancelled"))
            raise
        except Exception as e:
            self._settle(slot, TaskState.FAILED, error=e)
        else:
            self._settle(slot, TaskState.SUCCEEDED, result=result)

    def _settle(
        self,
        slot: QueueSlot,
        state: TaskState,
        *,
        result: Any = None,
        error: BaseException | None = None,
    ) -> None:
        """Move a slot to a terminal state, free its concurrency slot, refill."""
        if slot.state.is_terminal:
            return
        was_running = slot.state == TaskState.RUNNING
        slot.state = state
        slot.finished_at = utcnow()
        if slot.release_token is not None:
            slot.release_token()
        slot.token.detach()

        if state == TaskState.SUCCEEDED:
            self._stats.succeeded += 1
        elif state == TaskState.FAILED:
            self._stats.failed += 1
        else:
            self._stats.cancelled += 1

        if not slot.deferred.done():
            if error is not None:
                slot.deferred.set_exception(error)
                # Consumed here so an unobserved failure does not warn at GC.
                slot.deferred.exception()
            else:
                slot.deferred.set_result(result)

        logger.debug(
            "queue.task_finished",
            queue=self.name,
            key=slot.task.key,
            task_id=slot.task.task_id,
            state=state.value,
            duration_seconds=slot.duration_seconds,
        )

        if was_running:
            self._running.discard(slot)
            self._pump()
        else:
            self._queued -= 1
            self._check_idle()

    def _cancel_slot(self, slot: QueueSlot, reason: str | None) -> bool:
        if slot.state.is_terminal:
            return False
        if slot.state == TaskState.QUEUED:
            # Stays in the heap; _pump skips it.
            self._settle(slot, TaskState.CANCELLED, error=Cancelled(reason))
            return True
        # RUNNING: the guard in _run_slot aborts the operation and settles.
        slot.token.cancel(reason)
        return True

    def _check_idle(self) -> None:
        if not self._running and self._queued == 0:
            self._heap.clear()
            self._idle.set()
            if self._state == QueueState.DRAINING:
                self._state = QueueState.CLOSED
                logger.info("queue.closed", queue=self.name, **self._stats.__dict__)

    # ── Reconfiguration & lifecycle ──────────────────────────────────

    def resize(
        self,
        max_concurrency: int | None = None,
        max_queue_length: int | None = None,
    ) -> None:
        """Change the bounds. Raising concurrency admits waiting work now;
        lowering it lets running tasks finish."""
        new_concurrency = self._max_concurrency if max_concurrency is None else max_concurrency
        new_length = self._max_queue_length if max_queue_length is None else max_queue_length
        _check_bounds(new_concurrency, new_length)
        changed = (new_concurrency, new_length) != (self._max_concurrency, self._max_queue_length)
        self._max_concurrency = new_concurrency
        self._max_queue_length = new_length
        if changed:
            logger.info(
                "queue.resized",
                queue=self.name,
                max_concurrency=new_concurrency,
                max_queue_length=new_length,
            )
            self._pump()

    async def shutdown(self, drain: bool = True) -> None:
        """Stop accepting work and wait until the queue is empty.

        Args:
            drain: If True, queued tasks still run. If False, queued tasks are
                cancelled (they settle as Cancelled); running tasks finish
                either way.
        """
        if self._state == QueueState.ACCEPTING:
            self._state = QueueState.DRAINING
            logger.info(
                "queue.shutdown",
                queue=self.name,
                drain=drain,
                running=len(self._running),
                queued=self._queued,
            )

        if not drain:
            waiting = [s for s in self._heap if s.state == TaskState.QUEUED]
            for slot in waiting:
                self._settle(slot, TaskState.CANCELLED, error=Cancelled("queue shutdown"))

        self._check_idle()
        await self._idle.wait()

    async def join(self) -> None:
        """Wait until no task is queued or running, without closing."""
        await self._idle.wait()

    async def __aenter__(self) -> TaskQueue:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.shutdown(drain=True)


def _check_bounds(max_concurrency: int, max_queue_length: int | None) -> None:
    if max_concurrency < 1:
        raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
    if max_queue_length is not None and max_queue_length < 0:
        raise ValueError(f"max_queue_length must be >= 0, got {max_queue_length}")


__all__ = [
    "TaskState",
    "QueueState",
    "Task",
    "QueueSlot",
    "TaskHandle",
    "QueueStats",
    "TaskQueue",
]
