"""
Task scheduler.

Collapses bursts of parameter changes into a single trace run:

- debounced submissions wait ``debounce_ms`` before they are queued; a newer
  submission for the same image cancels the older one
- a bounded priority queue (high > normal > low, FIFO within a priority)
  drops its oldest task on overflow
- exactly one task runs at a time, and finishing a task always starts the
  next one

Running tasks are never interrupted. If a running task is cancelled its
result is discarded when it finishes and its future fails with
``CancellationError("during-execution")``.

Every call must happen on the event loop thread.
"""

import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .config import SchedulerOptions
from .errors import CancellationError
from .types import TracerParams

logger = logging.getLogger(__name__)

PRIORITIES = {"high": 0, "normal": 1, "low": 2}


class TaskState(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    cancelled = "cancelled"
    error = "error"


Executor = Callable[[], Any]


@dataclass(eq=False)
class TraceTask:
    id: str
    image_id: str
    params: Optional[TracerParams]
    executor: Executor
    priority: str
    future: asyncio.Future
    sequence: int
    state: TaskState = TaskState.pending
    cancel_reason: Optional[str] = None
    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    @property
    def rank(self):
        return (PRIORITIES[self.priority], self.sequence)


@dataclass
class SchedulerStatus:
    queue_length: int
    debouncing: int
    is_processing: bool
    current_task_id: Optional[str]


class TaskScheduler:
    """Debounced, bounded, single-runner task queue."""

    def __init__(self, options: Optional[SchedulerOptions] = None):
        self.options = options or SchedulerOptions()
        self._sequence = itertools.count(1)
        self._queue: List[TraceTask] = []
        self._debouncing: Dict[str, List[TraceTask]] = {}
        self._tasks: Dict[str, TraceTask] = {}
        self._current: Optional[TraceTask] = None
        self._runner: Optional[asyncio.Task] = None
        self._closed = False

    # ------------------------------------------------------------------
    # submission
    # ------------------------------------------------------------------

    def _new_task(self, image_id, params, executor, priority) -> TraceTask:
        if self._closed:
            raise RuntimeError("Scheduler is closed")
        if priority not in PRIORITIES:
            raise ValueError(f"Unknown priority {priority!r}, expected one of {list(PRIORITIES)}")
        loop = asyncio.get_running_loop()
        seq = next(self._sequence)
        task = TraceTask(
            id=f"task-{seq}",
            image_id=image_id,
            params=params,
            executor=executor,
            priority=priority,
            future=loop.create_future(),
            sequence=seq,
        )
        if self.options.cancel_on_new_task:
            self._supersede(image_id)
        self._tasks[task.id] = task
        task.future.add_done_callback(lambda _f, t=task: self._tasks.pop(t.id, None))
        return task

    def submit_debounced(
        self,
        image_id: str,
        params: Optional[TracerParams],
        executor: Executor,
        priority: str = "normal",
    ) -> asyncio.Future:
        """Queue ``executor`` after the debounce window, unless superseded first."""
        task = self._new_task(image_id, params, executor, priority)
        loop = asyncio.get_running_loop()
        task.timer = loop.call_later(self.options.debounce_ms / 1000.0, self._release, task)
        self._debouncing.setdefault(image_id, []).append(task)
        logger.debug("Debouncing %s for image %s", task.id, image_id)
        return task.future

    def submit_immediate(
        self,
        image_id: str,
        params: Optional[TracerParams],
        executor: Executor,
        priority: str = "high",
    ) -> asyncio.Future:
        """Queue ``executor`` right away."""
        task = self._new_task(image_id, params, executor, priority)
        self._enqueue(task)
        return task.future

    def _release(self, task: TraceTask) -> None:
        pending = self._debouncing.get(task.image_id, [])
        if task in pending:
            pending.remove(task)
        if not pending:
            self._debouncing.pop(task.image_id, None)
        task.timer = None
        if task.state == TaskState.pending and not task.future.done():
            self._enqueue(task)

    def _enqueue(self, task: TraceTask) -> None:
        while self._queue and len(self._queue) >= self.options.max_queue_size:
            oldest = min(self._queue, key=lambda t: t.sequence)
            self._queue.remove(oldest)
            logger.info("Queue full, dropping %s", oldest.id)
            self._reject(oldest, "overflow")
        self._queue.append(task)
        self._pump()

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------

    def _pump(self) -> None:
        if self._current is not None or not self._queue or self._closed:
            return
        task = min(self._queue, key=lambda t: t.rank)
        self._queue.remove(task)
        self._current = task
        task.state = TaskState.running
        self._runner = asyncio.get_running_loop().create_task(self._run(task))

    async def _execute(self, task: TraceTask) -> Any:
        if inspect.iscoroutinefunction(task.executor):
            return await task.executor()
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, task.executor)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _run(self, task: TraceTask) -> None:
        logger.debug("Running %s (image %s)", task.id, task.image_id)
        try:
            result = await self._execute(task)
        except asyncio.CancelledError:
            self._reject(task, task.cancel_reason or "cancelled")
            raise
        except CancellationError as e:
            logger.debug("Task %s cancelled by its executor (%s)", task.id, e.reason)
            self._reject(task, "during-execution" if task.cancel_reason is not None else e.reason)
        except Exception as e:
            if task.cancel_reason is not None:
                self._reject(task, "during-execution")
            else:
                task.state = TaskState.error
                logger.warning("Task %s failed: %s", task.id, e)
                if not task.future.done():
                    task.future.set_exception(e)
        else:
            if task.cancel_reason is not None:
                logger.debug("Discarding result of cancelled %s", task.id)
                self._reject(task, "during-execution")
            else:
                task.state = TaskState.completed
                if not task.future.done():
                    task.future.set_result(result)
        finally:
            self._current = None
            self._runner = None
            self._pump()

    # ------------------------------------------------------------------
    # cancellation
    # ------------------------------------------------------------------

    def _reject(self, task: TraceTask, reason: str) -> None:
        task.state = TaskState.cancelled
        task.cancel_reason = task.cancel_reason or reason
        if task.timer is not None:
            task.timer.cancel()
            task.timer = None
        if not task.future.done():
            task.future.set_exception(CancellationError(reason, task.id))

    def _cancel(self, task: TraceTask, reason: str) -> bool:
        if task.future.done():
            return False
        if task is self._current:
            task.cancel_reason = reason
            return True
        if task in self._queue:
            self._queue.remove(task)
        pending = self._debouncing.get(task.image_id)
        if pending and task in pending:
            pending.remove(task)
            if not pending:
                self._debouncing.pop(task.image_id, None)
        self._reject(task, reason)
        return True

    def _supersede(self, image_id: str) -> None:
        for task in [t for t in self._tasks.values() if t.image_id == image_id]:
            if self._cancel(task, "superseded"):
                logger.debug("Superseded %s", task.id)

    def cancel(self, task_id: str) -> bool:
        """Cancel one task. Returns False if it already finished."""
        task = self._tasks.get(task_id)
        return task is not None and self._cancel(task, "cancelled")

    def cancel_image(self, image_id: str) -> int:
        """Cancel every task of one image."""
        tasks = [t for t in self._tasks.values() if t.image_id == image_id]
        return sum(self._cancel(t, "cancelled") for t in tasks)

    def cancel_all(self) -> int:
        tasks = list(self._tasks.values())
        return sum(self._cancel(t, "cancelled") for t in tasks)

    # ------------------------------------------------------------------
    # introspection
    # ------------------------------------------------------------------

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            queue_length=len(self._queue),
            debouncing=sum(len(v) for v in self._debouncing.values()),
            is_processing=self._current is not None,
            current_task_id=self._current.id if self._current else None,
        )

    def update_options(self, **changes) -> SchedulerOptions:
        """Change debounce, queue size or cancellation policy for new submissions."""
        self.options = replace(self.options, **changes)
        return self.options

    async def close(self) -> None:
        """Cancel everything and wait for the running task to settle."""
        self._closed = True
        runner = self._runner
        self.cancel_all()
        if runner is not None:
            await asyncio.gather(runner, return_exceptions=True)
