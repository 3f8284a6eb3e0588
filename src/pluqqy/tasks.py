"""Cooperative task scheduling for background side effects.

Single-threaded: a task is a plain callable queued now and executed later by
``run_pending()`` on the caller's thread. Each executed task produces one
TaskResult message; messages come back in FIFO order. Tasks can be chained
with ``then()`` so that a follow-up only runs once its parent completes.

Design:
- No threads are exposed to the domain layer
- Only tasks submitted as cancellable can be cancelled, and only while pending
- A failing task yields a FAILED result; it never raises out of run_pending()
"""

from __future__ import annotations

import itertools
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from pluqqy.errors import TaskCancelled

logger = structlog.get_logger(__name__)

_ids = itertools.count(1)


class TaskStatus(Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(eq=False)
class Task:
    """Unit of deferred work."""

    fn: Callable[..., Any]
    args: tuple = ()
    kwargs: dict[str, Any] = field(default_factory=dict)
    name: str = ""
    cancellable: bool = True
    id: int = field(default_factory=lambda: next(_ids))
    status: TaskStatus = TaskStatus.PENDING
    # Follow-ups released when this task completes; each receives the result
    children: list[Task] = field(default_factory=list)
    parent: Task | None = field(default=None, repr=False)


@dataclass
class TaskResult:
    """Completion message delivered back to the caller."""

    task_id: int
    name: str
    status: TaskStatus
    result: Any = None
    error: BaseException | None = None

    @property
    def success(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    @property
    def failed(self) -> bool:
        return self.status == TaskStatus.FAILED


class TaskScheduler:
    """FIFO queue of deferred tasks executed by run_pending()."""

    def __init__(self) -> None:
        self._queue: deque[Task] = deque()
        self._outbox: deque[TaskResult] = deque()

    def __len__(self) -> int:
        return len(self._queue)

    def submit(
        self,
        fn: Callable[..., Any],
        *args: Any,
        name: str = "",
        cancellable: bool = True,
        **kwargs: Any,
    ) -> Task:
        """Queue *fn(*args, **kwargs)* and return its task handle."""
        task = Task(fn=fn, args=args, kwargs=kwargs, name=name or getattr(fn, "__name__", "task"), cancellable=cancellable)
        self._queue.append(task)
        return task

    def then(self, parent: Task, fn: Callable[[Any], Any], *, name: str = "", cancellable: bool = True) -> Task:
        """Chain *fn(parent_result)* to run after *parent* completes.

        If *parent* fails or is cancelled, the follow-up is cancelled too.
        """
        child = Task(fn=fn, name=name or getattr(fn, "__name__", "task"), cancellable=cancellable, parent=parent)
        if parent.status == TaskStatus.PENDING:
            parent.children.append(child)
        else:
            self._finish(child, TaskStatus.CANCELLED, error=TaskCancelled(f"Parent task '{parent.name}' already finished."))
        return child

    def cancel(self, task: Task) -> bool:
        """Cancel a pending, cancellable task (and its follow-ups).

        Returns:
            True if the task was cancelled, False if it could not be.
        """
        if task.status != TaskStatus.PENDING or not task.cancellable:
            return False
        try:
            self._queue.remove(task)
        except ValueError:
            # Not queued yet: a follow-up still waiting on its parent
            if task.parent is not None and task in task.parent.children:
                task.parent.children.remove(task)
        self._finish(task, TaskStatus.CANCELLED, error=TaskCancelled(f"Task '{task.name}' cancelled."))
        return True

    def run_pending(self) -> list[TaskResult]:
        """Execute queued tasks in FIFO order, including released follow-ups.

        Returns:
            Completion messages in the order tasks finished.
        """
        while self._queue:
            task = self._queue.popleft()
            try:
                value = task.fn(*task.args, **task.kwargs)
            except Exception as exc:
                logger.warning("task_failed", task=task.name, error=str(exc))
                self._finish(task, TaskStatus.FAILED, error=exc)
                continue
            self._finish(task, TaskStatus.COMPLETED, result=value)
            for child in task.children:
                child.args = (value,)
                self._queue.append(child)
            task.children = []
        return self.drain()

    def drain(self) -> list[TaskResult]:
        """Return and clear the delivered-but-unread messages."""
        messages = list(self._outbox)
        self._outbox.clear()
        return messages

    def _finish(
        self,
        task: Task,
        status: TaskStatus,
        result: Any = None,
        error: BaseException | None = None,
    ) -> None:
        task.status = status
        if status == TaskStatus.CANCELLED:
            logger.debug("task_cancelled", task=task.name, task_id=task.id)
        self._outbox.append(TaskResult(task_id=task.id, name=task.name, status=status, result=result, error=error))
        if status != TaskStatus.COMPLETED:
            for child in task.children:
                self._finish(child, TaskStatus.CANCELLED, error=TaskCancelled(f"Parent task '{task.name}' did not complete."))
            task.children = []
