"""Tests for the cooperative task scheduler."""

from __future__ import annotations

from pluqqy.errors import TaskCancelled
from pluqqy.tasks import TaskScheduler, TaskStatus


def test_tasks_run_fifo_and_deliver_results() -> None:
    scheduler = TaskScheduler()
    calls: list[str] = []
    scheduler.submit(calls.append, "a", name="first")
    scheduler.submit(calls.append, "b", name="second")
    assert len(scheduler) == 2
    assert calls == []

    results = scheduler.run_pending()
    assert calls == ["a", "b"]
    assert [r.name for r in results] == ["first", "second"]
    assert all(r.success for r in results)
    assert len(scheduler) == 0


def test_failure_becomes_failed_result() -> None:
    scheduler = TaskScheduler()

    def boom() -> None:
        raise RuntimeError("disk on fire")

    scheduler.submit(boom)
    scheduler.submit(lambda: 42, name="after")
    results = scheduler.run_pending()
    assert results[0].failed
    assert isinstance(results[0].error, RuntimeError)
    assert results[1].result == 42


def test_then_receives_parent_result() -> None:
    scheduler = TaskScheduler()
    parent = scheduler.submit(lambda: 20, name="parent")
    scheduler.then(parent, lambda value: value + 1, name="child")
    results = scheduler.run_pending()
    assert [(r.name, r.result) for r in results] == [("parent", 20), ("child", 21)]


def test_child_cancelled_when_parent_fails() -> None:
    scheduler = TaskScheduler()

    def boom() -> None:
        raise ValueError("nope")

    parent = scheduler.submit(boom, name="parent")
    child = scheduler.then(parent, lambda v: v, name="child")
    results = scheduler.run_pending()
    assert [r.status for r in results] == [TaskStatus.FAILED, TaskStatus.CANCELLED]
    assert child.status == TaskStatus.CANCELLED


def test_cancel_pending_cancellable_task() -> None:
    scheduler = TaskScheduler()
    ran: list[int] = []
    task = scheduler.submit(ran.append, 1, name="cleanup")
    child = scheduler.then(task, lambda v: v, name="follow-up")

    assert scheduler.cancel(task) is True
    assert scheduler.cancel(task) is False
    results = scheduler.run_pending()
    assert ran == []
    assert [r.name for r in results] == ["cleanup", "follow-up"]
    assert all(r.status == TaskStatus.CANCELLED for r in results)
    assert isinstance(results[0].error, TaskCancelled)
    assert child.status == TaskStatus.CANCELLED


def test_non_cancellable_task_runs() -> None:
    scheduler = TaskScheduler()
    ran: list[int] = []
    task = scheduler.submit(ran.append, 1, cancellable=False)
    assert scheduler.cancel(task) is False
    scheduler.run_pending()
    assert ran == [1]


def test_then_on_finished_parent_cancels_child() -> None:
    scheduler = TaskScheduler()
    parent = scheduler.submit(lambda: None)
    scheduler.run_pending()
    child = scheduler.then(parent, lambda v: v)
    assert child.status == TaskStatus.CANCELLED
    assert [r.status for r in scheduler.drain()] == [TaskStatus.CANCELLED]
