from __future__ import annotations

import logging
from datetime import datetime
from itertools import count

import pytest

from taskorbit.domain.entities import TaskEntity
from taskorbit.domain.enums import RecurrenceFrequency, TaskStatus
from taskorbit.domain.errors import InvalidRule
from taskorbit.domain.recurrence import RecurrenceRule
from taskorbit.infra.persistence import DebouncedSaver
from taskorbit.services.lifecycle import LifecycleEngine
from taskorbit.services.task_store import TaskStore

NOW = datetime(2024, 1, 1, 18, 0)
DUE = datetime(2024, 1, 1, 12, 0)


class ManualTimer:
    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.callback()


class FakeStorage:
    def __init__(self) -> None:
        self.saved: list[tuple[TaskEntity, ...]] = []

    def load(self) -> list[TaskEntity]:
        return list(self.saved[-1]) if self.saved else []

    def save(self, tasks) -> None:
        self.saved.append(tuple(tasks))


class BrokenStorage(FakeStorage):
    def save(self, tasks) -> None:
        raise OSError("disk full")


def make_saver(storage: FakeStorage) -> tuple[DebouncedSaver, list[ManualTimer]]:
    timers: list[ManualTimer] = []

    def factory(delay: float, callback) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        timers.append(timer)
        return timer

    return DebouncedSaver(storage, delay=0.5, timer_factory=factory), timers


def make_store(storage: FakeStorage | None = None, tasks=()) -> tuple[TaskStore, FakeStorage, list[ManualTimer]]:
    storage = storage or FakeStorage()
    saver, timers = make_saver(storage)
    ids = count(1)
    engine = LifecycleEngine(clock=lambda: NOW, id_factory=lambda: f"gen-{next(ids)}")
    return TaskStore(engine, saver, tasks), storage, timers


def daily_task(task_id: str = "root") -> TaskEntity:
    return TaskEntity(
        id=task_id,
        title="Feed the cat",
        due_date=DUE,
        recurrence=RecurrenceRule(RecurrenceFrequency.DAILY, start=DUE),
        created_at=datetime(2023, 12, 1),
    )


def test_saver_coalesces_rapid_changes() -> None:
    storage = FakeStorage()
    saver, timers = make_saver(storage)
    first = (daily_task("a"),)
    second = first + (daily_task("b"),)

    saver.schedule(first)
    saver.schedule(second)

    assert len(timers) == 2
    assert timers[0].cancelled
    assert timers[1].started and timers[1].daemon
    assert timers[1].delay == 0.5
    timers[0].fire()
    assert storage.saved == []
    timers[1].fire()
    assert storage.saved == [second]
    assert not saver.has_pending


def test_flush_writes_latest_snapshot_once() -> None:
    storage = FakeStorage()
    saver, _ = make_saver(storage)
    saver.schedule((daily_task("a"),))
    saver.schedule((daily_task("b"),))

    saver.flush()
    saver.flush()

    assert [[t.id for t in tasks] for tasks in storage.saved] == [["b"]]


def test_cancel_drops_pending_snapshot() -> None:
    storage = FakeStorage()
    saver, timers = make_saver(storage)
    saver.schedule((daily_task(),))

    saver.cancel()
    saver.flush()

    assert timers[0].cancelled
    assert storage.saved == []


def test_failed_save_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    saver, _ = make_saver(BrokenStorage())
    saver.schedule((daily_task(),))

    with caplog.at_level(logging.ERROR, logger="taskorbit.infra.persistence"):
        saver.flush()

    assert "Saving 1 tasks failed" in caplog.text
    assert not saver.has_pending


def test_store_transition_schedules_save_and_notifies() -> None:
    store, storage, timers = make_store(tasks=(daily_task(),))
    seen = []
    store.subscribe(seen.append)

    snapshot = store.apply_transition("root", TaskStatus.COMPLETED)

    assert store.snapshot == snapshot
    assert len(snapshot) == 2
    assert store.get("root").due_date == datetime(2024, 1, 2, 12, 0)
    assert store.get("gen-1").status == TaskStatus.COMPLETED
    assert seen == [snapshot]
    timers[-1].fire()
    assert storage.saved == [snapshot]


def test_store_add_pins_anchor_and_rejects_duplicates() -> None:
    store, _, _ = make_store()
    task = TaskEntity(
        id="t1",
        title="Pay rent",
        due_date=datetime(2024, 1, 31, 9, 0),
        recurrence=RecurrenceRule(RecurrenceFrequency.MONTHLY),
    )

    added = store.add(task)

    assert added.recurrence.start == datetime(2024, 1, 31, 9, 0)
    assert store.get("t1") == added
    with pytest.raises(ValueError):
        store.add(task)


def test_unsubscribed_listener_is_not_called() -> None:
    store, _, _ = make_store(tasks=(daily_task(),))
    seen = []
    unsubscribe = store.subscribe(seen.append)

    unsubscribe()
    store.apply_transition("root", TaskStatus.IN_PROGRESS)

    assert seen == []


def test_no_op_transition_neither_saves_nor_notifies() -> None:
    store, _, timers = make_store(tasks=(daily_task(),))
    seen = []
    store.subscribe(seen.append)

    store.apply_transition("missing", TaskStatus.COMPLETED)

    assert seen == []
    assert timers == []


def test_replace_snapshot_notifies_without_saving() -> None:
    store, _, timers = make_store(tasks=(daily_task(),))
    seen = []
    store.subscribe(seen.append)
    incoming = (daily_task("other"),)

    store.replace_snapshot(incoming)

    assert store.snapshot == incoming
    assert store.get("root") is None
    assert seen == [incoming]
    assert timers == []


def test_invalid_rule_leaves_store_untouched() -> None:
    broken = TaskEntity(
        id="bad",
        title="Broken",
        due_date=DUE,
        recurrence=RecurrenceRule(RecurrenceFrequency.MONTHLY, day_of_month=40, start=DUE),
    )
    store, _, timers = make_store(tasks=(broken,))

    with pytest.raises(InvalidRule):
        store.apply_transition("bad", TaskStatus.COMPLETED)

    assert store.snapshot == (broken,)
    assert timers == []


def test_delete_and_flush_persist_immediately() -> None:
    store, storage, _ = make_store(tasks=(daily_task("a"), daily_task("b")))

    store.delete("a")
    store.flush()

    assert [[t.id for t in tasks] for tasks in storage.saved] == [["b"]]
