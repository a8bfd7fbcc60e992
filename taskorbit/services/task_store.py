from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import date, datetime
from typing import Any, Mapping, Optional

from taskorbit.domain.entities import TaskEntity
from taskorbit.domain.enums import TaskStatus
from taskorbit.infra.persistence import DebouncedSaver

from .lifecycle import LifecycleEngine, Snapshot
from .occurrences import Occurrence, VirtualOccurrence, occurrences_between, project

logger = logging.getLogger(__name__)

Listener = Callable[[Snapshot], None]


class TaskStore:
    def __init__(
        self,
        engine: LifecycleEngine,
        saver: Optional[DebouncedSaver] = None,
        tasks: Iterable[TaskEntity] = (),
    ) -> None:
        self._engine = engine
        self._saver = saver
        self._snapshot: Snapshot = tuple(tasks)
        self._index = {t.id: t for t in self._snapshot}
        self._listeners: list[Listener] = []

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def get(self, task_id: str) -> Optional[TaskEntity]:
        return self._index.get(task_id)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def add(self, task: TaskEntity) -> TaskEntity:
        if task.id in self._index:
            raise ValueError(f"Task {task.id} already exists")
        prepared = self._engine.prepare_new(task)
        self._commit(self._snapshot + (prepared,))
        return prepared

    def delete(self, task_id: str) -> None:
        if task_id not in self._index:
            return
        self._commit(tuple(t for t in self._snapshot if t.id != task_id))

    def apply_transition(
        self,
        task_id: str,
        new_status: TaskStatus | str,
        occurrence_date: Optional[datetime] = None,
    ) -> Snapshot:
        return self._commit(
            self._engine.apply_transition(self._snapshot, task_id, new_status, occurrence_date)
        )

    def complete_occurrence(self, occurrence: Occurrence) -> Snapshot:
        return self._commit(self._engine.complete_occurrence(self._snapshot, occurrence))

    def edit_occurrence(self, occurrence: Occurrence, changes: Mapping[str, Any]) -> Snapshot:
        return self._commit(self._engine.edit_occurrence(self._snapshot, occurrence, changes))

    def add_comment(self, task_id: str, text: str) -> Snapshot:
        return self._commit(self._engine.add_comment(self._snapshot, task_id, text))

    def skip_occurrence(self, root_id: str, day: date | datetime) -> Snapshot:
        return self._commit(self._engine.skip_occurrence(self._snapshot, root_id, day))

    def move_occurrence(self, task_id: str, day: date | datetime, new_due: datetime) -> Snapshot:
        return self._commit(self._engine.move_occurrence(self._snapshot, task_id, day, new_due))

    def mark_missed_overdue(self, now: Optional[datetime] = None) -> Snapshot:
        return self._commit(self._engine.mark_missed_overdue(self._snapshot, now))

    def project(self, start: date, end: date) -> list[VirtualOccurrence]:
        return project(self._snapshot, start, end)

    def occurrences_between(self, start: date, end: date) -> dict[date, list[Occurrence]]:
        return occurrences_between(self._snapshot, start, end)

    def replace_snapshot(self, tasks: Iterable[TaskEntity]) -> None:
        """Adopt a snapshot broadcast by another window; the whole collection wins."""
        self._set(tuple(tasks))
        logger.debug("Adopted external snapshot with %d tasks", len(self._snapshot))
        self._notify()

    def flush(self) -> None:
        if self._saver is not None:
            self._saver.flush()

    def _commit(self, snapshot: Snapshot) -> Snapshot:
        if snapshot == self._snapshot:
            return snapshot
        self._set(snapshot)
        if self._saver is not None:
            self._saver.schedule(snapshot)
        self._notify()
        return snapshot

    def _set(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot
        self._index = {t.id: t for t in snapshot}

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._snapshot)
