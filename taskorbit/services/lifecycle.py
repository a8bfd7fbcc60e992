from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Any, Optional

from taskorbit.domain.entities import GeneratedFrom, TaskComment, TaskEntity, utcnow
from taskorbit.domain.enums import OPEN_STATUSES, RESOLVED_STATUSES, TaskStatus, can_transition
from taskorbit.domain.errors import InvalidRule, InvalidTransition, UnresolvedSuccessor
from taskorbit.domain.recurrence import RecurrenceRule, as_day

from .occurrences import Occurrence, RealOccurrence, VirtualOccurrence
from .scheduling import SEASONAL_MAX_ATTEMPTS, iter_occurrences, next_due_date

logger = logging.getLogger(__name__)

Snapshot = tuple[TaskEntity, ...]

EDITABLE_FIELDS = frozenset({"title", "description", "priority", "due_date", "tags", "comments"})


def _new_id() -> str:
    return uuid.uuid4().hex


class LifecycleEngine:
    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
        seasonal_max_attempts: int = SEASONAL_MAX_ATTEMPTS,
        missed_sweep_limit: int = 366,
    ) -> None:
        self._clock = clock or utcnow
        self._id_factory = id_factory or _new_id
        self._seasonal_max_attempts = seasonal_max_attempts
        self._missed_sweep_limit = missed_sweep_limit

    def prepare_new(self, task: TaskEntity) -> TaskEntity:
        """Validate a task's rule and pin its anchor so the cadence survives due date changes."""
        if task.recurrence is None:
            return task
        task.recurrence.validate()
        if task.recurrence.start is not None:
            return task
        return replace(task, recurrence=replace(task.recurrence, start=task.due_date or task.created_at))

    def apply_transition(
        self,
        tasks: Iterable[TaskEntity],
        task_id: str,
        new_status: TaskStatus | str,
        occurrence_date: Optional[datetime] = None,
    ) -> Snapshot:
        snapshot = tuple(tasks)
        task = _find(snapshot, task_id)
        if task is None:
            logger.debug("Transition to %s ignored: task %s not found", new_status, task_id)
            return snapshot
        new_status = TaskStatus(new_status)

        if task.is_series_root and new_status == TaskStatus.PLANNED and task.status == TaskStatus.PLANNED:
            paired = self._paired_completion(snapshot, task)
            if paired is not None:
                return self._retract(snapshot, paired)

        if task.is_series_root and new_status in RESOLVED_STATUSES and task.status in OPEN_STATUSES:
            return self._resolve_occurrence(snapshot, task, new_status, occurrence_date)

        if new_status == task.status:
            logger.debug("Task %s already %s", task.id, new_status)
            return snapshot
        if not can_transition(task.status, new_status):
            raise InvalidTransition(task.id, task.status.value, new_status.value)

        if task.status == TaskStatus.COMPLETED and new_status in OPEN_STATUSES:
            if task.is_history and task.generated_from is not None:
                return self._retract(snapshot, task)
            if task.is_series_root:
                return self._reopen_series(snapshot, task, new_status)
        if task.is_history and new_status in OPEN_STATUSES:
            # A reopened history record no longer resolves its day; it stays as a detached edit.
            updated = replace(
                task,
                status=new_status,
                completed_at=None,
                is_recurring_exception=True,
                generated_from=None,
                prior_status=task.status,
            )
            return _swap(snapshot, updated)
        return _swap(snapshot, self._with_status(task, new_status))

    def complete_occurrence(self, tasks: Iterable[TaskEntity], occurrence: Occurrence) -> Snapshot:
        if isinstance(occurrence, VirtualOccurrence):
            return self.apply_transition(
                tasks, occurrence.root_id, TaskStatus.COMPLETED, occurrence.occurrence_date
            )
        return self.apply_transition(tasks, occurrence.task.id, TaskStatus.COMPLETED)

    def mark_missed_overdue(self, tasks: Iterable[TaskEntity], now: Optional[datetime] = None) -> Snapshot:
        snapshot = tuple(tasks)
        today = as_day(now or self._clock())
        overdue = [
            t for t in snapshot
            if t.is_series_root and t.status in OPEN_STATUSES and t.due_date and t.due_day() < today
        ]
        for root in overdue:
            try:
                elapsed = [root.due_date, *iter_occurrences(
                    root.anchor, root.recurrence, root.due_date,
                    today - timedelta(days=1), limit=self._missed_sweep_limit,
                )]
                for occurrence in elapsed:
                    current = _find(snapshot, root.id)
                    if current is None or current.status not in OPEN_STATUSES or current.due_day() >= today:
                        break
                    if current.is_excluded(as_day(occurrence)):
                        continue
                    snapshot = self._resolve_occurrence(snapshot, current, TaskStatus.MISSED, occurrence)
            except InvalidRule as exc:
                logger.warning("Missed sweep stopped for task %s: %s", root.id, exc)
        return snapshot

    def edit_occurrence(
        self,
        tasks: Iterable[TaskEntity],
        occurrence: Occurrence,
        changes: Mapping[str, Any],
    ) -> Snapshot:
        snapshot = tuple(tasks)
        unknown = set(changes) - EDITABLE_FIELDS - {"recurrence"}
        if unknown:
            raise ValueError(f"Fields cannot be edited: {sorted(unknown)}")
        changes = {
            name: tuple(value) if name in ("tags", "comments") else value
            for name, value in changes.items()
        }

        if isinstance(occurrence, RealOccurrence):
            task = _find(snapshot, occurrence.task.id)
            if task is None:
                return snapshot
            updated = replace(task, **changes)
            if updated.recurrence is not None:
                updated.recurrence.validate()
            return _swap(snapshot, updated)

        if "recurrence" in changes:
            raise ValueError("A single occurrence cannot change the series rule")
        root = _find(snapshot, occurrence.root_id)
        if root is None:
            return snapshot
        current = {name: getattr(root, name) for name in EDITABLE_FIELDS}
        current["due_date"] = occurrence.occurrence_date
        diff = {name: value for name, value in changes.items() if current[name] != value}
        new_comments = diff.pop("comments", None)

        if new_comments is not None:
            if new_comments[: len(root.comments)] != root.comments:
                raise ValueError("Series comments can only be appended")
            root = replace(root, comments=new_comments)
            snapshot = _swap(snapshot, root)
        if not diff:
            return snapshot

        fields: dict[str, Any] = {
            "id": self._id_factory(),
            "recurrence": None,
            "series_id": root.id,
            "is_recurring_exception": True,
            "status": TaskStatus.PLANNED,
            "due_date": occurrence.occurrence_date,
            "created_at": self._clock(),
            "completed_at": None,
            "excluded_dates": frozenset(),
            "generated_from": None,
            "prior_status": None,
        }
        fields.update(diff)
        exception = replace(root, **fields)
        logger.info("Detached occurrence %s of task %s as %s", occurrence.key, root.id, exception.id)
        snapshot += (exception,)
        if exception.due_date is None or as_day(exception.due_date) != occurrence.day:
            # The exception no longer covers its original day.
            snapshot = self.skip_occurrence(snapshot, root.id, occurrence.day)
        return snapshot

    def add_comment(self, tasks: Iterable[TaskEntity], task_id: str, text: str) -> Snapshot:
        snapshot = tuple(tasks)
        task = _find(snapshot, task_id)
        if task is None:
            return snapshot
        # History and exceptions share the series thread.
        target = _find(snapshot, task.series_id) if task.series_id else task
        target = target or task
        comment = TaskComment(id=self._id_factory(), text=text, created_at=self._clock())
        return _swap(snapshot, replace(target, comments=target.comments + (comment,)))

    def skip_occurrence(self, tasks: Iterable[TaskEntity], root_id: str, day: date | datetime) -> Snapshot:
        snapshot = tuple(tasks)
        root = _find(snapshot, root_id)
        if root is None or root.recurrence is None:
            return snapshot
        day = as_day(day)
        root = replace(root, excluded_dates=root.excluded_dates | {day})
        if root.due_date is not None and root.due_day() == day and root.status in OPEN_STATUSES:
            next_due = self._next_open_occurrence(snapshot, root, root.due_date)
            if next_due is not None:
                root = replace(root, due_date=next_due)
        return _swap(snapshot, root)

    def move_occurrence(
        self,
        tasks: Iterable[TaskEntity],
        task_id: str,
        day: date | datetime,
        new_due: datetime,
    ) -> Snapshot:
        snapshot = tuple(tasks)
        task = _find(snapshot, task_id)
        if task is None:
            return snapshot
        if task.recurrence is None:
            return _swap(snapshot, replace(task, due_date=new_due))
        target = as_day(day)
        template = task.due_date or task.anchor
        occurrence_date = template.replace(year=target.year, month=target.month, day=target.day)
        if new_due == occurrence_date:
            return snapshot
        moved = self.edit_occurrence(
            snapshot, VirtualOccurrence(root=task, occurrence_date=occurrence_date), {"due_date": new_due}
        )
        return self.skip_occurrence(moved, task_id, day)

    def _resolve_occurrence(
        self,
        snapshot: Snapshot,
        root: TaskEntity,
        status: TaskStatus,
        occurrence_date: Optional[datetime],
    ) -> Snapshot:
        now = self._clock()
        occurrence = occurrence_date or root.due_date or now
        day = as_day(occurrence)
        if _history_for(snapshot, root.id, day) is not None:
            logger.debug("Occurrence %s of task %s already resolved", day, root.id)
            return snapshot

        next_due = self._next_open_occurrence(snapshot, root, occurrence)
        current_day = root.due_day()
        if next_due is None and (current_day is None or day >= current_day):
            logger.info("Series %s finished at %s", root.id, day)
            finished = replace(
                root,
                status=status,
                completed_at=now if status == TaskStatus.COMPLETED else None,
                prior_status=root.status,
            )
            return _swap(snapshot, finished)

        advance = next_due is not None and (root.due_date is None or next_due > root.due_date)
        history = replace(
            root,
            id=self._id_factory(),
            recurrence=None,
            series_id=root.id,
            status=status,
            due_date=occurrence,
            created_at=now,
            completed_at=now if status == TaskStatus.COMPLETED else None,
            excluded_dates=frozenset(),
            is_recurring_exception=False,
            comments=(),
            prior_status=root.status,
            generated_from=GeneratedFrom(
                series_id=root.id,
                occurrence_date=occurrence,
                advanced_from=root.due_date,
                advanced_to=next_due if advance else None,
            ),
        )
        updated_root = root
        if advance:
            updated_root = replace(root, due_date=next_due, status=TaskStatus.PLANNED)
        logger.info(
            "Task %s occurrence %s marked %s; next due %s",
            root.id, day, status.value, updated_root.due_date,
        )
        return _swap(snapshot, updated_root) + (history,)

    def _next_open_occurrence(
        self,
        snapshot: Snapshot,
        root: TaskEntity,
        after: datetime,
    ) -> Optional[datetime]:
        rule: RecurrenceRule = root.recurrence
        candidate = after
        for _ in range(self._missed_sweep_limit):
            candidate = next_due_date(root.anchor, rule, candidate, self._seasonal_max_attempts)
            day = as_day(candidate)
            if rule.end and day > as_day(rule.end):
                return None
            if not root.is_excluded(day) and _history_for(snapshot, root.id, day) is None:
                return candidate
        raise InvalidRule(f"Task {root.id}: no open occurrence after {after.isoformat()}")

    def _paired_completion(self, snapshot: Snapshot, root: TaskEntity) -> Optional[TaskEntity]:
        candidates = [
            t
            for t in snapshot
            if t.status == TaskStatus.COMPLETED
            and t.generated_from is not None
            and t.generated_from.series_id == root.id
            and t.generated_from.advanced_to is not None
            and t.generated_from.advanced_to == root.due_date
        ]
        return max(candidates, key=lambda t: t.created_at, default=None)

    def _retract(self, snapshot: Snapshot, record: TaskEntity) -> Snapshot:
        origin = record.generated_from
        remaining = tuple(t for t in snapshot if t.id != record.id)
        root = _find(remaining, origin.series_id)
        if root is not None and origin.advanced_to is not None and root.due_date == origin.advanced_to:
            restored = record.prior_status if record.prior_status in OPEN_STATUSES else TaskStatus.PLANNED
            remaining = _swap(remaining, replace(root, due_date=origin.advanced_from, status=restored))
        logger.info("Retracted %s record %s of task %s", record.status.value, record.id, origin.series_id)
        return remaining

    def _reopen_series(self, snapshot: Snapshot, root: TaskEntity, new_status: TaskStatus) -> Snapshot:
        successor = self._find_successor(snapshot, root)
        remaining = snapshot
        if successor is not None:
            remaining = tuple(t for t in snapshot if t.id != successor.id)
        status = new_status
        if new_status == TaskStatus.PLANNED and root.prior_status in OPEN_STATUSES:
            status = root.prior_status
        reopened = replace(root, status=status, completed_at=None, prior_status=None)
        return _swap(remaining, reopened)

    def _find_successor(self, snapshot: Snapshot, root: TaskEntity) -> Optional[TaskEntity]:
        rule = root.recurrence
        base = root.due_date or root.completed_at
        expected = None
        if base is not None:
            expected = next_due_date(root.anchor, rule, base, self._seasonal_max_attempts)
            if rule.end and as_day(expected) > as_day(rule.end):
                return None

        planned = [t for t in snapshot if t.id != root.id and t.status == TaskStatus.PLANNED]
        for task in planned:
            if task.generated_from is not None and task.generated_from.series_id == root.id and task.is_recurring:
                return task
        for task in planned:
            if _same_series_fields(task, root) and (root.due_date is None or task.due_date == expected):
                return task

        # Lossy: may pick a task the user created by hand with the same title and rule.
        created_after = root.completed_at or root.created_at
        fallback = [
            t for t in planned
            if t.title == root.title and _same_rule(t.recurrence, rule) and t.created_at >= created_after
        ]
        if not fallback:
            logger.debug("No successor to remove for task %s", root.id)
            return None
        chosen = max(fallback, key=lambda t: t.created_at)
        logger.warning(
            "%s: removing closest match %s for task %s",
            UnresolvedSuccessor.__name__, chosen.id, root.id,
        )
        return chosen

    def _with_status(self, task: TaskEntity, status: TaskStatus) -> TaskEntity:
        if status == TaskStatus.COMPLETED:
            return replace(task, status=status, completed_at=self._clock(), prior_status=task.status)
        if task.status == TaskStatus.COMPLETED:
            return replace(task, status=status, completed_at=None, prior_status=None)
        return replace(task, status=status, prior_status=task.status)


def _find(snapshot: Iterable[TaskEntity], task_id: Optional[str]) -> Optional[TaskEntity]:
    return next((t for t in snapshot if t.id == task_id), None)


def _swap(snapshot: Snapshot, updated: TaskEntity) -> Snapshot:
    return tuple(updated if t.id == updated.id else t for t in snapshot)


def _history_for(snapshot: Iterable[TaskEntity], series_id: str, day: date) -> Optional[TaskEntity]:
    return next(
        (
            t
            for t in snapshot
            if t.series_id == series_id and t.is_history and t.due_date is not None and as_day(t.due_date) == day
        ),
        None,
    )


def _same_rule(left: Optional[RecurrenceRule], right: Optional[RecurrenceRule]) -> bool:
    if left is None or right is None:
        return left is right
    return replace(left, start=None) == replace(right, start=None)


def _same_series_fields(task: TaskEntity, root: TaskEntity) -> bool:
    return (
        task.title == root.title
        and task.description == root.description
        and task.priority == root.priority
        and _same_rule(task.recurrence, root.recurrence)
    )
