from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Union

from dateutil.relativedelta import relativedelta

from taskorbit.domain.entities import TaskEntity
from taskorbit.domain.enums import RESOLVED_STATUSES, RecurrenceFrequency, TaskStatus
from taskorbit.domain.errors import InvalidRule
from taskorbit.domain.recurrence import (
    RecurrenceRule,
    as_day,
    month_offset,
    nth_weekday_of_month,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RealOccurrence:
    task: TaskEntity

    @property
    def key(self) -> str:
        return self.task.id

    @property
    def status(self) -> TaskStatus:
        return self.task.status

    @property
    def occurrence_date(self) -> datetime | None:
        return self.task.due_date


@dataclass(frozen=True)
class VirtualOccurrence:
    root: TaskEntity
    occurrence_date: datetime

    @property
    def key(self) -> str:
        return f"{self.root.id}@{self.day.isoformat()}"

    @property
    def root_id(self) -> str:
        return self.root.id

    @property
    def day(self) -> date:
        return as_day(self.occurrence_date)

    @property
    def status(self) -> TaskStatus:
        return TaskStatus.PLANNED


Occurrence = Union[RealOccurrence, VirtualOccurrence]


def occurs_on(task: TaskEntity, day: date | datetime, tasks: Iterable[TaskEntity] = ()) -> bool:
    """Decide whether `task` has an occurrence on `day`.

    `tasks` is the surrounding collection; when given, a completed or missed
    history record of the same series on that day suppresses the occurrence.
    """
    day = as_day(day)
    rule = task.recurrence
    if rule is None:
        return task.due_date is not None and as_day(task.due_date) == day

    rule.validate()
    start = as_day(task.anchor)
    if day < start:
        return False
    if rule.end and day > as_day(rule.end):
        return False
    if task.is_excluded(day):
        return False
    if rule.active_months and (day.month - 1) not in rule.active_months:
        return False
    if not _on_grid(rule, start, day):
        return False
    return not any(_resolves(task, other, day) for other in tasks)


def project(tasks: Sequence[TaskEntity], start: date, end: date) -> list[VirtualOccurrence]:
    taken_by_series, taken_by_title = _covered_days(tasks)
    projected: list[VirtualOccurrence] = []
    for task in tasks:
        if not task.is_series_root or task.status == TaskStatus.ARCHIVED:
            continue
        taken = taken_by_series.get(task.id, set()) | taken_by_title.get(task.title, set())
        first = as_day(start)
        due_day = task.due_day()
        if due_day:
            taken.add(due_day)
            # Earlier days were already resolved or skipped by the series.
            first = max(first, due_day)
        try:
            for day in _days(first, as_day(end)):
                if day not in taken and occurs_on(task, day):
                    projected.append(VirtualOccurrence(root=task, occurrence_date=_at_day(task, day)))
        except InvalidRule as exc:
            logger.warning("Skipping projection of task %s: %s", task.id, exc)
    return projected


def occurrences_between(tasks: Sequence[TaskEntity], start: date, end: date) -> dict[date, list[Occurrence]]:
    first, last = as_day(start), as_day(end)
    by_day: dict[date, list[Occurrence]] = defaultdict(list)
    for task in tasks:
        due_day = task.due_day()
        if task.status == TaskStatus.ARCHIVED or due_day is None:
            continue
        if first <= due_day <= last:
            by_day[due_day].append(RealOccurrence(task))
    for virtual in project(tasks, first, last):
        by_day[virtual.day].append(virtual)
    for items in by_day.values():
        items.sort(key=_sort_key)
    return dict(by_day)


def recurrence_preview(task: TaskEntity, first_month: date, months: int = 3) -> list[tuple[date, list[date]]]:
    preview: list[tuple[date, list[date]]] = []
    for offset in range(months):
        month_start = first_month.replace(day=1) + relativedelta(months=offset)
        month_end = month_start + relativedelta(day=31)
        preview.append((month_start, [d for d in _days(month_start, month_end) if occurs_on(task, d)]))
    return preview


def _on_grid(rule: RecurrenceRule, start: date, day: date) -> bool:
    if rule.frequency == RecurrenceFrequency.DAILY:
        return (day - start).days % rule.interval == 0
    if rule.frequency == RecurrenceFrequency.WEEKLY:
        weekdays = rule.weekdays or frozenset({start.weekday()})
        if day.weekday() not in weekdays:
            return False
        weeks = ((day - timedelta(days=day.weekday())) - (start - timedelta(days=start.weekday()))).days // 7
        return weeks % rule.interval == 0
    if rule.frequency == RecurrenceFrequency.YEARLY and day.month != start.month:
        return False
    if month_offset(start, day) % rule.month_step:
        return False
    if rule.uses_nth_weekday:
        return day.day == nth_weekday_of_month(day.year, day.month, rule.nth, rule.nth_weekday)
    wanted = rule.day_of_month or start.day
    return day == day + relativedelta(day=wanted)


def _resolves(task: TaskEntity, other: TaskEntity, day: date) -> bool:
    if other.id == task.id or other.status not in RESOLVED_STATUSES or other.due_date is None:
        return False
    if as_day(other.due_date) != day:
        return False
    if other.series_id is not None:
        return other.series_id == task.id
    # Records written before series ids existed are matched by title.
    return other.recurrence is None and other.title == task.title


def _covered_days(tasks: Sequence[TaskEntity]) -> tuple[dict[str, set[date]], dict[str, set[date]]]:
    by_series: dict[str, set[date]] = defaultdict(set)
    by_title: dict[str, set[date]] = defaultdict(set)
    for task in tasks:
        due_day = task.due_day()
        if due_day is None:
            continue
        if task.series_id is not None:
            by_series[task.series_id].add(due_day)
        elif task.recurrence is None and task.status in RESOLVED_STATUSES:
            by_title[task.title].add(due_day)
    return by_series, by_title


def _days(first: date, last: date) -> Iterator[date]:
    day = first
    while day <= last:
        yield day
        day += timedelta(days=1)


def _at_day(task: TaskEntity, day: date) -> datetime:
    template = task.due_date or task.anchor
    return template.replace(year=day.year, month=day.month, day=day.day)


def _sort_key(item: Occurrence) -> tuple[int, float]:
    task = item.task if isinstance(item, RealOccurrence) else item.root
    return (-int(task.priority), -task.created_at.timestamp())
