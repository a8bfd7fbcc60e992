from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

from .enums import PriorityLevel, RESOLVED_STATUSES, TaskStatus
from .recurrence import RecurrenceRule, as_day


def utcnow() -> datetime:
    return datetime.utcnow()


@dataclass(frozen=True)
class TaskComment:
    id: str
    text: str
    created_at: datetime


@dataclass(frozen=True)
class GeneratedFrom:
    series_id: str
    occurrence_date: Optional[datetime] = None
    # Root due date before and after the advance; advanced_to is None when the root was not moved.
    advanced_from: Optional[datetime] = None
    advanced_to: Optional[datetime] = None


@dataclass(frozen=True)
class TaskEntity:
    id: str
    title: str
    status: TaskStatus = TaskStatus.PLANNED
    priority: PriorityLevel = PriorityLevel.MEDIUM
    description: str = ""
    due_date: Optional[datetime] = None
    recurrence: Optional[RecurrenceRule] = None
    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    series_id: Optional[str] = None
    excluded_dates: frozenset[date] = field(default_factory=frozenset)
    is_recurring_exception: bool = False
    tags: tuple[str, ...] = ()
    comments: tuple[TaskComment, ...] = ()
    generated_from: Optional[GeneratedFrom] = None
    prior_status: Optional[TaskStatus] = None

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None

    @property
    def is_series_root(self) -> bool:
        return self.recurrence is not None and self.series_id is None

    @property
    def is_history(self) -> bool:
        return self.series_id is not None and self.recurrence is None and self.status in RESOLVED_STATUSES

    @property
    def anchor(self) -> datetime:
        if self.recurrence and self.recurrence.start:
            return self.recurrence.start
        return self.due_date or self.created_at

    def due_day(self) -> Optional[date]:
        return as_day(self.due_date) if self.due_date else None

    def is_excluded(self, day: date) -> bool:
        return as_day(day) in self.excluded_dates
