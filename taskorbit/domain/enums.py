from __future__ import annotations

from enum import IntEnum, StrEnum


class TaskStatus(StrEnum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    MISSED = "missed"
    ARCHIVED = "archived"


class RecurrenceFrequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class PriorityLevel(IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3


OPEN_STATUSES = frozenset({TaskStatus.PLANNED, TaskStatus.IN_PROGRESS})
RESOLVED_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.MISSED})

# Archived tasks go back through PLANNED before they can be resolved again.
ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PLANNED: frozenset(TaskStatus),
    TaskStatus.IN_PROGRESS: frozenset(TaskStatus),
    TaskStatus.COMPLETED: frozenset({TaskStatus.PLANNED, TaskStatus.IN_PROGRESS, TaskStatus.ARCHIVED}),
    TaskStatus.MISSED: frozenset({TaskStatus.PLANNED, TaskStatus.ARCHIVED}),
    TaskStatus.ARCHIVED: frozenset({TaskStatus.PLANNED}),
}


def can_transition(current: TaskStatus, new: TaskStatus) -> bool:
    return new in ALLOWED_TRANSITIONS[current]
