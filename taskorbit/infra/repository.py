from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from taskorbit.domain.entities import GeneratedFrom, TaskComment, TaskEntity
from taskorbit.domain.enums import PriorityLevel, TaskStatus
from taskorbit.domain.recurrence import RecurrenceRule

from .db import SessionLocal
from .models import TaskModel


def _to_entity(model: TaskModel) -> TaskEntity:
    return TaskEntity(
        id=model.id,
        title=model.title,
        description=model.description,
        status=TaskStatus(model.status),
        priority=PriorityLevel(model.priority),
        due_date=model.due_date,
        recurrence=RecurrenceRule.from_dict(model.recurrence) if model.recurrence else None,
        created_at=model.created_at,
        completed_at=model.completed_at,
        series_id=model.series_id,
        excluded_dates=frozenset(date.fromisoformat(d) for d in model.excluded_dates or ()),
        is_recurring_exception=model.is_recurring_exception,
        tags=tuple(model.tags or ()),
        comments=tuple(
            TaskComment(id=c["id"], text=c["text"], created_at=datetime.fromisoformat(c["created_at"]))
            for c in model.comments or ()
        ),
        generated_from=_generated_from(model.generated_from),
        prior_status=TaskStatus(model.prior_status) if model.prior_status else None,
    )


def _to_model(task: TaskEntity, sort_order: int) -> TaskModel:
    return TaskModel(
        id=task.id,
        title=task.title,
        description=task.description,
        status=task.status.value,
        priority=int(task.priority),
        due_date=task.due_date,
        recurrence=task.recurrence.to_dict() if task.recurrence else None,
        created_at=task.created_at,
        completed_at=task.completed_at,
        series_id=task.series_id,
        excluded_dates=sorted(d.isoformat() for d in task.excluded_dates),
        is_recurring_exception=task.is_recurring_exception,
        tags=list(task.tags),
        comments=[
            {"id": c.id, "text": c.text, "created_at": c.created_at.isoformat()}
            for c in task.comments
        ],
        generated_from=_generated_from_json(task.generated_from),
        prior_status=task.prior_status.value if task.prior_status else None,
        sort_order=sort_order,
    )


def _generated_from(data: Optional[dict[str, Any]]) -> Optional[GeneratedFrom]:
    if not data:
        return None
    return GeneratedFrom(
        series_id=data["series_id"],
        occurrence_date=_instant(data.get("occurrence_date")),
        advanced_from=_instant(data.get("advanced_from")),
        advanced_to=_instant(data.get("advanced_to")),
    )


def _generated_from_json(origin: Optional[GeneratedFrom]) -> Optional[dict[str, Any]]:
    if origin is None:
        return None
    return {
        "series_id": origin.series_id,
        "occurrence_date": origin.occurrence_date.isoformat() if origin.occurrence_date else None,
        "advanced_from": origin.advanced_from.isoformat() if origin.advanced_from else None,
        "advanced_to": origin.advanced_to.isoformat() if origin.advanced_to else None,
    }


def _instant(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class TaskRepository:
    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self._session_factory = session_factory

    def load(self) -> list[TaskEntity]:
        with self._session_factory() as session:
            stmt = select(TaskModel).order_by(TaskModel.sort_order.asc(), TaskModel.created_at.asc())
            return [_to_entity(task) for task in session.scalars(stmt)]

    def save(self, tasks: Iterable[TaskEntity]) -> None:
        # The stored table always mirrors the latest snapshot exactly.
        with self._session_factory() as session, session.begin():
            session.execute(delete(TaskModel))
            session.add_all(_to_model(task, index) for index, task in enumerate(tasks, start=1))
