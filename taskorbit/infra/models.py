from __future__ import annotations

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from .db import Base


class TaskModel(Base):
    __tablename__ = "tasks"

    id = Column(String(64), primary_key=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(String(20), nullable=False, default="planned", index=True)
    priority = Column(Integer, nullable=False, default=2)
    due_date = Column(DateTime, nullable=True)
    recurrence = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    series_id = Column(String(64), nullable=True, index=True)
    excluded_dates = Column(JSON, nullable=False, default=list)
    is_recurring_exception = Column(Boolean, nullable=False, default=False)
    tags = Column(JSON, nullable=False, default=list)
    comments = Column(JSON, nullable=False, default=list)
    generated_from = Column(JSON, nullable=True)
    prior_status = Column(String(20), nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
