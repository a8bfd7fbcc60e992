from __future__ import annotations


class TaskEngineError(Exception):
    pass


class InvalidRule(TaskEngineError, ValueError):
    """A recurrence rule with contradictory or out-of-range parameters."""


class InvalidTransition(TaskEngineError):
    def __init__(self, task_id: str, current: str, requested: str) -> None:
        super().__init__(f"Task {task_id}: cannot move from {current} to {requested}")
        self.task_id = task_id
        self.current = current
        self.requested = requested


class UnresolvedSuccessor(UserWarning):
    """Undo could not find the exact successor and fell back to a heuristic match."""
