from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from typing import Optional, Protocol

from taskorbit.domain.entities import TaskEntity

logger = logging.getLogger(__name__)


class TaskStorage(Protocol):
    def load(self) -> list[TaskEntity]: ...

    def save(self, tasks: Sequence[TaskEntity]) -> None: ...


class DebouncedSaver:
    """Batches snapshot writes until the store has been quiet for `delay` seconds.

    Only the latest snapshot is written. Failures are logged, never raised, so a
    broken storage backend cannot interrupt a transition.
    """

    def __init__(
        self,
        storage: TaskStorage,
        delay: float = 1.0,
        timer_factory: Callable[[float, Callable[[], None]], threading.Timer] = threading.Timer,
    ) -> None:
        self._storage = storage
        self._delay = delay
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._pending: Optional[tuple[TaskEntity, ...]] = None
        self._timer: Optional[threading.Timer] = None

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def schedule(self, tasks: Sequence[TaskEntity]) -> None:
        with self._lock:
            self._pending = tuple(tasks)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = self._timer_factory(self._delay, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            pending, self._pending = self._pending, None
        if pending is None:
            return
        try:
            self._storage.save(pending)
        except Exception:  # noqa: BLE001
            logger.exception("Saving %d tasks failed", len(pending))
        else:
            logger.debug("Saved %d tasks", len(pending))

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending = None
