from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from taskorbit.config import SETTINGS, Settings
from taskorbit.infra.db import SessionLocal, init_db
from taskorbit.infra.logging import setup_logging
from taskorbit.infra.persistence import DebouncedSaver
from taskorbit.infra.repository import TaskRepository
from taskorbit.services.lifecycle import LifecycleEngine
from taskorbit.services.task_store import TaskStore

logger = logging.getLogger(__name__)


def build_store(
    settings: Settings = SETTINGS,
    session_factory: Optional[sessionmaker] = None,
) -> TaskStore:
    setup_logging(settings)
    session_factory = session_factory or SessionLocal
    init_db(session_factory.kw["bind"])

    repository = TaskRepository(session_factory)
    engine = LifecycleEngine(
        seasonal_max_attempts=settings.seasonal_max_attempts,
        missed_sweep_limit=settings.missed_sweep_limit,
    )
    saver = DebouncedSaver(repository, delay=settings.save_debounce_ms / 1000)
    store = TaskStore(engine, saver, repository.load())
    store.mark_missed_overdue()
    logger.info("Loaded %d tasks", len(store.snapshot))
    return store
