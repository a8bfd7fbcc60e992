from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _resolve_project_root() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parents[1]


PROJECT_ROOT = _resolve_project_root()


def _find_env_file(name: str) -> Optional[Path]:
    """First `name` found in the working directory, then the project root."""
    return next(
        (base / name for base in (Path.cwd(), PROJECT_ROOT) if (base / name).exists()),
        None,
    )


def load_env() -> None:
    shared = _find_env_file(".env")
    if shared is not None:
        load_dotenv(shared)
    # The profile may itself come from the shared file.
    profile = os.getenv("TASKORBIT_ENV", "development")
    profile_file = _find_env_file(f".env.{profile}")
    if profile_file is not None:
        load_dotenv(profile_file, override=True)


@dataclass(frozen=True)
class Settings:
    database_url: str
    log_level: str = "INFO"
    log_dir: str = "logs"
    # Quiet period before a batched snapshot write.
    save_debounce_ms: int = 1000
    missed_sweep_limit: int = 366
    seasonal_max_attempts: int = 24


def load_settings() -> Settings:
    database_url = os.getenv("DATABASE_URL", "").strip()
    if not database_url:
        raise RuntimeError("DATABASE_URL is not set. Create a .env file with your connection string.")
    return Settings(
        database_url=database_url,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_dir=os.getenv("LOG_DIR", "logs"),
        save_debounce_ms=int(os.getenv("SAVE_DEBOUNCE_MS", "1000")),
        missed_sweep_limit=int(os.getenv("MISSED_SWEEP_LIMIT", "366")),
        seasonal_max_attempts=int(os.getenv("SEASONAL_MAX_ATTEMPTS", "24")),
    )


load_env()

SETTINGS = load_settings()
