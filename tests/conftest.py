from __future__ import annotations

import os

# Must be set before taskorbit.config is imported.
os.environ.setdefault("DATABASE_URL", "sqlite://")
