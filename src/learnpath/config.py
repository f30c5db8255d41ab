"""
Runtime configuration from environment variables.

    LEARNPATH_MODE                    'memory' (default) or 'sqlite'
    LEARNPATH_DB_PATH                 SQLite file used in 'sqlite' mode
    LEARNPATH_EXAM_DECAY              Recency decay for exam papers (0 < d < 1)
    LEARNPATH_DEFAULT_HOURS_PER_WEEK  Weekly study capacity when none is given
"""

import os
from dataclasses import dataclass

from .exam_weights import DEFAULT_DECAY


@dataclass(frozen=True)
class Settings:
    mode: str = "memory"
    db_path: str = "learnpath.db"
    exam_decay: float = DEFAULT_DECAY
    default_hours_per_week: float = 10.0

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            mode=os.getenv("LEARNPATH_MODE", "memory"),
            db_path=os.getenv("LEARNPATH_DB_PATH", "learnpath.db"),
            exam_decay=float(os.getenv("LEARNPATH_EXAM_DECAY", str(DEFAULT_DECAY))),
            default_hours_per_week=float(os.getenv("LEARNPATH_DEFAULT_HOURS_PER_WEEK", "10")),
        )
