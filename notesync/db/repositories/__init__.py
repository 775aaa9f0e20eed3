"""Repository package for database access."""

from .notes import SqliteNoteRepository
from .sync_jobs import SqliteSyncJobStateRepository
from .users import SqliteUserRepository

__all__ = [
    "SqliteNoteRepository",
    "SqliteSyncJobStateRepository",
    "SqliteUserRepository",
]
