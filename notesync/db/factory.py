"""Repository factory to abstract DB backend (SQLite vs Postgres)."""
from __future__ import annotations

from typing import Any
import aiosqlite

from notesync.db.repositories.notes import SqliteNoteRepository
from notesync.db.repositories.sync_jobs import SqliteSyncJobStateRepository
from notesync.db.repositories.users import SqliteUserRepository


def get_note_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteNoteRepository(db)
    from notesync.db.repositories.postgres.notes import PostgresNoteRepository
    return PostgresNoteRepository(db)


def get_sync_job_state_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteSyncJobStateRepository(db)
    from notesync.db.repositories.postgres.sync_jobs import PostgresSyncJobStateRepository
    return PostgresSyncJobStateRepository(db)


def get_user_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteUserRepository(db)
    from notesync.db.repositories.postgres.users import PostgresUserRepository
    return PostgresUserRepository(db)
