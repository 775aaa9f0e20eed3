"""PostgreSQL schema creation and versioning."""
from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger("notesync.db")

SCHEMA_VERSION = 2

_STATEMENTS = (
    """CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER NOT NULL,
        applied TIMESTAMPTZ NOT NULL DEFAULT now()
    )""",
    """CREATE TABLE IF NOT EXISTS users (
        id                  TEXT PRIMARY KEY,
        github_username     TEXT NOT NULL DEFAULT '',
        github_access_token TEXT,
        created_at          TEXT NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS notes (
        id                TEXT PRIMARY KEY,
        user_id           TEXT NOT NULL,
        repository_url    TEXT NOT NULL,
        repository_name   TEXT NOT NULL DEFAULT '',
        status            TEXT NOT NULL DEFAULT 'Indexing',
        file_store_id     TEXT,
        last_synced_at    TEXT,
        latest_commit_sha TEXT,
        error_message     TEXT,
        last_accessed_at  TEXT NOT NULL,
        created_at        TEXT NOT NULL,
        version           INTEGER NOT NULL DEFAULT 0
    )""",
    "ALTER TABLE notes ADD COLUMN IF NOT EXISTS version INTEGER NOT NULL DEFAULT 0",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_notes_owner_repo ON notes(user_id, repository_url)",
    "CREATE INDEX IF NOT EXISTS idx_notes_status ON notes(status)",
    """CREATE TABLE IF NOT EXISTS sync_jobs (
        note_id    TEXT PRIMARY KEY,
        phase      TEXT NOT NULL,
        state_json TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_sync_jobs_phase ON sync_jobs(phase)",
)


async def run_migrations(db: Any) -> None:
    """Create all tables on an asyncpg pool or connection. Idempotent."""
    await db.execute(_STATEMENTS[0])
    current_version = await db.fetchval("SELECT MAX(version) FROM schema_version") or 0
    if current_version >= SCHEMA_VERSION:
        logger.info("Schema is up to date (version %s)", current_version)
        return

    logger.info("Running migrations: %s → %s", current_version, SCHEMA_VERSION)
    for statement in _STATEMENTS[1:]:
        await db.execute(statement)
    await db.execute("INSERT INTO schema_version (version) VALUES ($1)", SCHEMA_VERSION)
    logger.info("Migrations complete — schema version %s", SCHEMA_VERSION)
