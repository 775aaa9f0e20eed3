"""Database schema creation and versioning.

All CREATE TABLE statements for notes, users and sync job state.
Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("notesync.db")

SCHEMA_VERSION = 2

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 1. Users (upstream credentials) ────────────────────────────────
CREATE TABLE IF NOT EXISTS users (
    id                  TEXT PRIMARY KEY,
    github_username     TEXT NOT NULL DEFAULT '',
    github_access_token TEXT,
    created_at          TEXT NOT NULL
);

-- ── 2. Notes (one tracked repository per row) ──────────────────────
CREATE TABLE IF NOT EXISTS notes (
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
    created_at        TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_notes_owner_repo ON notes(user_id, repository_url);
CREATE INDEX IF NOT EXISTS idx_notes_status ON notes(status);

-- ── 3. Sync jobs (durable actor state) ─────────────────────────────
CREATE TABLE IF NOT EXISTS sync_jobs (
    note_id     TEXT PRIMARY KEY,
    phase       TEXT NOT NULL,
    state_json  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sync_jobs_phase ON sync_jobs(phase);
"""


async def _column_exists(db: aiosqlite.Connection, table: str, column: str) -> bool:
    async with db.execute(f"PRAGMA table_info({table})") as cur:
        rows = await cur.fetchall()
    return any(row[1] == column for row in rows)


async def _ensure_column(db: aiosqlite.Connection, table: str, column: str, definition: str) -> None:
    if await _column_exists(db, table, column):
        return
    await db.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables. Idempotent."""
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except aiosqlite.OperationalError:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.info("Schema is up to date (version %s)", current_version)
        return

    logger.info("Running migrations: %s → %s", current_version, SCHEMA_VERSION)

    await db.executescript(_TABLES)

    # v2: optimistic-concurrency column for note status updates.
    await _ensure_column(db, "notes", "version", "INTEGER NOT NULL DEFAULT 0")

    await db.execute(
        "INSERT INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    await db.commit()
    logger.info("Migrations complete — schema version %s", SCHEMA_VERSION)
