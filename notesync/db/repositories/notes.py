"""SQLite implementation of NoteRepository (the note status record)."""
from __future__ import annotations

from datetime import datetime, timezone

import aiosqlite


class SqliteNoteRepository:
    """Notes table with version-checked status updates."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def create(self, note_data: dict) -> dict:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """INSERT INTO notes (
                id, user_id, repository_url, repository_name, status,
                last_accessed_at, created_at, version
            ) VALUES (?, ?, ?, ?, ?, ?, ?, 0)""",
            (
                note_data["id"], note_data["user_id"],
                note_data["repository_url"],
                note_data.get("repository_name", ""),
                note_data.get("status", "Indexing"),
                now, now,
            ),
        )
        await self.db.commit()
        return await self.get_by_id(note_data["id"]) or {}

    async def get_by_id(self, note_id: str) -> dict | None:
        async with self.db.execute("SELECT * FROM notes WHERE id = ?", (note_id,)) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def update_status(
        self,
        note_id: str,
        status: str,
        *,
        error_message: str | None = None,
        file_store_id: str | None = None,
        commit_sha: str | None = None,
        synced_at: str | None = None,
        expected_version: int | None = None,
    ) -> bool:
        """Single-row status update. Returns False when no row matched.

        Index handle, revision and sync time are only written together, on a
        successful sync; other updates leave them untouched.
        """
        if file_store_id and commit_sha:
            query = """UPDATE notes
                       SET status = ?, error_message = ?, file_store_id = ?,
                           latest_commit_sha = ?, last_synced_at = ?, version = version + 1
                       WHERE id = ?"""
            params: tuple = (
                status, error_message, file_store_id, commit_sha,
                synced_at or datetime.now(timezone.utc).isoformat(), note_id,
            )
        else:
            query = """UPDATE notes
                       SET status = ?, error_message = ?, version = version + 1
                       WHERE id = ?"""
            params = (status, error_message, note_id)

        if expected_version is not None:
            query += " AND version = ?"
            params = params + (expected_version,)

        async with self.db.execute(query, params) as cur:
            changed = cur.rowcount
        await self.db.commit()
        return changed > 0
