"""PostgreSQL implementation of NoteRepository."""
from __future__ import annotations

from datetime import datetime, timezone
import asyncpg


def _affected_rows(status: str) -> int:
    # asyncpg returns command tags such as "UPDATE 1".
    try:
        return int(str(status).rsplit(" ", 1)[-1])
    except ValueError:
        return 0


class PostgresNoteRepository:
    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def create(self, note_data: dict) -> dict:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """INSERT INTO notes (
                id, user_id, repository_url, repository_name, status,
                last_accessed_at, created_at, version
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, 0)""",
            note_data["id"], note_data["user_id"],
            note_data["repository_url"],
            note_data.get("repository_name", ""),
            note_data.get("status", "Indexing"),
            now, now,
        )
        return await self.get_by_id(note_data["id"]) or {}

    async def get_by_id(self, note_id: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM notes WHERE id = $1", note_id)
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
        if file_store_id and commit_sha:
            query = """UPDATE notes
                       SET status = $1, error_message = $2, file_store_id = $3,
                           latest_commit_sha = $4, last_synced_at = $5, version = version + 1
                       WHERE id = $6"""
            params: list = [
                status, error_message, file_store_id, commit_sha,
                synced_at or datetime.now(timezone.utc).isoformat(), note_id,
            ]
        else:
            query = """UPDATE notes
                       SET status = $1, error_message = $2, version = version + 1
                       WHERE id = $3"""
            params = [status, error_message, note_id]

        if expected_version is not None:
            params.append(expected_version)
            query += f" AND version = ${len(params)}"

        result = await self.db.execute(query, *params)
        return _affected_rows(result) > 0
