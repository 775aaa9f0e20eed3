"""SQLite implementation of SyncJobStateRepository (durable actor state)."""
from __future__ import annotations

import json
from datetime import datetime, timezone

import aiosqlite

_UNFINISHED_PHASES = ("Pending", "InProgress")


class SqliteSyncJobStateRepository:
    """One JSON state document per note."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get(self, note_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT state_json FROM sync_jobs WHERE note_id = ?", (note_id,)
        ) as cur:
            row = await cur.fetchone()
            return json.loads(row[0]) if row else None

    async def put(self, state: dict) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """INSERT INTO sync_jobs (note_id, phase, state_json, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(note_id) DO UPDATE SET
                 phase=excluded.phase, state_json=excluded.state_json,
                 updated_at=excluded.updated_at""",
            (state["repoId"], state["phase"], json.dumps(state), now),
        )
        await self.db.commit()

    async def list_unfinished(self) -> list[dict]:
        async with self.db.execute(
            "SELECT state_json FROM sync_jobs WHERE phase IN (?, ?) ORDER BY updated_at",
            _UNFINISHED_PHASES,
        ) as cur:
            return [json.loads(r[0]) for r in await cur.fetchall()]
