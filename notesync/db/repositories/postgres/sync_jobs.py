"""PostgreSQL implementation of SyncJobStateRepository."""
from __future__ import annotations

import json
from datetime import datetime, timezone
import asyncpg


class PostgresSyncJobStateRepository:
    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def get(self, note_id: str) -> dict | None:
        raw = await self.db.fetchval("SELECT state_json FROM sync_jobs WHERE note_id = $1", note_id)
        return json.loads(raw) if raw else None

    async def put(self, state: dict) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """INSERT INTO sync_jobs (note_id, phase, state_json, updated_at)
               VALUES ($1, $2, $3, $4)
               ON CONFLICT(note_id) DO UPDATE SET
                 phase=EXCLUDED.phase, state_json=EXCLUDED.state_json,
                 updated_at=EXCLUDED.updated_at""",
            state["repoId"], state["phase"], json.dumps(state), now,
        )

    async def list_unfinished(self) -> list[dict]:
        rows = await self.db.fetch(
            "SELECT state_json FROM sync_jobs WHERE phase IN ('Pending', 'InProgress') ORDER BY updated_at"
        )
        return [json.loads(r["state_json"]) for r in rows]
