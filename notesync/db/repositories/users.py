"""SQLite implementation of UserRepository (sealed upstream credentials)."""
from __future__ import annotations

from datetime import datetime, timezone

import aiosqlite


class SqliteUserRepository:
    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert(self, user_data: dict) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """INSERT INTO users (id, github_username, github_access_token, created_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                 github_username=excluded.github_username,
                 github_access_token=excluded.github_access_token""",
            (
                user_data["id"],
                user_data.get("github_username", ""),
                user_data.get("github_access_token"),
                now,
            ),
        )
        await self.db.commit()

    async def get_access_token(self, user_id: str) -> str | None:
        async with self.db.execute(
            "SELECT github_access_token FROM users WHERE id = ?", (user_id,)
        ) as cur:
            row = await cur.fetchone()
            return row[0] if row else None
