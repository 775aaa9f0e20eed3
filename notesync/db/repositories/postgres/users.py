"""PostgreSQL implementation of UserRepository."""
from __future__ import annotations

from datetime import datetime, timezone
import asyncpg


class PostgresUserRepository:
    def __init__(self, db: asyncpg.Connection):
        self.db = db

    async def upsert(self, user_data: dict) -> None:
        now = datetime.now(timezone.utc).isoformat()
        await self.db.execute(
            """INSERT INTO users (id, github_username, github_access_token, created_at)
               VALUES ($1, $2, $3, $4)
               ON CONFLICT(id) DO UPDATE SET
                 github_username=EXCLUDED.github_username,
                 github_access_token=EXCLUDED.github_access_token""",
            user_data["id"],
            user_data.get("github_username", ""),
            user_data.get("github_access_token"),
            now,
        )

    async def get_access_token(self, user_id: str) -> str | None:
        return await self.db.fetchval("SELECT github_access_token FROM users WHERE id = $1", user_id)
