"""Upstream access credentials, stored sealed on the user row."""
from __future__ import annotations

import logging
from typing import Any

from notesync import config
from notesync.crypto import TokenDecryptionError, decrypt_token, encrypt_token
from notesync.db.factory import get_user_repository
from notesync.errors import MissingCredentialError

logger = logging.getLogger("notesync.credentials")


class CredentialStore:
    """Seals and unseals GitHub access tokens for users."""

    def __init__(self, user_repo: Any, secret: str | None = None):
        self.user_repo = user_repo
        self._secret = secret if secret is not None else config.ENCRYPTION_SECRET

    @classmethod
    def for_db(cls, db: Any, secret: str | None = None) -> "CredentialStore":
        return cls(get_user_repository(db), secret)

    async def store_credential(self, user_id: str, github_username: str, access_token: str) -> None:
        await self.user_repo.upsert(
            {
                "id": user_id,
                "github_username": github_username,
                "github_access_token": encrypt_token(access_token, self._secret),
            }
        )

    async def get_decrypted_credential(self, owner_id: str) -> str:
        sealed = await self.user_repo.get_access_token(owner_id)
        if not sealed:
            raise MissingCredentialError()
        try:
            return decrypt_token(sealed, self._secret)
        except TokenDecryptionError:
            logger.warning("Stored credential for user %s could not be unsealed", owner_id)
            raise MissingCredentialError() from None
