import unittest

import aiosqlite

from notesync.crypto import TokenDecryptionError, decrypt_token, encrypt_token
from notesync.db.repositories import (
    SqliteNoteRepository,
    SqliteSyncJobStateRepository,
    SqliteUserRepository,
)
from notesync.db.sqlite_migrations import SCHEMA_VERSION, run_migrations
from notesync.errors import MissingCredentialError
from notesync.models import Note, NoteStatus
from notesync.services.credentials import CredentialStore


class _SqliteTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)

    async def asyncTearDown(self) -> None:
        await self.db.close()


class MigrationTests(_SqliteTestCase):
    async def test_migrations_are_idempotent(self) -> None:
        await run_migrations(self.db)

        async with self.db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
        self.assertEqual(row[0], SCHEMA_VERSION)
        async with self.db.execute("PRAGMA table_info(notes)") as cur:
            columns = [r[1] for r in await cur.fetchall()]
        self.assertIn("version", columns)


class NoteRepositoryTests(_SqliteTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.repo = SqliteNoteRepository(self.db)
        await self.repo.create(
            {
                "id": "note-1",
                "user_id": "user-1",
                "repository_url": "https://github.com/octo/widgets",
                "repository_name": "widgets",
            }
        )

    async def test_create_starts_indexing_at_version_zero(self) -> None:
        note = Note.from_row(await self.repo.get_by_id("note-1"))
        self.assertEqual(note.id, "note-1")
        self.assertEqual(note.userId, "user-1")
        self.assertEqual(note.repositoryUrl, "https://github.com/octo/widgets")
        self.assertEqual(note.status, NoteStatus.INDEXING)
        self.assertEqual(note.version, 0)
        self.assertIsNone(await self.repo.get_by_id("note-2"))

    async def test_failure_update_keeps_previous_index_handle(self) -> None:
        await self.repo.update_status(
            "note-1", "Ready", file_store_id="fileSearchStores/a", commit_sha="abc", synced_at="2026-01-01T00:00:00+00:00"
        )
        await self.repo.update_status("note-1", "Failed", error_message="GitHub is temporarily unavailable.")

        note = Note.from_row(await self.repo.get_by_id("note-1"))
        self.assertEqual(note.status, NoteStatus.FAILED)
        self.assertEqual(note.errorMessage, "GitHub is temporarily unavailable.")
        self.assertEqual(note.fileStoreId, "fileSearchStores/a")
        self.assertEqual(note.latestCommitSha, "abc")
        self.assertEqual(note.lastSyncedAt, "2026-01-01T00:00:00+00:00")
        self.assertEqual(note.version, 2)

    async def test_ready_update_clears_error(self) -> None:
        await self.repo.update_status("note-1", "Failed", error_message="boom")
        await self.repo.update_status("note-1", "Ready", file_store_id="fileSearchStores/b", commit_sha="def")

        note = Note.from_row(await self.repo.get_by_id("note-1"))
        self.assertEqual(note.status, NoteStatus.READY)
        self.assertIsNone(note.errorMessage)
        self.assertTrue(note.lastSyncedAt)

    async def test_version_mismatch_is_rejected(self) -> None:
        self.assertTrue(await self.repo.update_status("note-1", "Indexing", expected_version=0))
        self.assertFalse(await self.repo.update_status("note-1", "Failed", error_message="x", expected_version=0))

        note = Note.from_row(await self.repo.get_by_id("note-1"))
        self.assertEqual(note.status, NoteStatus.INDEXING)
        self.assertEqual(note.version, 1)

    async def test_update_of_missing_note_reports_false(self) -> None:
        self.assertFalse(await self.repo.update_status("missing", "Ready"))


class SyncJobStateRepositoryTests(_SqliteTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.repo = SqliteSyncJobStateRepository(self.db)

    async def test_put_overwrites_and_lists_unfinished(self) -> None:
        await self.repo.put({"repoId": "a", "phase": "Pending", "sourceLocation": "x", "retryCount": 0})
        await self.repo.put({"repoId": "a", "phase": "InProgress", "sourceLocation": "x", "retryCount": 2})
        await self.repo.put({"repoId": "b", "phase": "Completed", "sourceLocation": "y", "retryCount": 0})
        await self.repo.put({"repoId": "c", "phase": "Failed", "sourceLocation": "z", "retryCount": 3})

        state = await self.repo.get("a")
        self.assertEqual(state["phase"], "InProgress")
        self.assertEqual(state["retryCount"], 2)
        unfinished = await self.repo.list_unfinished()
        self.assertEqual([s["repoId"] for s in unfinished], ["a"])

    async def test_missing_state_reads_as_none(self) -> None:
        self.assertIsNone(await self.repo.get("nope"))


class CredentialStoreTests(_SqliteTestCase):
    async def asyncSetUp(self) -> None:
        await super().asyncSetUp()
        self.users = SqliteUserRepository(self.db)
        self.store = CredentialStore(self.users, secret="unit-test-secret")

    async def test_stored_credential_is_sealed_at_rest(self) -> None:
        await self.store.store_credential("user-1", "octocat", "ghp_example")

        sealed = await self.users.get_access_token("user-1")
        self.assertNotIn("ghp_example", sealed)
        self.assertEqual(await self.store.get_decrypted_credential("user-1"), "ghp_example")

    async def test_unknown_user_has_no_credential(self) -> None:
        with self.assertRaises(MissingCredentialError):
            await self.store.get_decrypted_credential("ghost")

    async def test_credential_sealed_with_other_secret_is_missing(self) -> None:
        await CredentialStore(self.users, secret="another-secret").store_credential("user-1", "octocat", "ghp_x")

        with self.assertRaises(MissingCredentialError):
            await self.store.get_decrypted_credential("user-1")


class TokenSealingTests(unittest.TestCase):
    def test_seal_uses_fresh_iv(self) -> None:
        first = encrypt_token("ghp_token", "secret")
        second = encrypt_token("ghp_token", "secret")
        self.assertNotEqual(first, second)
        self.assertEqual(decrypt_token(first, "secret"), "ghp_token")

    def test_long_secret_is_truncated_to_key_size(self) -> None:
        sealed = encrypt_token("t", "k" * 40)
        self.assertEqual(decrypt_token(sealed, "k" * 32), "t")

    def test_malformed_tokens(self) -> None:
        for bad in ("not base64!", "", "AAAA"):
            with self.subTest(bad=bad):
                with self.assertRaises(TokenDecryptionError):
                    decrypt_token(bad, "secret")


if __name__ == "__main__":
    unittest.main()
