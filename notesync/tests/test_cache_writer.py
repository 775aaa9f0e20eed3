import io
import json
import tempfile
import unittest
import zipfile
from pathlib import Path

from notesync.errors import CacheWriteError
from notesync.models import FetchedFile
from notesync.services.cache_writer import CacheWriter, LocalBlobCache, build_snapshot


class _BrokenBlobCache:
    async def put(self, key: str, data: bytes) -> None:
        raise OSError("disk full")


class CacheWriterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.cache = LocalBlobCache(self.root)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    async def test_writes_snapshot_and_metadata(self) -> None:
        files = [FetchedFile("README.md", "# Widgets\n"), FetchedFile("src/app.py", "print(1)\n")]

        key = await CacheWriter(self.cache).write("note-1", "abc123", files)

        self.assertEqual(key, "repo-cache/note-1/abc123.zip")
        with zipfile.ZipFile(io.BytesIO((self.root / key).read_bytes())) as archive:
            self.assertEqual(sorted(archive.namelist()), ["README.md", "src/app.py"])
            self.assertEqual(archive.read("src/app.py").decode(), "print(1)\n")

        metadata = json.loads((self.root / "backup/note-1/metadata.json").read_text())
        self.assertEqual(metadata["revisionId"], "abc123")
        self.assertEqual(metadata["fileCount"], 2)
        self.assertEqual(metadata["snapshotKey"], key)

    async def test_metadata_tracks_latest_revision(self) -> None:
        writer = CacheWriter(self.cache)
        await writer.write("note-1", "rev-a", [FetchedFile("a.txt", "a")])
        await writer.write("note-1", "rev-b", [FetchedFile("a.txt", "b")])

        metadata = json.loads((self.root / "backup/note-1/metadata.json").read_text())
        self.assertEqual(metadata["revisionId"], "rev-b")
        self.assertTrue((self.root / "repo-cache/note-1/rev-a.zip").exists())

    async def test_key_outside_root_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            await self.cache.put("../escape.zip", b"x")
        with self.assertRaises(CacheWriteError):
            await CacheWriter(self.cache).write("../../escape", "rev", [])

    async def test_storage_failure_becomes_cache_write_error(self) -> None:
        with self.assertRaises(CacheWriteError):
            await CacheWriter(_BrokenBlobCache()).write("note-1", "abc", [FetchedFile("a.txt", "a")])


class SnapshotTests(unittest.TestCase):
    def test_empty_snapshot_is_valid_zip(self) -> None:
        with zipfile.ZipFile(io.BytesIO(build_snapshot([]))) as archive:
            self.assertEqual(archive.namelist(), [])


if __name__ == "__main__":
    unittest.main()
