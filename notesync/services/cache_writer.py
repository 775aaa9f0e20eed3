"""Snapshot cache of fetched repository content."""
from __future__ import annotations

import asyncio
import io
import json
import logging
import zipfile
from pathlib import Path
from typing import Protocol

from notesync import config
from notesync.errors import CacheWriteError
from notesync.models import FetchedFile, utc_now_iso
from notesync.storage_keys import CACHE_RETENTION_DAYS, backup_metadata_key, repo_cache_key

logger = logging.getLogger("notesync.cache")


class BlobCache(Protocol):
    async def put(self, key: str, data: bytes) -> None: ...


class LocalBlobCache:
    """Filesystem-backed blob cache rooted at ``NOTESYNC_CACHE_DIR``."""

    def __init__(self, root: Path | None = None):
        self.root = Path(root or config.CACHE_DIR)

    def _path_for(self, key: str) -> Path:
        root = self.root.resolve(strict=False)
        target = (root / key).resolve(strict=False)
        try:
            target.relative_to(root)
        except ValueError:
            raise ValueError(f"Cache key escapes cache root: {key}") from None
        return target

    def _write(self, key: str, data: bytes) -> None:
        target = self._path_for(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(target)

    async def put(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._write, key, data)


def build_snapshot(files: list[FetchedFile]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for fetched in files:
            archive.writestr(fetched.path, fetched.content)
    return buffer.getvalue()


class CacheWriter:
    """Writes a ZIP snapshot keyed by (note, revision) plus a metadata document."""

    def __init__(self, blob_cache: BlobCache):
        self.blob_cache = blob_cache

    async def write(self, note_id: str, revision_id: str, files: list[FetchedFile]) -> str:
        key = repo_cache_key(note_id, revision_id)
        snapshot = await asyncio.to_thread(build_snapshot, files)
        metadata = {
            "noteId": note_id,
            "revisionId": revision_id,
            "fileCount": len(files),
            "snapshotKey": key,
            "retentionDays": CACHE_RETENTION_DAYS,
            "createdAt": utc_now_iso(),
        }
        try:
            await self.blob_cache.put(key, snapshot)
            await self.blob_cache.put(backup_metadata_key(note_id), json.dumps(metadata).encode("utf-8"))
        except (OSError, ValueError) as exc:
            raise CacheWriteError() from exc
        logger.info("Saved %d files to %s (%d bytes)", len(files), key, len(snapshot))
        return key
