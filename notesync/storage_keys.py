"""Blob cache key schemas."""
from __future__ import annotations


def repo_cache_key(note_id: str, revision_id: str) -> str:
    """ZIP snapshot of one synced revision: ``repo-cache/{note_id}/{revision}.zip``."""
    return f"repo-cache/{note_id}/{revision_id}.zip"


def backup_metadata_key(note_id: str) -> str:
    """Latest snapshot metadata: ``backup/{note_id}/metadata.json``."""
    return f"backup/{note_id}/metadata.json"


# Snapshots are expected to be purged by the blob store after this many days without access.
CACHE_RETENTION_DAYS = 90
