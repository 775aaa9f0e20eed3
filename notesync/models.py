"""Pydantic models for notes and repository sync jobs."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class NoteStatus(str, Enum):
    INDEXING = "Indexing"
    READY = "Ready"
    FAILED = "Failed"
    AUTH_REQUIRED = "Auth Required"


class JobPhase(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"


ACTIVE_PHASES = {JobPhase.PENDING, JobPhase.IN_PROGRESS}


# ── Notes ───────────────────────────────────────────────────────────

class Note(BaseModel):
    """One tracked repository belonging to one user."""

    id: str
    userId: str
    repositoryUrl: str
    repositoryName: str = ""
    status: NoteStatus = NoteStatus.INDEXING
    fileStoreId: Optional[str] = None
    lastSyncedAt: Optional[str] = None
    latestCommitSha: Optional[str] = None
    errorMessage: Optional[str] = None
    lastAccessedAt: str = ""
    createdAt: str = ""
    version: int = 0

    @classmethod
    def from_row(cls, row: dict) -> "Note":
        return cls(
            id=row["id"],
            userId=row["user_id"],
            repositoryUrl=row["repository_url"],
            repositoryName=row.get("repository_name") or "",
            status=NoteStatus(row.get("status") or NoteStatus.INDEXING.value),
            fileStoreId=row.get("file_store_id"),
            lastSyncedAt=row.get("last_synced_at"),
            latestCommitSha=row.get("latest_commit_sha"),
            errorMessage=row.get("error_message"),
            lastAccessedAt=row.get("last_accessed_at") or "",
            createdAt=row.get("created_at") or "",
            version=int(row.get("version") or 0),
        )


# ── Sync jobs ───────────────────────────────────────────────────────

class JobState(BaseModel):
    """Durable state of one repository's sync job, owned by its actor."""

    repoId: str
    sourceLocation: str
    phase: JobPhase = JobPhase.PENDING
    retryCount: int = 0
    lastError: Optional[str] = None
    indexHandle: Optional[str] = None
    revisionId: Optional[str] = None
    manualRetryCount: int = 0
    ownerId: str = ""
    updatedAt: str = Field(default_factory=utc_now_iso)


class RetryResult(BaseModel):
    phase: JobPhase
    retryCount: int
    manualRetryCount: int


@dataclass(frozen=True)
class FetchedFile:
    path: str
    content: str


@dataclass(frozen=True)
class FetchResult:
    files: list[FetchedFile]
    revision_id: str
    repository_name: str
    skipped_paths: tuple[str, ...] = ()
