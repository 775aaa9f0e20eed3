"""Structured audit events for repository sync jobs."""
from __future__ import annotations

import json
import logging
from typing import Any, Literal

from notesync.models import utc_now_iso

logger = logging.getLogger("notesync.audit")

AuditAction = Literal["sync.started", "sync.completed", "sync.failed"]


def log_audit_event(
    action: AuditAction,
    user_id: str,
    result: Literal["success", "failure"],
    *,
    note_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    error: str | None = None,
) -> dict[str, Any]:
    entry = {
        "timestamp": utc_now_iso(),
        "action": action,
        "userId": user_id,
        "noteId": note_id,
        "metadata": metadata or {},
        "result": result,
        "error": error,
    }
    logger.info("[AUDIT] %s", json.dumps(entry, sort_keys=True))
    return entry


def log_sync_started(user_id: str, note_id: str) -> None:
    log_audit_event("sync.started", user_id, "success", note_id=note_id)


def log_sync_completed(user_id: str, note_id: str, file_count: int) -> None:
    log_audit_event("sync.completed", user_id, "success", note_id=note_id, metadata={"fileCount": file_count})


def log_sync_failed(user_id: str, note_id: str, error: str) -> None:
    log_audit_event("sync.failed", user_id, "failure", note_id=note_id, error=error)
