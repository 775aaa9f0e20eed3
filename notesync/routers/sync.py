"""Repository sync job API."""
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from notesync.errors import InvalidJobStateError, JobNotFoundError

logger = logging.getLogger("notesync.api")

sync_router = APIRouter(prefix="/api/sync", tags=["sync"])
notes_router = APIRouter(prefix="/api/notes", tags=["notes"])


class StartSyncRequest(BaseModel):
    sourceLocation: str = Field(..., min_length=1)
    ownerId: str = Field(..., min_length=1)


def _get_directory(request: Request):
    directory = getattr(request.app.state, "sync_directory", None)
    if not directory:
        raise HTTPException(status_code=503, detail="Sync jobs not initialized")
    return directory


@sync_router.post("/{repo_id}/start")
async def start_sync(request: Request, repo_id: str, body: StartSyncRequest):
    """Start a sync job for an existing note; a no-op while one is already running."""
    directory = _get_directory(request)
    try:
        phase = await directory.start(repo_id, body.sourceLocation, body.ownerId)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail=f"Note {repo_id} not found") from None
    except InvalidJobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from None
    return {"status": "ok", "repoId": repo_id, "phase": phase.value}


@sync_router.get("/{repo_id}/status")
async def get_sync_status(request: Request, repo_id: str):
    directory = _get_directory(request)
    try:
        state = await directory.status(repo_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail=f"No sync job for {repo_id}") from None
    return state.model_dump(mode="json")


@sync_router.post("/{repo_id}/retry")
async def retry_sync(request: Request, repo_id: str):
    """Manually retry a failed sync job."""
    directory = _get_directory(request)
    try:
        result = await directory.retry(repo_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail=f"No sync job for {repo_id}") from None
    except InvalidJobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from None
    return {"status": "ok", "repoId": repo_id, **result.model_dump(mode="json")}


@notes_router.post("/{note_id}/sync")
async def resync_note(request: Request, note_id: str):
    """Re-sync a note's repository from its stored URL and owner."""
    directory = _get_directory(request)
    note = await directory.note_repo.get_by_id(note_id)
    if not note:
        raise HTTPException(status_code=404, detail="Note not found")

    try:
        phase = await directory.start(note_id, note["repository_url"], str(note["user_id"]))
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Note not found") from None
    except InvalidJobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from None
    logger.info("Re-sync triggered for note %s", note_id)
    return {
        "status": "ok",
        "message": "Re-sync started successfully",
        "noteId": note_id,
        "phase": phase.value,
    }
