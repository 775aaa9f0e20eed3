"""Per-repository sync job actors.

Each repository (note) id maps to exactly one ``SyncJobActor`` held by the
``SyncJobDirectory``. The actor owns that repository's durable ``JobState``
and is the only writer of the note's sync fields while a job is active:

    Pending → InProgress → Completed | Failed
    Failed  → Pending            (manual ``retry()`` only)

Commands (``start``/``status``/``retry``) and pipeline phase transitions are
serialized on the actor's lock. The pipeline itself runs in a supervised
background task; network I/O and backoff sleeps happen outside the lock so
``status()`` stays answerable while a job is running.

A job can only be started for an existing note. The actor reads the note's
``version`` when a run begins and passes it as ``expected_version`` on every
status update; a rejected update means the note was edited or deleted behind
the actor's back, and the run is abandoned as failed.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from notesync import config
from notesync.audit import log_sync_completed, log_sync_failed, log_sync_started
from notesync.db.factory import (
    get_note_repository,
    get_sync_job_state_repository,
)
from notesync.errors import (
    ErrorKind,
    GENERIC_SYNC_FAILURE,
    InvalidJobStateError,
    JobNotFoundError,
    MissingCredentialError,
    NoteChangedError,
    classify_error,
)
from notesync.models import (
    ACTIVE_PHASES,
    FetchResult,
    JobPhase,
    JobState,
    NoteStatus,
    RetryResult,
    utc_now_iso,
)
from notesync.observability import (
    record_cache_failure,
    record_sync_result,
    record_sync_retry,
    start_span,
)

logger = logging.getLogger("notesync.sync")

Sleep = Callable[[float], Awaitable[Any]]


class SyncJobActor:
    """Single-writer sync job for one repository id."""

    def __init__(
        self,
        repo_id: str,
        *,
        state_repo: Any,
        note_repo: Any,
        credentials: Any,
        fetcher: Any,
        uploader: Any,
        cache_writer: Any,
        max_auto_retries: int | None = None,
        backoff_base_seconds: float | None = None,
        cache_failure_blocks: bool | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.repo_id = repo_id
        self.state_repo = state_repo
        self.note_repo = note_repo
        self.credentials = credentials
        self.fetcher = fetcher
        self.uploader = uploader
        self.cache_writer = cache_writer
        self.max_auto_retries = config.SYNC_MAX_AUTO_RETRIES if max_auto_retries is None else max_auto_retries
        self.backoff_base_seconds = (
            config.SYNC_BACKOFF_BASE_SECONDS if backoff_base_seconds is None else backoff_base_seconds
        )
        self.cache_failure_blocks = (
            config.CACHE_FAILURE_BLOCKS if cache_failure_blocks is None else cache_failure_blocks
        )
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._state: JobState | None = None
        self._task: asyncio.Task | None = None
        self._note_version: int | None = None

    # ── State ──────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _load(self) -> JobState | None:
        if self._state is None:
            raw = await self.state_repo.get(self.repo_id)
            if raw:
                self._state = JobState.model_validate(raw)
        return self._state

    async def _persist(self, state: JobState) -> None:
        state.updatedAt = utc_now_iso()
        await self.state_repo.put(state.model_dump(mode="json"))
        self._state = state

    async def _load_note(self) -> dict:
        note = await self.note_repo.get_by_id(self.repo_id)
        if not note:
            raise JobNotFoundError(self.repo_id)
        self._note_version = int(note.get("version") or 0)
        return note

    async def _update_note(self, status: NoteStatus, error_message: str | None, **fields: Any) -> None:
        updated = await self.note_repo.update_status(
            self.repo_id,
            status.value,
            error_message=error_message,
            expected_version=self._note_version,
            **fields,
        )
        if not updated:
            logger.warning(
                "Note %s changed or deleted (expected version %s); status %s not recorded",
                self.repo_id, self._note_version, status.value,
            )
            raise NoteChangedError()
        if self._note_version is not None:
            self._note_version += 1

    def _spawn(self, owner_id: str) -> None:
        self._task = asyncio.create_task(self._run(owner_id), name=f"sync-job:{self.repo_id}")
        self._task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.info("Sync job %s cancelled; state kept for resume", self.repo_id)
        elif task.exception() is not None:
            logger.error("Sync job %s task ended with an unhandled error: %r", self.repo_id, task.exception())

    # ── Commands ───────────────────────────────────────────────────

    async def start(self, source_location: str, owner_id: str) -> JobPhase:
        """Begin a sync unless one is already running; returns immediately."""
        async with self._lock:
            state = await self._load()
            if state is not None and self.is_running:
                logger.info("Sync job %s already %s; start ignored", self.repo_id, state.phase.value)
                return state.phase

            note = await self._load_note()
            if note["repository_url"] != source_location or str(note["user_id"]) != owner_id:
                raise InvalidJobStateError("Source location and owner must match the note being synced")

            state = JobState(
                repoId=self.repo_id,
                sourceLocation=source_location,
                phase=JobPhase.PENDING,
                ownerId=owner_id,
                manualRetryCount=state.manualRetryCount if state else 0,
            )
            await self._persist(state)
            self._spawn(owner_id)
            return state.phase

    async def status(self) -> JobState:
        async with self._lock:
            state = await self._load()
            if state is None:
                raise JobNotFoundError(self.repo_id)
            return state.model_copy(deep=True)

    async def retry(self) -> RetryResult:
        """Re-run a failed job from the first pipeline step."""
        async with self._lock:
            state = await self._load()
            if state is None:
                raise JobNotFoundError(self.repo_id)
            if state.phase != JobPhase.FAILED:
                raise InvalidJobStateError(f"Job is not in failed state (phase={state.phase.value})")

            note = await self._load_note()
            owner_id = state.ownerId or str(note["user_id"])

            state.phase = JobPhase.PENDING
            state.retryCount = 0
            state.manualRetryCount += 1
            state.lastError = None
            state.ownerId = owner_id
            await self._persist(state)
            self._spawn(owner_id)
            return RetryResult(
                phase=state.phase,
                retryCount=state.retryCount,
                manualRetryCount=state.manualRetryCount,
            )

    async def resume(self) -> bool:
        """Restart a job left Pending/InProgress by a previous process."""
        async with self._lock:
            state = await self._load()
            if state is None or state.phase not in ACTIVE_PHASES or self.is_running:
                return False
            try:
                await self._load_note()
            except JobNotFoundError:
                logger.warning("Not resuming sync job %s: its note no longer exists", self.repo_id)
                state.phase = JobPhase.FAILED
                state.lastError = NoteChangedError.default_message
                await self._persist(state)
                return False
            logger.info("Resuming sync job %s at automatic retry %d", self.repo_id, state.retryCount)
            self._spawn(state.ownerId)
            return True

    async def join(self) -> None:
        """Wait for the running pipeline task, if any, to finish."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def cancel(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ── Pipeline ───────────────────────────────────────────────────

    async def _run(self, owner_id: str) -> None:
        t0 = time.monotonic()
        try:
            await self._run_attempts(owner_id, t0)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Sync job %s crashed outside the retry policy", self.repo_id)
            await self._fail_after_crash(owner_id, t0)

    async def _run_attempts(self, owner_id: str, t0: float) -> None:
        async with self._lock:
            state = await self._load()
            if state is None:
                return
            state.phase = JobPhase.IN_PROGRESS
            await self._persist(state)
            try:
                await self._update_note(NoteStatus.INDEXING, None)
            except NoteChangedError:
                await self._abandon(state, owner_id, t0)
                return
        log_sync_started(owner_id, self.repo_id)

        while True:
            try:
                result, index_handle = await self._attempt(owner_id, state.sourceLocation)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if await self._handle_failure(exc, owner_id, t0):
                    continue
                return
            await self._complete(result, index_handle, owner_id, t0)
            return

    async def _attempt(self, owner_id: str, source_location: str) -> tuple[FetchResult, str]:
        attributes = {"notesync.repo_id": self.repo_id}
        with start_span("sync.credential", attributes):
            credential = await self.credentials.get_decrypted_credential(owner_id)
        with start_span("sync.fetch", attributes):
            result = await self.fetcher.fetch(credential, source_location)
        with start_span("sync.index_upload", {**attributes, "notesync.file_count": len(result.files)}):
            index_handle = await self.uploader.upload(
                result.files,
                display_name=f"{result.repository_name}@{result.revision_id[:12]}",
            )
        with start_span("sync.cache_write", attributes):
            try:
                await self.cache_writer.write(self.repo_id, result.revision_id, result.files)
            except Exception as exc:
                record_cache_failure()
                if self.cache_failure_blocks:
                    raise
                logger.warning(
                    "Snapshot cache write failed for %s@%s; completing without cache: %r",
                    self.repo_id, result.revision_id[:12], exc,
                )
        return result, index_handle

    async def _handle_failure(self, exc: Exception, owner_id: str, t0: float) -> bool:
        """Apply the retry policy. Returns True when the pipeline should run again."""
        kind, message = classify_error(exc)
        code = getattr(exc, "code", exc.__class__.__name__)

        async with self._lock:
            state = self._state
            state.lastError = message
            if kind == ErrorKind.FATAL_INPUT or state.retryCount >= self.max_auto_retries:
                state.phase = JobPhase.FAILED
                await self._persist(state)
                auth_required = isinstance(exc, MissingCredentialError)
                try:
                    await self._update_note(
                        NoteStatus.AUTH_REQUIRED if auth_required else NoteStatus.FAILED,
                        message,
                    )
                except NoteChangedError as conflict:
                    state.lastError = conflict.message
                    await self._persist(state)
                logger.error(
                    "Sync failed for note %s after %d automatic retries (%s): %s",
                    self.repo_id, state.retryCount, code, message,
                )
                log_sync_failed(owner_id, self.repo_id, message)
                record_sync_result(
                    "auth_required" if auth_required else "failed",
                    (time.monotonic() - t0) * 1000,
                )
                return False

            delay = self.backoff_base_seconds * (2 ** state.retryCount)
            await self._persist(state)

        logger.warning(
            "Retrying sync for note %s in %.1fs (attempt %d, %s): %r",
            self.repo_id, delay, state.retryCount + 1, code, exc,
        )
        record_sync_retry(str(code))
        await self._sleep(delay)

        async with self._lock:
            state.retryCount += 1
            await self._persist(state)
        return True

    async def _complete(self, result: FetchResult, index_handle: str, owner_id: str, t0: float) -> None:
        async with self._lock:
            state = self._state
            try:
                await self._update_note(
                    NoteStatus.READY,
                    None,
                    file_store_id=index_handle,
                    commit_sha=result.revision_id,
                    synced_at=utc_now_iso(),
                )
            except NoteChangedError:
                await self._abandon(state, owner_id, t0)
                return
            state.phase = JobPhase.COMPLETED
            state.indexHandle = index_handle
            state.revisionId = result.revision_id
            state.lastError = None
            await self._persist(state)
        log_sync_completed(owner_id, self.repo_id, len(result.files))
        record_sync_result("completed", (time.monotonic() - t0) * 1000)
        logger.info(
            "Sync completed for note %s: %d files at %s",
            self.repo_id, len(result.files), result.revision_id[:12],
        )

    async def _abandon(self, state: JobState, owner_id: str, t0: float) -> None:
        """Fail the run without writing to the note. Caller holds the lock."""
        state.phase = JobPhase.FAILED
        state.lastError = NoteChangedError.default_message
        await self._persist(state)
        logger.error("Sync for note %s abandoned: note changed or deleted while the job was active", self.repo_id)
        log_sync_failed(owner_id, self.repo_id, state.lastError)
        record_sync_result("failed", (time.monotonic() - t0) * 1000)

    async def _fail_after_crash(self, owner_id: str, t0: float) -> None:
        try:
            async with self._lock:
                state = await self._load()
                if state is None:
                    return
                state.phase = JobPhase.FAILED
                state.lastError = GENERIC_SYNC_FAILURE
                await self._persist(state)
                await self._update_note(NoteStatus.FAILED, GENERIC_SYNC_FAILURE)
        except Exception:
            logger.exception("Could not record failure for sync job %s", self.repo_id)
            return
        log_sync_failed(owner_id, self.repo_id, GENERIC_SYNC_FAILURE)
        record_sync_result("failed", (time.monotonic() - t0) * 1000)


class SyncJobDirectory:
    """Maps repository ids to their one ``SyncJobActor``.

    Actors are created on first use and never replaced, so every command for a
    repository reaches the same instance. Different repositories run fully
    independently.
    """

    def __init__(
        self,
        *,
        state_repo: Any,
        note_repo: Any,
        credentials: Any,
        fetcher: Any,
        uploader: Any,
        cache_writer: Any,
        **actor_options: Any,
    ):
        self.state_repo = state_repo
        self.note_repo = note_repo
        self._collaborators = {
            "state_repo": state_repo,
            "note_repo": note_repo,
            "credentials": credentials,
            "fetcher": fetcher,
            "uploader": uploader,
            "cache_writer": cache_writer,
        }
        self._actor_options = actor_options
        self._actors: dict[str, SyncJobActor] = {}

    @classmethod
    def for_db(cls, db: Any, **overrides: Any) -> "SyncJobDirectory":
        """Build a directory wired to the default collaborators for ``db``."""
        from notesync.services.cache_writer import CacheWriter, LocalBlobCache
        from notesync.services.content_fetcher import GitHubContentFetcher
        from notesync.services.credentials import CredentialStore
        from notesync.services.index_uploader import FileSearchIndexUploader

        collaborators = {
            "state_repo": get_sync_job_state_repository(db),
            "note_repo": get_note_repository(db),
            "credentials": CredentialStore.for_db(db),
            "fetcher": GitHubContentFetcher(),
            "uploader": FileSearchIndexUploader(),
            "cache_writer": CacheWriter(LocalBlobCache()),
        }
        collaborators.update(overrides)
        return cls(**collaborators)

    def actor_for(self, repo_id: str) -> SyncJobActor:
        actor = self._actors.get(repo_id)
        if actor is None:
            actor = SyncJobActor(repo_id, **self._collaborators, **self._actor_options)
            self._actors[repo_id] = actor
        return actor

    async def start(self, repo_id: str, source_location: str, owner_id: str) -> JobPhase:
        return await self.actor_for(repo_id).start(source_location, owner_id)

    async def status(self, repo_id: str) -> JobState:
        return await self.actor_for(repo_id).status()

    async def retry(self, repo_id: str) -> RetryResult:
        return await self.actor_for(repo_id).retry()

    async def resume_unfinished(self) -> int:
        resumed = 0
        for raw in await self.state_repo.list_unfinished():
            repo_id = str(raw.get("repoId") or "")
            if repo_id and await self.actor_for(repo_id).resume():
                resumed += 1
        if resumed:
            logger.info("Resumed %d interrupted sync jobs", resumed)
        return resumed

    @property
    def running_count(self) -> int:
        return sum(1 for actor in self._actors.values() if actor.is_running)

    async def join(self, repo_id: str | None = None) -> None:
        if repo_id is not None:
            await self.actor_for(repo_id).join()
            return
        await asyncio.gather(*(actor.join() for actor in list(self._actors.values())))

    async def shutdown(self) -> None:
        await asyncio.gather(*(actor.cancel() for actor in list(self._actors.values())))
