"""Error taxonomy for repository sync jobs.

Pipeline failures fall into two kinds. Transient upstream errors (rate
limits, network trouble, index host failures) are retried by the job actor
with exponential backoff. Fatal input errors (bad repository URL, missing
credential, oversized repository) fail the job immediately.

Every ``SyncError`` carries a user-facing ``message`` that ends up in the
note's error field, so it must never include tokens, secrets or storage keys.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

import httpx


GENERIC_SYNC_FAILURE = "An unexpected error occurred while syncing the repository."


class ErrorKind(str, Enum):
    TRANSIENT_UPSTREAM = "transient_upstream"
    FATAL_INPUT = "fatal_input"


class SyncError(Exception):
    """Base class for pipeline errors with a safe user-facing message."""

    code = "SYNC_ERROR"
    kind = ErrorKind.TRANSIENT_UPSTREAM
    default_message = GENERIC_SYNC_FAILURE

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class TransientUpstreamError(SyncError):
    code = "UPSTREAM_UNAVAILABLE"
    kind = ErrorKind.TRANSIENT_UPSTREAM


class FatalInputError(SyncError):
    code = "INVALID_INPUT"
    kind = ErrorKind.FATAL_INPUT


class RateLimitedError(TransientUpstreamError):
    code = "GITHUB_RATE_LIMIT"
    default_message = "GitHub API rate limit exceeded. Please try again later."

    def __init__(self, retry_after: Optional[int] = None):
        self.retry_after = retry_after
        message = None
        if retry_after:
            message = f"GitHub API rate limit exceeded. Please try again in {retry_after} seconds."
        super().__init__(message)


class UpstreamUnavailableError(TransientUpstreamError):
    code = "UPSTREAM_UNAVAILABLE"
    default_message = "GitHub is temporarily unavailable. Please try again later."


class IndexUploadError(TransientUpstreamError):
    code = "INDEX_UPLOAD_FAILED"
    default_message = "Failed to upload repository content to the search index."


class CacheWriteError(TransientUpstreamError):
    code = "CACHE_WRITE_FAILED"
    default_message = "Failed to write the repository snapshot cache."


class MissingCredentialError(FatalInputError):
    code = "GITHUB_ACCESS_DENIED"
    default_message = (
        "GitHub access token is invalid or expired. "
        "Please re-authenticate by clicking the \"Re-authenticate\" button."
    )


class InvalidSourceLocationError(FatalInputError):
    code = "INVALID_REPOSITORY_URL"
    default_message = "Invalid GitHub repository URL format. Expected: https://github.com/:owner/:repo"


class RepositoryTooLargeError(FatalInputError):
    code = "REPOSITORY_TOO_LARGE"
    default_message = (
        "Repository exceeds the 500MB size limit. "
        "Please consider using partial sync or specifying target directories."
    )


class NoteChangedError(FatalInputError):
    """The note row was edited or deleted by someone else while its job was active."""

    code = "NOTE_CHANGED"
    default_message = "The note was changed or deleted while syncing. Please start the sync again."


# ── Command errors ──────────────────────────────────────────────────

class JobNotFoundError(LookupError):
    """No sync job has ever been started for the repository."""


class InvalidJobStateError(Exception):
    """A command was issued against a job in the wrong phase."""


def classify_error(exc: BaseException) -> tuple[ErrorKind, str]:
    """Map a pipeline exception to its retry kind and a user-safe message."""
    if isinstance(exc, SyncError):
        return exc.kind, exc.message
    if isinstance(exc, (httpx.TransportError, TimeoutError)):
        return ErrorKind.TRANSIENT_UPSTREAM, UpstreamUnavailableError.default_message
    if isinstance(exc, httpx.HTTPStatusError):
        return ErrorKind.TRANSIENT_UPSTREAM, UpstreamUnavailableError.default_message
    return ErrorKind.TRANSIENT_UPSTREAM, GENERIC_SYNC_FAILURE
