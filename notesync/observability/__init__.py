"""Observability helpers."""

from notesync.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_sync_result,
    record_sync_retry,
    record_fetch,
    record_index_upload,
    record_cache_failure,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_sync_result",
    "record_sync_retry",
    "record_fetch",
    "record_index_upload",
    "record_cache_failure",
]
