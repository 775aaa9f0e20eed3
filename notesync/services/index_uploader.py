"""Uploads fetched repository files into a file-search store."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

import httpx

from notesync import config
from notesync.errors import IndexUploadError
from notesync.models import FetchedFile
from notesync.observability import record_index_upload

logger = logging.getLogger("notesync.index")


class FileSearchIndexUploader:
    """Creates one file-search store per sync and uploads every file into it.

    Each upload starts a long-running import operation on the index host;
    ``upload`` polls them until all are done so the returned store name is
    only handed back once its content is searchable. The store name is the
    opaque index handle recorded on the note. Any failure surfaces as
    ``IndexUploadError`` so the job actor retries it.
    """

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        *,
        timeout: float | None = None,
        poll_interval: float | None = None,
        poll_timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api_url = (api_url or config.INDEX_API_URL).rstrip("/")
        self._api_key = api_key if api_key is not None else config.INDEX_API_KEY
        self.timeout = timeout if timeout is not None else config.INDEX_TIMEOUT_SECONDS
        self.poll_interval = poll_interval if poll_interval is not None else config.INDEX_POLL_INTERVAL_SECONDS
        self.poll_timeout = poll_timeout if poll_timeout is not None else config.INDEX_POLL_TIMEOUT_SECONDS
        self._transport = transport
        self._sleep = sleep

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers={"x-goog-api-key": self._api_key},
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request(self, client: httpx.AsyncClient, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("Index host rejected %s with HTTP %s", path, exc.response.status_code)
            raise IndexUploadError() from exc
        except httpx.HTTPError as exc:
            logger.warning("Index host request %s failed: %s", path, exc.__class__.__name__)
            raise IndexUploadError() from exc
        return response.json() if response.content else {}

    async def _operation_done(self, client: httpx.AsyncClient, operation_name: str) -> bool:
        operation = await self._request(client, "GET", f"/v1beta/{operation_name}")
        if operation.get("error"):
            logger.warning(
                "Index operation %s failed: %s",
                operation_name, (operation.get("error") or {}).get("message", ""),
            )
            raise IndexUploadError()
        return bool(operation.get("done"))

    async def _wait_for_operations(self, client: httpx.AsyncClient, operation_names: list[str]) -> None:
        pending = list(operation_names)
        max_polls = max(1, int(self.poll_timeout // self.poll_interval))
        for poll in range(max_polls):
            if poll:
                await self._sleep(self.poll_interval)
            pending = [name for name in pending if not await self._operation_done(client, name)]
            if not pending:
                return
        logger.warning("%d index operations still running after %.0fs", len(pending), self.poll_timeout)
        raise IndexUploadError()

    async def upload(self, files: list[FetchedFile], display_name: str = "") -> str:
        async with self._client() as client:
            store = await self._request(
                client,
                "POST",
                "/v1beta/fileSearchStores",
                json={"displayName": display_name[:128] or "notesync"},
            )
            store_name = str(store.get("name") or "")
            if not store_name:
                raise IndexUploadError()

            uploaded_bytes = 0
            operations: list[str] = []
            for fetched in files:
                metadata = {
                    "displayName": fetched.path,
                    "customMetadata": [{"key": "file_path", "stringValue": fetched.path}],
                }
                body = fetched.content.encode("utf-8")
                operation = await self._request(
                    client,
                    "POST",
                    f"/upload/v1beta/{store_name}:uploadToFileSearchStore",
                    headers={"X-Goog-Upload-Protocol": "multipart"},
                    files={
                        "metadata": (None, json.dumps(metadata), "application/json"),
                        "file": (fetched.path, body, "text/plain"),
                    },
                )
                if operation.get("error"):
                    raise IndexUploadError()
                if operation.get("name") and not operation.get("done"):
                    operations.append(str(operation["name"]))
                uploaded_bytes += len(body)

            await self._wait_for_operations(client, operations)

        record_index_upload(uploaded_bytes)
        logger.info("Uploaded %d files (%d bytes) to %s", len(files), uploaded_bytes, store_name)
        return store_name
