"""Repository content fetcher for GitHub.

Resolves the default branch head, lists the recursive tree at that commit and
downloads blob content for every indexable file. Individual unreadable files
are skipped; the tree being truncated by GitHub is treated as the repository
exceeding the size ceiling.
"""
from __future__ import annotations

import asyncio
import base64
import logging
import re
import time
from typing import Any

import httpx

from notesync import config
from notesync.errors import (
    InvalidSourceLocationError,
    MissingCredentialError,
    RateLimitedError,
    RepositoryTooLargeError,
    UpstreamUnavailableError,
)
from notesync.models import FetchedFile, FetchResult
from notesync.observability import record_fetch

logger = logging.getLogger("notesync.fetch")

_REPOSITORY_URL_RE = re.compile(r"^https://github\.com/([^/\s]+)/([^/\s]+?)(?:\.git)?/?$")

METADATA_DIRS = frozenset({".git", ".hg", ".svn"})
BINARY_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".pdf", ".zip", ".exe", ".dll")


def parse_repository_url(source_location: str) -> tuple[str, str]:
    """Return ``(owner, repo)`` for a ``https://github.com/:owner/:repo`` URL."""
    match = _REPOSITORY_URL_RE.match((source_location or "").strip())
    if not match:
        raise InvalidSourceLocationError()
    return match.group(1), match.group(2)


def is_indexable_path(path: str) -> bool:
    if not path:
        return False
    if any(part in METADATA_DIRS for part in path.split("/")):
        return False
    return not path.lower().endswith(BINARY_EXTENSIONS)


def _retry_after(response: httpx.Response) -> int | None:
    raw = response.headers.get("retry-after")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code != 403:
        return False
    if response.headers.get("x-ratelimit-remaining") == "0" or "retry-after" in response.headers:
        return True
    try:
        message = str(response.json().get("message") or "")
    except ValueError:
        return False
    return "rate limit" in message.lower()


def raise_for_github_status(response: httpx.Response) -> None:
    """Translate a GitHub error response into the sync error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    if _is_rate_limited(response):
        raise RateLimitedError(_retry_after(response))
    if status in (401, 403):
        raise MissingCredentialError()
    if status == 404:
        raise InvalidSourceLocationError("Repository not found or you do not have access to it.")
    if status == 409:
        raise InvalidSourceLocationError("Repository is empty. Push at least one commit and try again.")
    raise UpstreamUnavailableError()


class GitHubContentFetcher:
    """Fetches the indexable files of a repository at its default branch head."""

    def __init__(
        self,
        api_url: str | None = None,
        *,
        timeout: float | None = None,
        concurrency: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = (api_url or config.GITHUB_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.GITHUB_TIMEOUT_SECONDS
        self.concurrency = max(1, concurrency or config.FETCH_CONCURRENCY)
        self._transport = transport

    def _client(self, credential: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers={
                "Authorization": f"Bearer {credential}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "notesync",
            },
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _get_json(self, client: httpx.AsyncClient, path: str, **params: Any) -> dict[str, Any]:
        try:
            response = await client.get(path, params=params or None)
        except httpx.TransportError as exc:
            logger.warning("GitHub request %s failed: %s", path, exc.__class__.__name__)
            raise UpstreamUnavailableError() from exc
        raise_for_github_status(response)
        return response.json()

    async def fetch(self, credential: str, source_location: str) -> FetchResult:
        if not credential:
            raise MissingCredentialError()
        owner, repo = parse_repository_url(source_location)
        base = f"/repos/{owner}/{repo}"
        t0 = time.monotonic()

        async with self._client(credential) as client:
            repo_data = await self._get_json(client, base)
            branch = str(repo_data.get("default_branch") or "main")
            ref = await self._get_json(client, f"{base}/git/ref/heads/{branch}")
            revision_id = str((ref.get("object") or {}).get("sha") or "")
            if not revision_id:
                raise UpstreamUnavailableError()

            tree = await self._get_json(client, f"{base}/git/trees/{revision_id}", recursive="1")
            if tree.get("truncated"):
                raise RepositoryTooLargeError()

            entries = [
                item for item in tree.get("tree") or []
                if item.get("type") == "blob" and item.get("sha") and is_indexable_path(str(item.get("path") or ""))
            ]
            semaphore = asyncio.Semaphore(self.concurrency)

            async def _fetch_one(item: dict[str, Any]) -> FetchedFile:
                async with semaphore:
                    blob = await self._get_json(client, f"{base}/git/blobs/{item['sha']}")
                raw = base64.b64decode(blob.get("content") or "")
                return FetchedFile(path=item["path"], content=raw.decode("utf-8", errors="replace"))

            results = await asyncio.gather(*(_fetch_one(item) for item in entries), return_exceptions=True)

        files: list[FetchedFile] = []
        skipped: list[str] = []
        for item, result in zip(entries, results):
            if isinstance(result, RateLimitedError):
                raise result
            if isinstance(result, BaseException):
                logger.warning("Skipping %s in %s/%s: %s", item["path"], owner, repo, result.__class__.__name__)
                skipped.append(item["path"])
                continue
            files.append(result)

        record_fetch(len(files), len(skipped))
        logger.info(
            "Fetched %d files from %s/%s@%s (%d skipped) in %dms",
            len(files), owner, repo, revision_id[:12], len(skipped),
            int((time.monotonic() - t0) * 1000),
        )
        return FetchResult(
            files=files,
            revision_id=revision_id,
            repository_name=str(repo_data.get("full_name") or f"{owner}/{repo}"),
            skipped_paths=tuple(skipped),
        )
