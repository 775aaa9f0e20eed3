import base64
import unittest

import httpx

from notesync.errors import (
    InvalidSourceLocationError,
    MissingCredentialError,
    RateLimitedError,
    RepositoryTooLargeError,
    UpstreamUnavailableError,
)
from notesync.services.content_fetcher import (
    GitHubContentFetcher,
    is_indexable_path,
    parse_repository_url,
    raise_for_github_status,
)

API = "https://api.github.test"


def _blob(text: str) -> dict:
    return {"content": base64.b64encode(text.encode()).decode(), "encoding": "base64"}


class _FakeGitHub:
    """Minimal GitHub REST surface served through ``httpx.MockTransport``."""

    def __init__(self, tree: list[dict], blobs: dict[str, object], *, truncated: bool = False) -> None:
        self.tree = tree
        self.blobs = blobs
        self.truncated = truncated
        self.requests: list[httpx.Request] = []
        self.repo_response: httpx.Response | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/repos/octo/widgets":
            if self.repo_response is not None:
                return self.repo_response
            return httpx.Response(200, json={"default_branch": "trunk", "full_name": "octo/widgets"})
        if path == "/repos/octo/widgets/git/ref/heads/trunk":
            return httpx.Response(200, json={"object": {"sha": "deadbeef"}})
        if path == "/repos/octo/widgets/git/trees/deadbeef":
            assert request.url.params.get("recursive") == "1"
            return httpx.Response(200, json={"tree": self.tree, "truncated": self.truncated})
        if path.startswith("/repos/octo/widgets/git/blobs/"):
            blob = self.blobs[path.rsplit("/", 1)[-1]]
            if isinstance(blob, httpx.Response):
                return blob
            return httpx.Response(200, json=_blob(str(blob)))
        return httpx.Response(404, json={"message": "Not Found"})

    def blob_requests(self) -> list[str]:
        return [r.url.path.rsplit("/", 1)[-1] for r in self.requests if "/git/blobs/" in r.url.path]


def _fetcher(github: _FakeGitHub, **kwargs) -> GitHubContentFetcher:
    return GitHubContentFetcher(API, transport=httpx.MockTransport(github), **kwargs)


class RepositoryUrlTests(unittest.TestCase):
    def test_accepts_common_forms(self) -> None:
        self.assertEqual(parse_repository_url("https://github.com/octo/widgets"), ("octo", "widgets"))
        self.assertEqual(parse_repository_url("https://github.com/octo/widgets.git"), ("octo", "widgets"))
        self.assertEqual(parse_repository_url(" https://github.com/octo/widgets/ "), ("octo", "widgets"))

    def test_rejects_other_locations(self) -> None:
        for url in ("", "github.com/octo/widgets", "https://gitlab.com/octo/widgets", "https://github.com/octo"):
            with self.subTest(url=url):
                with self.assertRaises(InvalidSourceLocationError):
                    parse_repository_url(url)


class IndexablePathTests(unittest.TestCase):
    def test_filters_metadata_dirs_and_binaries(self) -> None:
        self.assertTrue(is_indexable_path("src/app.py"))
        self.assertTrue(is_indexable_path(".github/workflows/ci.yml"))
        self.assertFalse(is_indexable_path(".git/config"))
        self.assertFalse(is_indexable_path("vendor/.svn/entries"))
        self.assertFalse(is_indexable_path("docs/Logo.PNG"))
        self.assertFalse(is_indexable_path("dist/tool.exe"))
        self.assertFalse(is_indexable_path(""))


class GitHubStatusTests(unittest.TestCase):
    def _raise(self, status: int, **kwargs) -> None:
        raise_for_github_status(httpx.Response(status, **kwargs))

    def test_success_passes(self) -> None:
        self._raise(200, json={})

    def test_rate_limits(self) -> None:
        with self.assertRaises(RateLimitedError):
            self._raise(429)
        with self.assertRaises(RateLimitedError) as ctx:
            self._raise(403, headers={"x-ratelimit-remaining": "0", "retry-after": "30"})
        self.assertEqual(ctx.exception.retry_after, 30)
        self.assertIn("30 seconds", ctx.exception.message)
        with self.assertRaises(RateLimitedError):
            self._raise(403, json={"message": "API rate limit exceeded for user"})

    def test_auth_and_input_errors(self) -> None:
        with self.assertRaises(MissingCredentialError):
            self._raise(401, json={"message": "Bad credentials"})
        with self.assertRaises(MissingCredentialError):
            self._raise(403, json={"message": "Resource not accessible"})
        with self.assertRaises(InvalidSourceLocationError):
            self._raise(404, json={"message": "Not Found"})
        with self.assertRaises(InvalidSourceLocationError):
            self._raise(409, json={"message": "Git Repository is empty."})

    def test_server_errors_are_transient(self) -> None:
        with self.assertRaises(UpstreamUnavailableError):
            self._raise(502)


class GitHubContentFetcherTests(unittest.IsolatedAsyncioTestCase):
    async def test_fetches_indexable_files_at_default_branch_head(self) -> None:
        github = _FakeGitHub(
            tree=[
                {"path": "README.md", "type": "blob", "sha": "b1"},
                {"path": "src", "type": "tree", "sha": "t1"},
                {"path": "src/app.py", "type": "blob", "sha": "b2"},
                {"path": "assets/logo.png", "type": "blob", "sha": "b3"},
                {"path": ".git/HEAD", "type": "blob", "sha": "b4"},
            ],
            blobs={"b1": "# Widgets\n", "b2": "print('hi')\n"},
        )

        result = await _fetcher(github).fetch("ghp_token", "https://github.com/octo/widgets")

        self.assertEqual(result.revision_id, "deadbeef")
        self.assertEqual(result.repository_name, "octo/widgets")
        self.assertEqual([f.path for f in result.files], ["README.md", "src/app.py"])
        self.assertEqual(result.files[1].content, "print('hi')\n")
        self.assertEqual(result.skipped_paths, ())
        self.assertEqual(sorted(github.blob_requests()), ["b1", "b2"])
        self.assertEqual(github.requests[0].headers["authorization"], "Bearer ghp_token")

    async def test_unreadable_file_is_skipped(self) -> None:
        github = _FakeGitHub(
            tree=[{"path": f"f{i}.txt", "type": "blob", "sha": f"s{i}"} for i in range(5)],
            blobs={
                "s0": "zero", "s1": "one", "s3": "three", "s4": "four",
                "s2": httpx.Response(500, json={"message": "Server Error"}),
            },
        )

        result = await _fetcher(github, concurrency=2).fetch("ghp_token", "https://github.com/octo/widgets")

        self.assertEqual([f.path for f in result.files], ["f0.txt", "f1.txt", "f3.txt", "f4.txt"])
        self.assertEqual(result.skipped_paths, ("f2.txt",))

    async def test_rate_limit_during_blob_fetch_aborts_attempt(self) -> None:
        github = _FakeGitHub(
            tree=[
                {"path": "a.txt", "type": "blob", "sha": "s1"},
                {"path": "b.txt", "type": "blob", "sha": "s2"},
            ],
            blobs={"s1": "a", "s2": httpx.Response(429, headers={"retry-after": "60"})},
        )

        with self.assertRaises(RateLimitedError):
            await _fetcher(github).fetch("ghp_token", "https://github.com/octo/widgets")

    async def test_truncated_tree_is_too_large(self) -> None:
        github = _FakeGitHub(tree=[], blobs={}, truncated=True)

        with self.assertRaises(RepositoryTooLargeError):
            await _fetcher(github).fetch("ghp_token", "https://github.com/octo/widgets")

    async def test_missing_repository_is_fatal(self) -> None:
        github = _FakeGitHub(tree=[], blobs={})
        github.repo_response = httpx.Response(404, json={"message": "Not Found"})

        with self.assertRaises(InvalidSourceLocationError):
            await _fetcher(github).fetch("ghp_token", "https://github.com/octo/widgets")

    async def test_empty_credential_is_rejected_before_any_request(self) -> None:
        github = _FakeGitHub(tree=[], blobs={})

        with self.assertRaises(MissingCredentialError):
            await _fetcher(github).fetch("", "https://github.com/octo/widgets")
        self.assertEqual(github.requests, [])

    async def test_network_failure_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = GitHubContentFetcher(API, transport=httpx.MockTransport(handler))
        with self.assertRaises(UpstreamUnavailableError):
            await fetcher.fetch("ghp_token", "https://github.com/octo/widgets")


if __name__ == "__main__":
    unittest.main()
