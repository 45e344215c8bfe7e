"""GitHub REST API client using direct httpx calls.

The client is a thin authenticated wrapper: it holds configuration and an
HTTP connection pool, never repository state. Non-success statuses surface
as ``GitHubAPIError`` carrying the status code so callers can branch on
404 (absent) and 422 (already exists). There are no retries here; only the
caller knows whether an operation is safe to repeat.
"""

import base64
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from gitops_service.exceptions import GitHubAPIError, UpstreamError, UpstreamTimeoutError

log = structlog.get_logger(__name__)

GITHUB_API_VERSION = "2022-11-28"


class GitHubRestClient:
    """Authenticated client for the ref/blob/tree/commit/contents/pulls endpoints."""

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize GitHub client.

        Args:
            token: GitHub personal access token or App token
            owner: Repository owner (user or organization)
            repo: Repository name
            api_url: GitHub API base URL (for GitHub Enterprise)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.owner = owner
        self.repo = repo
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {token.strip()}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
            },
        )

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()

    async def __aenter__(self) -> "GitHubRestClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def call(
        self,
        endpoint: str,
        method: str = "GET",
        json: Any | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Perform one API request and return the parsed JSON body.

        Args:
            endpoint: Path such as ``/repos/o/r/git/refs`` or an absolute URL
            method: HTTP method
            json: Request body
            params: Query parameters

        Returns:
            Parsed JSON response, or an empty dict for an empty body

        Raises:
            GitHubAPIError: Non-success HTTP status
            UpstreamTimeoutError: The request exceeded the configured timeout
            UpstreamError: Connection-level failure
        """
        try:
            response = await self._client.request(method, endpoint, json=json, params=params)
        except httpx.TimeoutException as e:
            log.error("github_request_timeout", method=method, endpoint=endpoint, timeout=self.timeout)
            raise UpstreamTimeoutError(f"GitHub API {method} {endpoint} timed out", self.timeout) from e
        except httpx.TransportError as e:
            log.error("github_request_failed", method=method, endpoint=endpoint, error=str(e))
            raise UpstreamError(f"GitHub API {method} {endpoint} failed: {e}") from e

        if not response.is_success:
            log.debug("github_error_status", method=method, endpoint=endpoint, status=response.status_code)
            raise GitHubAPIError(response.status_code, response.text)

        return response.json() if response.content else {}

    # Refs

    async def get_ref(self, branch: str) -> dict[str, Any]:
        """Read ``refs/heads/{branch}``; raises GitHubAPIError(404) if absent."""
        return await self.call(f"{self.repo_path}/git/ref/heads/{branch}")

    async def get_branch_sha(self, branch: str) -> str:
        ref = await self.get_ref(branch)
        return ref["object"]["sha"]

    async def create_ref(self, branch: str, sha: str) -> dict[str, Any]:
        """Create ``refs/heads/{branch}``; raises GitHubAPIError(422) if it exists."""
        return await self.call(
            f"{self.repo_path}/git/refs",
            method="POST",
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )

    # Git database

    async def create_blob(self, content: bytes) -> str:
        data = await self.call(
            f"{self.repo_path}/git/blobs",
            method="POST",
            json={"content": base64.b64encode(content).decode("ascii"), "encoding": "base64"},
        )
        return data["sha"]

    async def create_tree(self, entries: list[dict[str, str]], base_tree: str | None = None) -> str:
        """Create a tree from ``{"path", "sha"}`` blob entries.

        Without ``base_tree`` the tree contains exactly the given entries.
        """
        body: dict[str, Any] = {
            "tree": [{"path": e["path"], "mode": "100644", "type": "blob", "sha": e["sha"]} for e in entries]
        }
        if base_tree:
            body["base_tree"] = base_tree
        data = await self.call(f"{self.repo_path}/git/trees", method="POST", json=body)
        return data["sha"]

    async def create_commit(self, message: str, tree: str, parents: list[str] | None = None) -> str:
        """Create a commit; an empty ``parents`` list makes a root commit."""
        data = await self.call(
            f"{self.repo_path}/git/commits",
            method="POST",
            json={"message": message, "tree": tree, "parents": parents or []},
        )
        return data["sha"]

    # Contents

    async def get_contents(self, path: str, ref: str) -> dict[str, Any] | None:
        """Read a file's metadata and base64 content on ``ref``; None if absent."""
        try:
            return await self.call(f"{self.repo_path}/contents/{quote(path)}", params={"ref": ref})
        except GitHubAPIError as e:
            if e.is_not_found:
                return None
            raise

    async def put_contents(
        self,
        path: str,
        content: bytes,
        message: str,
        branch: str,
        sha: str | None = None,
    ) -> dict[str, Any]:
        """Create or update one file with a single commit.

        ``sha`` is the blob SHA the caller last saw; GitHub rejects the write
        with 409 when the file changed in the meantime.
        """
        body: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
            "branch": branch,
        }
        if sha:
            body["sha"] = sha
        return await self.call(f"{self.repo_path}/contents/{quote(path)}", method="PUT", json=body)

    # Pull requests

    async def list_pulls(
        self,
        head: str | None = None,
        base: str | None = None,
        state: str = "open",
    ) -> list[dict[str, Any]]:
        """List pull requests; ``head`` is a branch name in this repository."""
        params: dict[str, Any] = {"state": state}
        if head:
            params["head"] = f"{self.owner}:{head}"
        if base:
            params["base"] = base
        return await self.call(f"{self.repo_path}/pulls", params=params)

    async def create_pull(self, title: str, head: str, base: str, body: str) -> dict[str, Any]:
        return await self.call(
            f"{self.repo_path}/pulls",
            method="POST",
            json={"title": title, "head": head, "base": base, "body": body},
        )

    async def add_labels(self, issue_number: int, labels: list[str]) -> list[dict[str, Any]]:
        return await self.call(
            f"{self.repo_path}/issues/{issue_number}/labels",
            method="POST",
            json={"labels": labels},
        )
