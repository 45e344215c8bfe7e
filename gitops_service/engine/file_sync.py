"""Conditional single-file writes through the contents API."""

import base64
from typing import Any

import structlog

from gitops_service.exceptions import GitHubAPIError, ValidationError
from gitops_service.models.domain import FileEntry
from gitops_service.providers.github_rest import GitHubRestClient

log = structlog.get_logger(__name__)


def decode_contents(contents: dict[str, Any]) -> bytes | None:
    """Return the raw bytes of a contents-API file response.

    None when GitHub did not inline the content (files over 1 MB).
    """
    if contents.get("encoding") != "base64":
        return None
    return base64.b64decode(contents.get("content", ""))


async def sync_file(client: GitHubRestClient, entry: FileEntry, branch: str, message: str) -> bool:
    """Write ``entry`` onto ``branch`` unless the branch already holds it.

    One read yields both the current content and its blob SHA; the write
    then carries that SHA as precondition, so a concurrent change made
    between read and write is rejected by GitHub (409, or 422 when the file
    appeared meanwhile) instead of being overwritten. On such a rejection
    the file is re-read once: if it now holds exactly our content the write
    is considered done, otherwise the conflict propagates.

    Returns:
        True if a commit was made, False if the content was already there

    Raises:
        GitHubAPIError: Write rejected by a concurrent, different change, or
            any other API failure
        ValidationError: The path is a directory on the branch
    """
    existing = await client.get_contents(entry.path, ref=branch)
    sha = None
    if existing is not None:
        if isinstance(existing, list):
            raise ValidationError(f"{entry.path} is a directory on {branch}")
        if decode_contents(existing) == entry.data:
            log.debug("file_unchanged", path=entry.path, branch=branch)
            return False
        sha = existing["sha"]

    try:
        await client.put_contents(entry.path, entry.data, message, branch, sha=sha)
    except GitHubAPIError as e:
        if not (e.is_stale_write or e.is_conflict):
            raise
        current = await client.get_contents(entry.path, ref=branch)
        if isinstance(current, dict) and decode_contents(current) == entry.data:
            log.info("file_written_concurrently", path=entry.path, branch=branch)
            return False
        log.error("file_write_conflict", path=entry.path, branch=branch, status=e.http_status)
        raise

    log.info("file_written", path=entry.path, branch=branch, update=sha is not None)
    return True
