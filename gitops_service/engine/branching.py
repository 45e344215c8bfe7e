"""Idempotent branch creation."""

import structlog

from gitops_service.exceptions import GitHubAPIError
from gitops_service.providers.github_rest import GitHubRestClient

log = structlog.get_logger(__name__)


async def ensure_branch(client: GitHubRestClient, branch: str, source_branch: str) -> bool:
    """Guarantee ``branch`` exists, forking it from ``source_branch`` if absent.

    Safe under concurrent callers: ref creation is compare-and-swap on the
    remote host, so exactly one creation succeeds and the others see a 422,
    which counts as success here.

    Args:
        client: GitHub client
        branch: Branch that must exist
        source_branch: Branch to fork from when missing

    Returns:
        True if this call created the branch, False if it already existed

    Raises:
        GitHubAPIError: Any failure other than 404-on-read / 422-on-create
    """
    try:
        await client.get_ref(branch)
        log.debug("branch_exists", branch=branch)
        return False
    except GitHubAPIError as e:
        if not e.is_not_found:
            raise

    sha = await client.get_branch_sha(source_branch)
    try:
        await client.create_ref(branch, sha)
    except GitHubAPIError as e:
        if not e.is_conflict:
            raise
        log.info("branch_created_concurrently", branch=branch, source=source_branch)
        return False

    log.info("branch_created", branch=branch, source=source_branch, sha=sha)
    return True
