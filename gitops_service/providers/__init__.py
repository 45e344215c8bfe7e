"""Remote hosting API clients.

Example:
    >>> from gitops_service.providers import GitHubRestClient
    >>> async with GitHubRestClient(token="...", owner="acme", repo="mono") as gh:
    ...     sha = await gh.get_branch_sha("proj-a-dev")
"""

from gitops_service.providers.github_rest import GitHubRestClient

__all__ = ["GitHubRestClient"]
