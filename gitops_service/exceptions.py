"""Exception hierarchy for gitops-service.

Every error raised by the service carries an ``ErrorKind`` and the HTTP
status code the API layer should answer with, so callers branch on
``exc.kind`` instead of inspecting ad-hoc attributes.

Exception Hierarchy:
    GitOpsError (base)
    ├── ConfigurationError
    ├── ValidationError
    ├── QueueFullError
    └── UpstreamError
        ├── UpstreamTimeoutError
        └── GitHubAPIError

Example Usage:
    >>> from gitops_service.exceptions import GitHubAPIError
    >>> try:
    ...     await client.get_ref("proj-a-master")
    ... except GitHubAPIError as e:
    ...     if not e.is_not_found:
    ...         raise
"""

from gitops_service.enums import ErrorKind


class GitOpsError(Exception):
    """Base exception for all gitops-service errors.

    Attributes:
        message: Human-readable error description
        kind: Failure category
        status_code: HTTP status the API layer maps this error to
    """

    kind: ErrorKind = ErrorKind.UPSTREAM
    status_code: int = 500

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(GitOpsError):
    """Configuration file missing, unreadable or invalid."""

    kind = ErrorKind.CONFIGURATION
    status_code = 500


class ValidationError(GitOpsError):
    """Caller input is invalid.

    Raised before any remote call is made, e.g. for a bad project name,
    an empty file list or a directory outside the incoming area.
    """

    kind = ErrorKind.VALIDATION
    status_code = 400


class QueueFullError(GitOpsError):
    """The task queue backlog is at its maximum depth.

    Attributes:
        max_depth: Configured backlog limit
        retry_after: Suggested delay in seconds before retrying
    """

    kind = ErrorKind.BACKPRESSURE
    status_code = 503

    def __init__(self, max_depth: int, retry_after: int = 5) -> None:
        self.max_depth = max_depth
        self.retry_after = retry_after
        super().__init__(f"Queue full (depth={max_depth}). Retry later.")


class UpstreamError(GitOpsError):
    """Communication with an external service failed."""

    kind = ErrorKind.UPSTREAM
    status_code = 502


class UpstreamTimeoutError(UpstreamError):
    """An outbound call exceeded its configured timeout.

    Attributes:
        timeout_seconds: The timeout that was exceeded
    """

    status_code = 504

    def __init__(self, message: str, timeout_seconds: float | None = None) -> None:
        self.timeout_seconds = timeout_seconds
        if timeout_seconds and "timeout" not in message.lower():
            message = f"{message} (timeout: {timeout_seconds}s)"
        super().__init__(message)


class GitHubAPIError(UpstreamError):
    """The GitHub REST API answered with a non-success status.

    409 and 422 are classified as conflicts: the host refused a create or
    a conditional update because the target already exists or changed.

    Attributes:
        http_status: Status code returned by GitHub
        response_text: Raw response body
    """

    def __init__(self, http_status: int, response_text: str = "") -> None:
        self.http_status = http_status
        self.response_text = response_text
        if http_status in (409, 422):
            self.kind = ErrorKind.CONFLICT
            self.status_code = 409
        super().__init__(f"GitHub API {http_status}: {response_text}")

    @property
    def is_not_found(self) -> bool:
        return self.http_status == 404

    @property
    def is_conflict(self) -> bool:
        """True for 422 (already exists / unprocessable)."""
        return self.http_status == 422

    @property
    def is_stale_write(self) -> bool:
        """True for 409 (conditional write lost against a concurrent change)."""
        return self.http_status == 409
