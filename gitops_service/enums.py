"""Enumerations shared across gitops-service."""

from enum import Enum


class ErrorKind(str, Enum):
    """Category of a failure, used to decide how a caller should react.

    - validation: bad input, fix the request before retrying
    - backpressure: queue is full, retry after a delay
    - conflict: the remote host rejected a create/update as a duplicate
      or stale write
    - upstream: the hosting API (or LLM API) failed or timed out
    - configuration: the service itself is misconfigured
    """

    VALIDATION = "validation"
    BACKPRESSURE = "backpressure"
    CONFLICT = "conflict"
    UPSTREAM = "upstream"
    CONFIGURATION = "configuration"

    def __str__(self) -> str:
        return self.value
