"""Configuration for gitops-service.

Example:
    >>> from gitops_service.config import ServiceSettings
    >>> settings = ServiceSettings.from_yaml("gitops.yaml")
    >>> settings.queue.concurrency
    5
"""

from gitops_service.config.settings import (
    BootstrapConfig,
    GitHubConfig,
    QueueConfig,
    ServerConfig,
    ServiceSettings,
)

__all__ = [
    "BootstrapConfig",
    "GitHubConfig",
    "QueueConfig",
    "ServerConfig",
    "ServiceSettings",
]
