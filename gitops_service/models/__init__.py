"""Domain models for gitops-service."""

from gitops_service.models.domain import (
    PROJECT_NAME_PATTERN,
    FeatureRequest,
    FeatureResult,
    FileEntry,
    ProjectBranches,
)

__all__ = [
    "PROJECT_NAME_PATTERN",
    "FeatureRequest",
    "FeatureResult",
    "FileEntry",
    "ProjectBranches",
]
