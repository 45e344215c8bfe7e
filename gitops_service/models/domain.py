"""
Domain models for gitops-service.

These are the plain data classes the engine passes around: files to push,
the branch pair owned by a project, a publish request and its result.
Remote state (refs, trees, pull requests) is never cached in them beyond
a single request.

Example:
    Building a publish request::

        request = FeatureRequest(
            project="proj-a",
            files=[FileEntry(path="src/app.py", content="print('hi')\\n")],
            feat_name="add-auth",
            labels=["backend"],
        )
"""

import re
from dataclasses import dataclass, field
from typing import Any

PROJECT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class FileEntry:
    """A file to commit, addressed by its repository-relative POSIX path."""

    path: str
    content: str

    @property
    def data(self) -> bytes:
        return self.content.encode("utf-8")


@dataclass(frozen=True)
class ProjectBranches:
    """The isolated branch lineage of a project."""

    master_branch: str
    dev_branch: str

    @classmethod
    def for_project(cls, project: str) -> "ProjectBranches":
        return cls(master_branch=f"{project}-master", dev_branch=f"{project}-dev")

    def to_dict(self) -> dict[str, str]:
        return {"master_branch": self.master_branch, "dev_branch": self.dev_branch}


@dataclass
class FeatureRequest:
    """Inputs of a feature-branch publish.

    Attributes:
        project: Project identifier
        files: Already-resolved files to push
        feat_name: Optional human-readable feature name; sanitized into the
            branch name. Without it a random identifier is generated.
        description: PR title / description
        labels: Extra labels beyond ``automated`` and the project name
        source: Identifier of the calling service
        source_dir: Directory the files were read from (PR body only)
    """

    project: str
    files: list[FileEntry]
    feat_name: str | None = None
    description: str | None = None
    labels: list[str] = field(default_factory=list)
    source: str | None = None
    source_dir: str | None = None


@dataclass(frozen=True)
class FeatureResult:
    """Outcome of a publish: the feature branch and its pull request."""

    feat_id: str
    branch: str
    project: str
    dev_branch: str
    pr_number: int
    pr_url: str
    pr_created: bool = True
    files_written: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "feat_id": self.feat_id,
            "branch": self.branch,
            "project": self.project,
            "dev_branch": self.dev_branch,
            "pr_number": self.pr_number,
            "pr_url": self.pr_url,
        }
