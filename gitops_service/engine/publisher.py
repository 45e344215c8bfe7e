"""
Feature-branch publishing.

A publish takes a project and a resolved file list and leaves behind a
``feat/{feat_id}`` branch forked from ``{project}-dev`` holding those files,
plus exactly one open pull request from it into ``{project}-dev``.

Feature branch lifecycle::

    absent -> created -> files-pushed -> PR-open

Publishing again under the same feature name re-enters at files-pushed: the
422 on branch creation is absorbed, only changed files are written, and the
open pull request is reused. Merging and closing happen outside this
service.
"""

import re
import uuid

import structlog

from gitops_service.engine.bootstrap import ProjectBootstrapper
from gitops_service.engine.file_sync import sync_file
from gitops_service.exceptions import GitHubAPIError, GitOpsError, ValidationError
from gitops_service.models.domain import FeatureRequest, FeatureResult, FileEntry
from gitops_service.providers.github_rest import GitHubRestClient

log = structlog.get_logger(__name__)

BASE_LABEL = "automated"
MAX_FEAT_ID_LENGTH = 64


def sanitize_feat_name(name: str) -> str:
    """Turn a human-readable feature name into a branch path segment.

    Lowercases, turns whitespace into hyphens and strips everything outside
    ``[a-z0-9._-]``. Distinct names can collapse to the same segment
    ("Add Auth!" and "add-auth" both give ``add-auth``) and then share a
    branch and pull request.

    Returns:
        The sanitized segment, or an empty string if nothing survives
    """
    segment = re.sub(r"\s+", "-", name.strip().lower())
    segment = re.sub(r"[^a-z0-9._-]", "", segment)
    segment = re.sub(r"-{2,}", "-", segment)
    segment = re.sub(r"\.{2,}", ".", segment)
    return segment[:MAX_FEAT_ID_LENGTH].strip("-.")


def derive_feat_id(feat_name: str | None) -> str:
    """Sanitized feature name, or a fresh UUID4 when none is usable."""
    if feat_name:
        feat_id = sanitize_feat_name(feat_name)
        if feat_id:
            return feat_id
    return str(uuid.uuid4())


def build_pr_body(request: FeatureRequest, feat_id: str) -> str:
    parts = [request.description or "Automated push from external service"]
    if request.source:
        parts.append(f"**Source:** {request.source}")
    parts.append(f"**Project:** `{request.project}`")
    parts.append(f"**Feat ID:** `{feat_id}`")
    if request.source_dir:
        parts.append(f"**Directory:** `{request.source_dir}`")
    parts.append("**Files changed:** " + ", ".join(f"`{f.path}`" for f in request.files))
    return "\n\n".join(parts)


class FeatureBranchPublisher:
    """Creates/updates feature branches and reconciles their pull request."""

    def __init__(self, client: GitHubRestClient, bootstrapper: ProjectBootstrapper):
        self.client = client
        self.bootstrapper = bootstrapper

    async def create_feat_branch(self, request: FeatureRequest) -> FeatureResult:
        """Publish ``request.files`` to ``feat/{feat_id}`` and ensure one open PR.

        Args:
            request: Project, files and PR metadata

        Returns:
            Feature id, branch names and the pull request number/URL

        Raises:
            ValidationError: Missing project or empty file list
            GitHubAPIError: Unexpected API failure (label failures excepted)
        """
        if not request.project:
            raise ValidationError("project is required")
        if not request.files:
            raise ValidationError("No files provided")

        branches = await self.bootstrapper.ensure_project(request.project)
        dev_branch = branches.dev_branch

        feat_id = derive_feat_id(request.feat_name)
        branch = f"feat/{feat_id}"
        log.info("publish_started", project=request.project, branch=branch, files=len(request.files))

        await self._create_or_reuse_branch(branch, dev_branch)
        written = await self._push_files(branch, feat_id, request.files)

        pr, pr_created = await self._reconcile_pull(request, feat_id, branch, dev_branch)

        return FeatureResult(
            feat_id=feat_id,
            branch=branch,
            project=request.project,
            dev_branch=dev_branch,
            pr_number=pr["number"],
            pr_url=pr["html_url"],
            pr_created=pr_created,
            files_written=written,
        )

    async def _create_or_reuse_branch(self, branch: str, dev_branch: str) -> None:
        sha = await self.client.get_branch_sha(dev_branch)
        try:
            await self.client.create_ref(branch, sha)
            log.info("feature_branch_created", branch=branch, source=dev_branch, sha=sha)
        except GitHubAPIError as e:
            if not e.is_conflict:
                raise
            log.info("feature_branch_reused", branch=branch)

    async def _push_files(self, branch: str, feat_id: str, files: list[FileEntry]) -> int:
        # One write at a time: each write needs the current SHA of its path
        # on this branch, and ordering keeps the commit history predictable.
        written = 0
        for entry in files:
            message = f"feat({feat_id[:8]}): add {entry.path}"
            if await sync_file(self.client, entry, branch, message):
                written += 1
        return written

    async def _reconcile_pull(
        self, request: FeatureRequest, feat_id: str, branch: str, dev_branch: str
    ) -> tuple[dict, bool]:
        """Return the open PR for ``branch`` and whether this call created it.

        A concurrent publish of the same feature can create the PR between
        the lookup and the create; GitHub then answers 422 and the PR it
        created is adopted instead.
        """
        pr = await self._find_open_pull(branch, dev_branch)
        if pr is not None:
            log.info("pull_request_reused", pr=pr["number"], branch=branch, base=dev_branch)
            return pr, False

        try:
            pr = await self.client.create_pull(
                title=request.description or f"feat: automated push {feat_id[:8]}",
                head=branch,
                base=dev_branch,
                body=build_pr_body(request, feat_id),
            )
        except GitHubAPIError as e:
            if not e.is_conflict:
                raise
            pr = await self._find_open_pull(branch, dev_branch)
            if pr is None:
                raise
            log.info("pull_request_created_concurrently", pr=pr["number"], branch=branch, base=dev_branch)
            return pr, False

        log.info("pull_request_created", pr=pr["number"], branch=branch, base=dev_branch)
        await self._add_labels(pr["number"], [BASE_LABEL, request.project, *request.labels])
        return pr, True

    async def _find_open_pull(self, branch: str, dev_branch: str) -> dict | None:
        pulls = await self.client.list_pulls(head=branch, base=dev_branch, state="open")
        for pr in pulls:
            if pr.get("head", {}).get("ref", branch) == branch:
                return pr
        return None

    async def _add_labels(self, pr_number: int, labels: list[str]) -> None:
        unique = list(dict.fromkeys(label for label in labels if label))
        try:
            await self.client.add_labels(pr_number, unique)
        except GitOpsError as e:
            log.warning("label_error", pr=pr_number, labels=unique, error=e.message)
