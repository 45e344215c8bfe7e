"""
Project bootstrap: the isolated ``{project}-master`` / ``{project}-dev`` lineage.

``{project}-master`` starts as a root commit (no parent, no base tree) that
contains exactly the current automation file set, so project branches never
inherit the hosting repository's own history. Later calls converge the
branch to the current templates one conditional file write at a time, and
``{project}-dev`` is forked from it when missing.

Every step is idempotent: re-running ``ensure_project`` after a crash or a
template change is the recovery path, there is no transaction.
"""

from pathlib import Path

import structlog

from gitops_service.engine.branching import ensure_branch
from gitops_service.engine.file_sync import sync_file
from gitops_service.exceptions import ConfigurationError, GitHubAPIError, ValidationError
from gitops_service.models.domain import PROJECT_NAME_PATTERN, FileEntry, ProjectBranches
from gitops_service.providers.github_rest import GitHubRestClient

log = structlog.get_logger(__name__)

DEFAULT_PROJECT = "_default"
WORKFLOW_SUFFIXES = (".yml", ".yaml")
# (source file in agents_dir, path committed on the branch)
AGENT_FILES = (
    ("agent.py", ".github/scripts/review.py"),
    ("prompt.md", ".github/scripts/prompt.md"),
)


def validate_project_name(project: str | None) -> str:
    """Return ``project`` if it is a valid identifier.

    Raises:
        ValidationError: Empty or containing characters outside [A-Za-z0-9_-]
    """
    if not project or not PROJECT_NAME_PATTERN.match(project):
        raise ValidationError(
            f'Invalid project name: "{project}". Use only letters, numbers, hyphens, underscores.'
        )
    return project


class ProjectBootstrapper:
    """Creates and maintains the branch pair and automation files of a project."""

    def __init__(
        self,
        client: GitHubRestClient,
        projects_dir: Path,
        agents_dir: Path,
        root_commit_message: str = "chore(gitops): bootstrap {project}",
    ):
        """Initialize bootstrapper.

        Args:
            client: GitHub client
            projects_dir: Directory holding ``{project}/workflows`` and
                ``_default/workflows`` templates
            agents_dir: Directory holding the code-review agent sources
            root_commit_message: Message of the root commit, ``{project}``
                is substituted
        """
        self.client = client
        self.projects_dir = Path(projects_dir)
        self.agents_dir = Path(agents_dir)
        self.root_commit_message = root_commit_message

    def get_bootstrap_files(self, project: str) -> list[FileEntry]:
        """Build the automation file set for ``project``.

        Workflows come from the project's own template directory when it
        exists, otherwise from ``_default``; files are sorted by name so the
        set is deterministic. The code-review agent files follow.
        """
        workflows_dir = self.projects_dir / project / "workflows"
        if not workflows_dir.is_dir():
            workflows_dir = self.projects_dir / DEFAULT_PROJECT / "workflows"

        files: list[FileEntry] = []
        if workflows_dir.is_dir():
            for path in sorted(workflows_dir.iterdir()):
                if path.is_file() and path.suffix in WORKFLOW_SUFFIXES:
                    files.append(
                        FileEntry(path=f".github/workflows/{path.name}", content=path.read_text(encoding="utf-8"))
                    )

        for source_name, target_path in AGENT_FILES:
            source = self.agents_dir / source_name
            if source.is_file():
                files.append(FileEntry(path=target_path, content=source.read_text(encoding="utf-8")))

        return files

    async def ensure_project(self, project: str) -> ProjectBranches:
        """Guarantee the project's branch pair exists and carries current files.

        Args:
            project: Project identifier

        Returns:
            The master/dev branch names

        Raises:
            ValidationError: Invalid project name (no remote call is made)
            ConfigurationError: No automation files are configured
            GitHubAPIError: Unexpected API failure
        """
        validate_project_name(project)
        branches = ProjectBranches.for_project(project)
        log.info("ensure_project", project=project)

        files = self.get_bootstrap_files(project)
        if not files:
            raise ConfigurationError(f"No bootstrap files found under {self.projects_dir} or {self.agents_dir}")

        created = False
        if not await self._branch_exists(branches.master_branch):
            created = await self._create_root_branch(project, branches.master_branch, files)

        if not created:
            written = await self._upsert_files(project, branches.master_branch, files)
            log.info("bootstrap_files_synced", branch=branches.master_branch, written=written, total=len(files))

        await ensure_branch(self.client, branches.dev_branch, branches.master_branch)

        log.info("project_ready", project=project, master=branches.master_branch, dev=branches.dev_branch)
        return branches

    async def _branch_exists(self, branch: str) -> bool:
        try:
            await self.client.get_ref(branch)
            return True
        except GitHubAPIError as e:
            if e.is_not_found:
                return False
            raise

    async def _create_root_branch(self, project: str, branch: str, files: list[FileEntry]) -> bool:
        """Create ``branch`` as a parentless commit holding exactly ``files``.

        Returns:
            True if the branch was created, False if a concurrent caller
            created it first
        """
        entries = []
        for entry in files:
            blob_sha = await self.client.create_blob(entry.data)
            entries.append({"path": entry.path, "sha": blob_sha})

        tree_sha = await self.client.create_tree(entries)
        commit_sha = await self.client.create_commit(
            self.root_commit_message.format(project=project),
            tree=tree_sha,
            parents=[],
        )

        try:
            await self.client.create_ref(branch, commit_sha)
        except GitHubAPIError as e:
            if not e.is_conflict:
                raise
            log.info("root_branch_created_concurrently", branch=branch)
            return False

        log.info("root_branch_created", branch=branch, commit=commit_sha, files=len(files))
        return True

    async def _upsert_files(self, project: str, branch: str, files: list[FileEntry]) -> int:
        written = 0
        for entry in files:
            message = f"chore(gitops): bootstrap {entry.path} for project {project}"
            if await sync_file(self.client, entry, branch, message):
                written += 1
        return written
