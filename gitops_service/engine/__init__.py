"""GitOps orchestration engine.

Key Components:
    - TaskQueue: concurrency-capped, depth-bounded queue for outbound work
    - ensure_branch: idempotent branch creation
    - sync_file: conditional single-file write
    - ProjectBootstrapper: ``{project}-master`` / ``{project}-dev`` lineage
    - FeatureBranchPublisher: ``feat/*`` branches and their pull request

Example:
    >>> queue = TaskQueue(concurrency=5, max_depth=50)
    >>> publisher = FeatureBranchPublisher(client, ProjectBootstrapper(client, projects_dir, agents_dir))
    >>> result = await queue.enqueue(lambda: publisher.create_feat_branch(request))
"""

from gitops_service.engine.bootstrap import ProjectBootstrapper, validate_project_name
from gitops_service.engine.branching import ensure_branch
from gitops_service.engine.file_sync import sync_file
from gitops_service.engine.publisher import FeatureBranchPublisher, sanitize_feat_name
from gitops_service.engine.task_queue import QueueStats, TaskQueue

__all__ = [
    "FeatureBranchPublisher",
    "ProjectBootstrapper",
    "QueueStats",
    "TaskQueue",
    "ensure_branch",
    "sanitize_feat_name",
    "sync_file",
    "validate_project_name",
]
