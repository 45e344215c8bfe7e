"""CLI entry point for gitops-service."""

import asyncio
import json
import sys
from pathlib import Path

import click
import structlog

from gitops_service.config.settings import ServiceSettings
from gitops_service.engine.bootstrap import ProjectBootstrapper
from gitops_service.engine.publisher import FeatureBranchPublisher
from gitops_service.exceptions import ConfigurationError, GitOpsError
from gitops_service.models.domain import FeatureRequest, FeatureResult, ProjectBranches
from gitops_service.providers.github_rest import GitHubRestClient
from gitops_service.utils.files import excluding, read_dir_files
from gitops_service.utils.logging_config import configure_logging

log = structlog.get_logger(__name__)


@click.group()
@click.option(
    "--config",
    default=None,
    help="Path to YAML configuration file (default: GITOPS_* environment variables)",
)
@click.option("--log-level", default=None, help="Logging level (overrides configuration)")
@click.pass_context
def cli(ctx: click.Context, config: str | None, log_level: str | None) -> None:
    """gitops-service: publish pushed files as pull requests."""
    try:
        settings = ServiceSettings.from_yaml(config) if config else ServiceSettings.from_env()
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    configure_logging(log_level or settings.log_level)
    ctx.obj = {"settings": settings}


@cli.command()
@click.option("--host", default=None, help="Bind address (overrides configuration)")
@click.option("--port", type=int, default=None, help="Bind port (overrides configuration)")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the HTTP server."""
    import uvicorn

    from gitops_service.server import create_app

    settings: ServiceSettings = ctx.obj["settings"]
    uvicorn.run(
        create_app(settings),
        host=host or settings.server.host,
        port=port or settings.server.port,
        log_config=None,
    )


@cli.command()
@click.argument("project")
@click.pass_context
def bootstrap(ctx: click.Context, project: str) -> None:
    """Create or refresh PROJECT-master and PROJECT-dev."""
    settings = ctx.obj["settings"]
    branches = _run(_bootstrap(settings, project), "bootstrap")
    click.echo(json.dumps(branches.to_dict(), indent=2))


@cli.command()
@click.argument("project")
@click.argument("directory", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--feat-name", default=None, help="Feature name (same name updates the same PR)")
@click.option("--description", default=None, help="PR title / description")
@click.option("--label", "labels", multiple=True, help="Extra PR label (repeatable)")
@click.option("--source", default=None, help="Identifier of the calling service")
@click.pass_context
def push(
    ctx: click.Context,
    project: str,
    directory: Path,
    feat_name: str | None,
    description: str | None,
    labels: tuple[str, ...],
    source: str | None,
) -> None:
    """Publish the files in DIRECTORY to a feature branch of PROJECT."""
    settings = ctx.obj["settings"]
    try:
        files = read_dir_files(directory, excluding(settings.server.exclude))
    except GitOpsError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    request = FeatureRequest(
        project=project,
        files=files,
        feat_name=feat_name,
        description=description,
        labels=list(labels),
        source=source,
        source_dir=str(directory.resolve()),
    )
    result = _run(_publish(settings, request), "push")
    click.echo(json.dumps(result.to_dict(), indent=2))


def _run(coro, command: str):
    try:
        return asyncio.run(coro)
    except GitOpsError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug(f"{command}_error", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)


def _client(settings: ServiceSettings) -> GitHubRestClient:
    return GitHubRestClient(
        token=settings.github.token.get_secret_value(),
        owner=settings.github.owner,
        repo=settings.github.repo,
        api_url=settings.github.api_url,
        timeout=settings.github.timeout,
    )


def _bootstrapper(client: GitHubRestClient, settings: ServiceSettings) -> ProjectBootstrapper:
    return ProjectBootstrapper(
        client,
        projects_dir=settings.bootstrap.projects_dir,
        agents_dir=settings.bootstrap.agents_dir,
        root_commit_message=settings.bootstrap.root_commit_message,
    )


async def _bootstrap(settings: ServiceSettings, project: str) -> ProjectBranches:
    async with _client(settings) as client:
        return await _bootstrapper(client, settings).ensure_project(project)


async def _publish(settings: ServiceSettings, request: FeatureRequest) -> FeatureResult:
    async with _client(settings) as client:
        publisher = FeatureBranchPublisher(client, _bootstrapper(client, settings))
        return await publisher.create_feat_branch(request)


if __name__ == "__main__":
    cli()
