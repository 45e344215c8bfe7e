"""HTTP surface of gitops-service.

Routes:
    GET  /ping                          queue stats, unauthenticated
    POST /push                          queue a publish, answer 202 at once
    POST /push/sync                     queue a publish and wait for the PR
    POST /projects/{project}/bootstrap  create/refresh a project's branches

Everything except /ping requires the ``x-api-key`` header. Errors raised
by the engine carry their own HTTP status; one exception handler turns
them into ``{"error": ..., "kind": ...}`` responses.
"""

import asyncio
import secrets
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from gitops_service.config.settings import ServiceSettings
from gitops_service.engine.bootstrap import ProjectBootstrapper, validate_project_name
from gitops_service.engine.publisher import FeatureBranchPublisher
from gitops_service.engine.task_queue import TaskQueue
from gitops_service.enums import ErrorKind
from gitops_service.exceptions import GitOpsError, QueueFullError, ValidationError
from gitops_service.models.domain import FeatureRequest, FeatureResult
from gitops_service.providers.github_rest import GitHubRestClient
from gitops_service.utils.files import excluding, read_dir_files, validate_dir
from gitops_service.utils.logging_config import bind_request_context

log = structlog.get_logger(__name__)

router = APIRouter()


class PushRequest(BaseModel):
    """Body of POST /push and POST /push/sync."""

    project: str = Field(..., min_length=1, description="Project identifier")
    dir: str = Field(..., min_length=1, description="Directory (inside the incoming root) to publish")
    description: str | None = Field(default=None, description="PR title / description")
    feat_name: str | None = Field(default=None, description="Feature name; reused names update the same PR")
    labels: list[str] = Field(default_factory=list, description="Extra PR labels")
    source: str | None = Field(default=None, description="Identifier of the calling service")


def require_api_key(request: Request, x_api_key: str | None = Header(default=None)) -> None:
    """Reject requests without the configured shared secret."""
    api_key = request.app.state.settings.server.api_key
    if api_key is None:
        log.warning("api_key_not_configured")
        raise HTTPException(status_code=500, detail="Server misconfigured: API key not set")
    if x_api_key is None or not secrets.compare_digest(
        x_api_key.encode("utf-8"), api_key.get_secret_value().encode("utf-8")
    ):
        raise HTTPException(status_code=401, detail="Unauthorized")


def _publish_job(app: FastAPI, body: PushRequest, directory: Path) -> Callable[[], Awaitable[FeatureResult]]:
    settings: ServiceSettings = app.state.settings

    async def job() -> FeatureResult:
        files = await asyncio.to_thread(read_dir_files, directory, excluding(settings.server.exclude))
        request = FeatureRequest(
            project=body.project,
            files=files,
            feat_name=body.feat_name,
            description=body.description,
            labels=body.labels,
            source=body.source,
            source_dir=str(directory),
        )
        return await app.state.publisher.create_feat_branch(request)

    return job


def _validate_push(app: FastAPI, body: PushRequest) -> Path:
    validate_project_name(body.project)
    directory = validate_dir(body.dir, app.state.settings.server.incoming_dir)
    if not directory.is_dir():
        raise ValidationError(f"Directory not found: {directory}")
    return directory


def _log_background_result(future: "asyncio.Future[FeatureResult]") -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        log.error("push_failed", error=str(exc), kind=str(getattr(exc, "kind", ErrorKind.UPSTREAM)))
        return
    result = future.result()
    log.info("push_completed", pr=result.pr_number, url=result.pr_url, branch=result.branch)


@router.get("/ping")
async def ping(request: Request) -> dict:
    """Health check with queue stats."""
    return {"ok": True, "queue": request.app.state.queue.stats().to_dict()}


@router.post("/push", status_code=202, dependencies=[Depends(require_api_key)])
async def push(body: PushRequest, request: Request) -> dict:
    """Queue a publish; the caller only learns about rejection (503)."""
    directory = _validate_push(request.app, body)
    future = request.app.state.queue.submit(_publish_job(request.app, body, directory))
    future.add_done_callback(_log_background_result)
    log.info("push_queued", project=body.project, dir=str(directory), feat_name=body.feat_name)
    return {"ok": True, "message": "Push queued"}


@router.post("/push/sync", dependencies=[Depends(require_api_key)])
async def push_sync(body: PushRequest, request: Request) -> dict:
    """Queue a publish and return the feature branch and PR once done."""
    directory = _validate_push(request.app, body)
    result = await request.app.state.queue.enqueue(_publish_job(request.app, body, directory))
    log.info("push_completed", pr=result.pr_number, url=result.pr_url, branch=result.branch)
    return result.to_dict()


@router.post("/projects/{project}/bootstrap", dependencies=[Depends(require_api_key)])
async def bootstrap_project(project: str, request: Request) -> dict:
    """Create or refresh ``{project}-master`` and ``{project}-dev``."""
    validate_project_name(project)
    bootstrapper: ProjectBootstrapper = request.app.state.bootstrapper
    branches = await request.app.state.queue.enqueue(lambda: bootstrapper.ensure_project(project))
    return branches.to_dict()


async def handle_gitops_error(request: Request, exc: GitOpsError) -> JSONResponse:
    headers = {}
    if isinstance(exc, QueueFullError):
        headers["Retry-After"] = str(exc.retry_after)
    if exc.status_code >= 500:
        log.error("request_failed", error=exc.message, kind=str(exc.kind), status=exc.status_code)
    else:
        log.warning("request_rejected", error=exc.message, kind=str(exc.kind), status=exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "kind": str(exc.kind)},
        headers=headers,
    )


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'][1:]) or 'body'}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": details, "kind": str(ErrorKind.VALIDATION)})


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    log.error("unhandled_error", error=str(exc), exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


async def log_requests(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    """Bind a request id to the log context and log request/response pairs."""
    request_id = bind_request_context(request.headers.get("x-request-id"))

    started = time.perf_counter()
    log.info(
        "request",
        method=request.method,
        path=request.url.path,
        client=request.client.host if request.client else None,
    )
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    log.info("response", status=response.status_code, ms=round((time.perf_counter() - started) * 1000))
    return response


def create_app(
    settings: ServiceSettings,
    client: GitHubRestClient | None = None,
    queue: TaskQueue | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Service settings
        client: GitHub client to use; created from settings (and closed on
            shutdown) when omitted
        queue: Task queue to use; created from settings when omitted

    Returns:
        Configured application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        gh = client or GitHubRestClient(
            token=settings.github.token.get_secret_value(),
            owner=settings.github.owner,
            repo=settings.github.repo,
            api_url=settings.github.api_url,
            timeout=settings.github.timeout,
        )
        bootstrapper = ProjectBootstrapper(
            gh,
            projects_dir=settings.bootstrap.projects_dir,
            agents_dir=settings.bootstrap.agents_dir,
            root_commit_message=settings.bootstrap.root_commit_message,
        )
        app.state.client = gh
        app.state.bootstrapper = bootstrapper
        app.state.publisher = FeatureBranchPublisher(gh, bootstrapper)
        log.info(
            "server_started",
            owner=settings.github.owner,
            repo=settings.github.repo,
            concurrency=app.state.queue.concurrency,
            max_depth=app.state.queue.max_depth,
        )
        try:
            yield
        finally:
            if client is None:
                await gh.aclose()
            log.info("server_stopped")

    app = FastAPI(title="gitops-service", lifespan=lifespan)
    app.state.settings = settings
    app.state.queue = queue or TaskQueue(
        concurrency=settings.queue.concurrency,
        max_depth=settings.queue.max_depth,
        retry_after=settings.queue.retry_after,
    )
    app.middleware("http")(log_requests)
    app.add_exception_handler(GitOpsError, handle_gitops_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(Exception, handle_unexpected)
    app.include_router(router)
    return app
