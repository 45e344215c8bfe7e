"""Pytest configuration and shared fixtures.

``FakeGitHub`` is an in-memory stand-in for the GitHub REST endpoints the
service uses (refs, git database, contents, pulls, labels). It is served
through ``httpx.MockTransport`` so the real ``GitHubRestClient`` runs in
every engine test, and it records each request so tests can count writes.
"""

import asyncio
import base64
import hashlib
import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from gitops_service.config.settings import ServiceSettings
from gitops_service.engine.bootstrap import ProjectBootstrapper
from gitops_service.engine.publisher import FeatureBranchPublisher
from gitops_service.providers.github_rest import GitHubRestClient


def _sha(*parts: Any) -> str:
    return hashlib.sha1(json.dumps(parts, sort_keys=True, default=str).encode()).hexdigest()


class FakeGitHub:
    """In-memory GitHub repository speaking the REST API over MockTransport."""

    def __init__(self, owner: str = "acme", repo: str = "mono"):
        self.owner = owner
        self.repo = repo
        self.prefix = f"/repos/{owner}/{repo}"
        self.blobs: dict[str, bytes] = {}
        self.trees: dict[str, dict[str, str]] = {}
        self.commits: dict[str, dict[str, Any]] = {}
        self.refs: dict[str, str] = {}
        self.pulls: list[dict[str, Any]] = []
        self.labels: dict[int, list[str]] = {}
        self.requests: list[tuple[str, str]] = []
        # (method, path suffix) -> status code returned instead of handling
        self.errors: dict[tuple[str, str], int] = {}
        self._counter = 0

        root_tree = self._store_tree({"README.md": self._store_blob(b"# mono\n")})
        self.refs["main"] = self._store_commit("initial", root_tree, [])

    # Helpers for tests

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, method: str, fragment: str) -> int:
        return sum(1 for m, p in self.requests if m == method and fragment in p)

    def tree_of(self, branch: str) -> dict[str, str]:
        return self.trees[self.commits[self.refs[branch]]["tree"]]

    def file_at(self, branch: str, path: str) -> bytes | None:
        blob = self.tree_of(branch).get(path)
        return self.blobs[blob] if blob else None

    def parents_of(self, branch: str) -> list[str]:
        return self.commits[self.refs[branch]]["parents"]

    def open_pulls(self, head: str | None = None) -> list[dict[str, Any]]:
        return [p for p in self.pulls if p["state"] == "open" and (head is None or p["head"]["ref"] == head)]

    def put_file(self, branch: str, path: str, data: bytes) -> None:
        """Commit a file directly, as another actor would."""
        tree = dict(self.tree_of(branch))
        tree[path] = self._store_blob(data)
        self.refs[branch] = self._store_commit(f"external {path}", self._store_tree(tree), [self.refs[branch]])

    # Storage

    def _store_blob(self, data: bytes) -> str:
        sha = hashlib.sha1(b"blob %d\0" % len(data) + data).hexdigest()
        self.blobs[sha] = data
        return sha

    def _store_tree(self, entries: dict[str, str]) -> str:
        sha = _sha("tree", sorted(entries.items()))
        self.trees[sha] = dict(entries)
        return sha

    def _store_commit(self, message: str, tree: str, parents: list[str]) -> str:
        self._counter += 1
        sha = _sha("commit", message, tree, parents, self._counter)
        self.commits[sha] = {"message": message, "tree": tree, "parents": list(parents)}
        return sha

    # Transport

    @staticmethod
    def _json(status: int, payload: Any) -> httpx.Response:
        return httpx.Response(status, json=payload)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        # Yield so concurrent callers interleave at every request, as they
        # would against the real API.
        await asyncio.sleep(0)

        method = request.method
        path = request.url.path
        self.requests.append((method, path))

        for (err_method, suffix), status in self.errors.items():
            if err_method == method and path.endswith(suffix):
                return self._json(status, {"message": "injected failure"})

        if not path.startswith(self.prefix):
            return self._json(404, {"message": "Not Found"})
        route = path[len(self.prefix) :]
        body = json.loads(request.content) if request.content else {}
        params = request.url.params

        if method == "GET" and route.startswith("/git/ref/heads/"):
            return self._get_ref(route[len("/git/ref/heads/") :])
        if method == "POST" and route == "/git/refs":
            return self._create_ref(body)
        if method == "POST" and route == "/git/blobs":
            return self._json(201, {"sha": self._store_blob(base64.b64decode(body["content"]))})
        if method == "POST" and route == "/git/trees":
            return self._create_tree(body)
        if method == "POST" and route == "/git/commits":
            return self._create_commit(body)
        if route.startswith("/contents/"):
            file_path = route[len("/contents/") :]
            if method == "GET":
                return self._get_contents(file_path, params.get("ref", "main"))
            if method == "PUT":
                return self._put_contents(file_path, body)
        if route == "/pulls":
            if method == "GET":
                return self._list_pulls(params)
            if method == "POST":
                return self._create_pull(body)
        if method == "POST" and route.startswith("/issues/") and route.endswith("/labels"):
            number = int(route.split("/")[2])
            self.labels.setdefault(number, []).extend(body["labels"])
            return self._json(200, [{"name": name} for name in self.labels[number]])

        return self._json(404, {"message": "Not Found"})

    def _get_ref(self, branch: str) -> httpx.Response:
        if branch not in self.refs:
            return self._json(404, {"message": "Not Found"})
        return self._json(200, {"ref": f"refs/heads/{branch}", "object": {"sha": self.refs[branch], "type": "commit"}})

    def _create_ref(self, body: dict[str, Any]) -> httpx.Response:
        branch = body["ref"].removeprefix("refs/heads/")
        if branch in self.refs:
            return self._json(422, {"message": "Reference already exists"})
        if body["sha"] not in self.commits:
            return self._json(422, {"message": "Object does not exist"})
        self.refs[branch] = body["sha"]
        return self._json(201, {"ref": body["ref"], "object": {"sha": body["sha"], "type": "commit"}})

    def _create_tree(self, body: dict[str, Any]) -> httpx.Response:
        entries = dict(self.trees[body["base_tree"]]) if body.get("base_tree") else {}
        for entry in body["tree"]:
            entries[entry["path"]] = entry["sha"]
        return self._json(201, {"sha": self._store_tree(entries)})

    def _create_commit(self, body: dict[str, Any]) -> httpx.Response:
        if body["tree"] not in self.trees:
            return self._json(422, {"message": "Tree does not exist"})
        return self._json(201, {"sha": self._store_commit(body["message"], body["tree"], body.get("parents", []))})

    def _get_contents(self, file_path: str, ref: str) -> httpx.Response:
        if ref not in self.refs:
            return self._json(404, {"message": "No commit found for the ref"})
        blob = self.tree_of(ref).get(file_path)
        if blob is None:
            return self._json(404, {"message": "Not Found"})
        return self._json(
            200,
            {
                "type": "file",
                "path": file_path,
                "sha": blob,
                "encoding": "base64",
                "content": base64.encodebytes(self.blobs[blob]).decode("ascii"),
            },
        )

    def _put_contents(self, file_path: str, body: dict[str, Any]) -> httpx.Response:
        branch = body["branch"]
        if branch not in self.refs:
            return self._json(404, {"message": "Branch not found"})
        tree = dict(self.tree_of(branch))
        current = tree.get(file_path)
        if current is not None and body.get("sha") is None:
            return self._json(422, {"message": '"sha" wasn\'t supplied.'})
        if current is not None and body["sha"] != current:
            return self._json(409, {"message": f"{file_path} does not match {body['sha']}"})
        tree[file_path] = self._store_blob(base64.b64decode(body["content"]))
        commit = self._store_commit(body["message"], self._store_tree(tree), [self.refs[branch]])
        self.refs[branch] = commit
        return self._json(201 if current is None else 200, {"content": {"sha": tree[file_path]}, "commit": {"sha": commit}})

    def _list_pulls(self, params: httpx.QueryParams) -> httpx.Response:
        pulls = [p for p in self.pulls if params.get("state", "open") in ("all", p["state"])]
        if "head" in params:
            owner, _, head = params["head"].partition(":")
            pulls = [p for p in pulls if owner == self.owner and p["head"]["ref"] == head]
        if "base" in params:
            pulls = [p for p in pulls if p["base"]["ref"] == params["base"]]
        return self._json(200, pulls)

    def _create_pull(self, body: dict[str, Any]) -> httpx.Response:
        if body["head"] not in self.refs or body["base"] not in self.refs:
            return self._json(422, {"message": "Validation Failed"})
        if any(p["head"]["ref"] == body["head"] and p["base"]["ref"] == body["base"] for p in self.open_pulls()):
            return self._json(422, {"message": "A pull request already exists"})
        number = len(self.pulls) + 1
        pr = {
            "number": number,
            "state": "open",
            "title": body["title"],
            "body": body["body"],
            "head": {"ref": body["head"]},
            "base": {"ref": body["base"]},
            "html_url": f"https://github.com/{self.owner}/{self.repo}/pull/{number}",
        }
        self.pulls.append(pr)
        return self._json(201, pr)


@pytest.fixture
def fake_github() -> FakeGitHub:
    """Fresh in-memory repository with a ``main`` branch."""
    return FakeGitHub()


@pytest.fixture
def github_client(fake_github: FakeGitHub) -> GitHubRestClient:
    """Real client wired to the fake repository."""
    return GitHubRestClient(
        token="ghp_test_token",
        owner=fake_github.owner,
        repo=fake_github.repo,
        transport=fake_github.transport(),
    )


@pytest.fixture
def projects_dir(tmp_path: Path) -> Path:
    """Workflow templates: a default set plus a project-specific override."""
    default = tmp_path / "projects" / "_default" / "workflows"
    default.mkdir(parents=True)
    (default / "code-review.yml").write_text("name: code-review\n")
    (default / "auto-merge.yml").write_text("name: auto-merge\n")
    (default / "notes.txt").write_text("not a workflow\n")

    custom = tmp_path / "projects" / "proj-custom" / "workflows"
    custom.mkdir(parents=True)
    (custom / "deploy.yaml").write_text("name: deploy\n")
    return tmp_path / "projects"


@pytest.fixture
def agents_dir(tmp_path: Path) -> Path:
    """Code-review agent sources."""
    agents = tmp_path / "agents"
    agents.mkdir()
    (agents / "agent.py").write_text("print('review')\n")
    (agents / "prompt.md").write_text("Review this diff.\n")
    return agents


@pytest.fixture
def bootstrapper(github_client: GitHubRestClient, projects_dir: Path, agents_dir: Path) -> ProjectBootstrapper:
    return ProjectBootstrapper(github_client, projects_dir=projects_dir, agents_dir=agents_dir)


@pytest.fixture
def publisher(github_client: GitHubRestClient, bootstrapper: ProjectBootstrapper) -> FeatureBranchPublisher:
    return FeatureBranchPublisher(github_client, bootstrapper)


@pytest.fixture
def incoming_dir(tmp_path: Path) -> Path:
    incoming = tmp_path / "incoming"
    incoming.mkdir()
    return incoming


@pytest.fixture
def settings(incoming_dir: Path, projects_dir: Path, agents_dir: Path) -> ServiceSettings:
    """Settings pointing at the temp template dirs and incoming root."""
    return ServiceSettings(
        github={"token": "ghp_test_token", "owner": "acme", "repo": "mono"},
        queue={"concurrency": 2, "max_depth": 5},
        server={"api_key": "secret-key", "incoming_dir": str(incoming_dir)},
        bootstrap={"projects_dir": str(projects_dir), "agents_dir": str(agents_dir)},
    )
