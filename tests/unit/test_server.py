"""Tests for gitops_service/server.py - HTTP surface."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from gitops_service.engine.task_queue import QueueStats, TaskQueue
from gitops_service.exceptions import QueueFullError
from gitops_service.server import create_app

AUTH = {"x-api-key": "secret-key"}


@pytest.fixture
def job_dir(incoming_dir):
    """A pushed directory with two files and an excluded one."""
    job = incoming_dir / "job-1"
    (job / "src").mkdir(parents=True)
    (job / "src" / "auth.py").write_text("def login(): ...\n")
    (job / "README.md").write_text("# auth\n")
    (job / "node_modules").mkdir()
    (job / "node_modules" / "dep.js").write_text("junk\n")
    return job


@pytest.fixture
def app(settings, github_client):
    return create_app(settings, client=github_client)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def mock_queue():
    queue = MagicMock(spec=TaskQueue)
    queue.concurrency = 2
    queue.max_depth = 5
    queue.stats.return_value = QueueStats(active=2, queued=5, concurrency=2)
    return queue


class TestPing:
    def test_ping_reports_queue(self, client):
        """Health check needs no key and reports the idle queue."""
        response = client.get("/ping")

        assert response.status_code == 200
        assert response.json() == {"ok": True, "queue": {"active": 0, "queued": 0, "concurrency": 2}}

    def test_request_id_echoed(self, client):
        response = client.get("/ping", headers={"x-request-id": "req-123"})
        assert response.headers["x-request-id"] == "req-123"

    def test_request_id_generated(self, client):
        assert client.get("/ping").headers["x-request-id"]


class TestAuth:
    def test_missing_key(self, client, job_dir):
        response = client.post("/push", json={"project": "proj-a", "dir": str(job_dir)})

        assert response.status_code == 401
        assert response.json() == {"detail": "Unauthorized"}

    def test_wrong_key(self, client, job_dir):
        response = client.post(
            "/push", json={"project": "proj-a", "dir": str(job_dir)}, headers={"x-api-key": "nope"}
        )
        assert response.status_code == 401

    def test_non_ascii_key_is_unauthorized(self, client, job_dir):
        """A key with non-ASCII characters is a plain mismatch, not a server error."""
        response = client.post(
            "/push", json={"project": "proj-a", "dir": str(job_dir)}, headers={"x-api-key": "café"}
        )

        assert response.status_code == 401
        assert response.json() == {"detail": "Unauthorized"}

    def test_key_not_configured(self, settings, github_client, job_dir):
        """Without a configured key every protected route fails closed."""
        settings.server.api_key = None
        with TestClient(create_app(settings, client=github_client)) as client:
            response = client.post("/push", json={"project": "proj-a", "dir": str(job_dir)}, headers=AUTH)

        assert response.status_code == 500
        assert response.json() == {"detail": "Server misconfigured: API key not set"}

    def test_bootstrap_requires_key(self, client):
        assert client.post("/projects/proj-a/bootstrap").status_code == 401


class TestPush:
    """Tests for POST /push (fire-and-forget)."""

    def test_queues_publish(self, settings, github_client, mock_queue, job_dir):
        with TestClient(create_app(settings, client=github_client, queue=mock_queue)) as client:
            response = client.post(
                "/push",
                json={"project": "proj-a", "dir": str(job_dir), "feat_name": "add-auth"},
                headers=AUTH,
            )

        assert response.status_code == 202
        assert response.json() == {"ok": True, "message": "Push queued"}
        mock_queue.submit.assert_called_once()
        mock_queue.submit.return_value.add_done_callback.assert_called_once()

    def test_queue_full_is_503_with_retry_after(self, settings, github_client, mock_queue, job_dir):
        mock_queue.submit.side_effect = QueueFullError(50, retry_after=5)

        with TestClient(create_app(settings, client=github_client, queue=mock_queue)) as client:
            response = client.post("/push", json={"project": "proj-a", "dir": str(job_dir)}, headers=AUTH)

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "5"
        assert response.json() == {"error": "Queue full (depth=50). Retry later.", "kind": "backpressure"}

    def test_invalid_project_name(self, client, job_dir):
        response = client.post("/push", json={"project": "bad/name", "dir": str(job_dir)}, headers=AUTH)

        assert response.status_code == 400
        assert response.json()["kind"] == "validation"
        assert "Invalid project name" in response.json()["error"]

    @pytest.mark.parametrize("suffix", ["/../outside", "/../incoming-evil", "/../../etc"])
    def test_dir_outside_incoming(self, client, incoming_dir, suffix):
        response = client.post(
            "/push", json={"project": "proj-a", "dir": f"{incoming_dir}{suffix}"}, headers=AUTH
        )

        assert response.status_code == 400
        assert response.json()["error"].startswith("dir must be inside")

    def test_missing_dir(self, client, incoming_dir):
        response = client.post(
            "/push", json={"project": "proj-a", "dir": str(incoming_dir / "nope")}, headers=AUTH
        )

        assert response.status_code == 400
        assert "Directory not found" in response.json()["error"]

    def test_missing_fields(self, client):
        response = client.post("/push", json={"project": "proj-a"}, headers=AUTH)

        assert response.status_code == 400
        assert response.json()["kind"] == "validation"
        assert "dir" in response.json()["error"]


class TestPushSync:
    """Tests for POST /push/sync against the in-memory repository."""

    def test_returns_pull_request(self, client, fake_github, job_dir):
        response = client.post(
            "/push/sync",
            json={
                "project": "proj-a",
                "dir": str(job_dir),
                "feat_name": "Add Auth",
                "description": "Add authentication",
                "labels": ["backend"],
                "source": "builder",
            },
            headers=AUTH,
        )

        assert response.status_code == 200
        assert response.json() == {
            "feat_id": "add-auth",
            "branch": "feat/add-auth",
            "project": "proj-a",
            "dev_branch": "proj-a-dev",
            "pr_number": 1,
            "pr_url": "https://github.com/acme/mono/pull/1",
        }
        assert fake_github.file_at("feat/add-auth", "src/auth.py") == b"def login(): ...\n"
        assert fake_github.file_at("feat/add-auth", "README.md") == b"# auth\n"
        assert fake_github.file_at("feat/add-auth", "node_modules/dep.js") is None
        assert f"**Directory:** `{job_dir.resolve()}`" in fake_github.pulls[0]["body"]

    def test_repeat_push_reuses_pr(self, client, fake_github, job_dir):
        body = {"project": "proj-a", "dir": str(job_dir), "feat_name": "add-auth"}
        first = client.post("/push/sync", json=body, headers=AUTH).json()
        (job_dir / "README.md").write_text("# auth v2\n")

        second = client.post("/push/sync", json=body, headers=AUTH).json()

        assert second["pr_number"] == first["pr_number"]
        assert len(fake_github.pulls) == 1
        assert fake_github.file_at("feat/add-auth", "README.md") == b"# auth v2\n"

    def test_upstream_failure_is_502(self, client, fake_github, job_dir):
        fake_github.errors[("POST", "/git/trees")] = 500

        response = client.post("/push/sync", json={"project": "proj-a", "dir": str(job_dir)}, headers=AUTH)

        assert response.status_code == 502
        assert response.json()["kind"] == "upstream"

    def test_empty_dir_is_400(self, client, incoming_dir):
        empty = incoming_dir / "empty"
        empty.mkdir()

        response = client.post("/push/sync", json={"project": "proj-a", "dir": str(empty)}, headers=AUTH)

        assert response.status_code == 400
        assert response.json()["error"] == "No files provided"

    def test_unexpected_error_is_500(self, settings, github_client, mock_queue, job_dir):
        mock_queue.enqueue.side_effect = RuntimeError("boom")
        app = create_app(settings, client=github_client, queue=mock_queue)

        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.post("/push/sync", json={"project": "proj-a", "dir": str(job_dir)}, headers=AUTH)

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}


class TestBootstrapRoute:
    def test_bootstrap_project(self, client, fake_github):
        response = client.post("/projects/proj-a/bootstrap", headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"master_branch": "proj-a-master", "dev_branch": "proj-a-dev"}
        assert fake_github.parents_of("proj-a-master") == []

    def test_invalid_project(self, client, fake_github):
        response = client.post("/projects/bad.name/bootstrap", headers=AUTH)

        assert response.status_code == 400
        assert fake_github.requests == []
