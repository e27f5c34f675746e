"""Tests for the launchpad HTTP API and its SSE stream."""

from __future__ import annotations

import json
import time
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from launchpad import __version__
from launchpad.api.app import create_app, status_for_error
from launchpad.api.sse import SSEEvent, job_event_stream
from launchpad.core.config import LaunchpadConfig
from launchpad.core.errors import (
    InvalidRecipeError,
    JobControlError,
    JobNotFoundError,
    MissingCredentialError,
    ProvisioningTimeoutError,
    RemoteApiError,
)
from launchpad.core.models import JobStatus, UplinkRequest
from launchpad.credentials.store import StaticCredentialStore
from launchpad.engine.manager import JobManager
from launchpad.testing import FakeRemoteExecutor, FakeSourceControl, ScriptedAgentSession


def build_manager(
    config: LaunchpadConfig,
    source_control: FakeSourceControl,
    agent: ScriptedAgentSession,
    executor: FakeRemoteExecutor,
    *,
    github: str | None = "gh-token",
) -> JobManager:
    return JobManager(
        config,
        credentials=StaticCredentialStore(github=github, agent="agent-token"),
        source_control_factory=lambda _token: source_control,
        agent_factory=lambda _token: agent,
        executor_factory=lambda: executor,
        cancel_grace_seconds=2.0,
    )


@pytest.fixture
def manager(
    config: LaunchpadConfig,
    source_control: FakeSourceControl,
    agent: ScriptedAgentSession,
    executor: FakeRemoteExecutor,
) -> JobManager:
    return build_manager(config, source_control, agent, executor)


@pytest.fixture
def client(manager: JobManager) -> Generator[TestClient, None, None]:
    """Test client with the app lifespan (manager start/shutdown) active."""
    with TestClient(create_app(manager)) as test_client:
        yield test_client


def wait_for_status(client: TestClient, job_id: str, *statuses: str) -> dict:
    deadline = time.monotonic() + 5.0
    while True:
        body = client.get(f"/api/jobs/{job_id}").json()
        if body["status"] in statuses:
            return body
        if time.monotonic() > deadline:
            raise AssertionError(f"job {job_id} stuck in {body['status']}")
        time.sleep(0.01)


def parse_frames(text: str) -> list[tuple[str, dict]]:
    """Split an SSE body into (event name, decoded data) pairs."""
    frames = []
    for block in text.strip().split("\n\n"):
        lines = block.splitlines()
        name = next(line[len("event: "):] for line in lines if line.startswith("event: "))
        data = "\n".join(line[len("data: "):] for line in lines if line.startswith("data: "))
        frames.append((name, json.loads(data)))
    return frames


# ─── Error mapping ────────────────────────────────────────────────────


class TestStatusForError:
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (MissingCredentialError("no token"), 401),
            (JobNotFoundError("unknown job x"), 404),
            (JobControlError("not running"), 409),
            (InvalidRecipeError("unknown recipe"), 422),
            (RemoteApiError("create_repo", 500), 502),
            (ProvisioningTimeoutError("slow"), 500),
        ],
    )
    def test_mapping(self, error: Exception, expected: int) -> None:
        assert status_for_error(error) == expected  # type: ignore[arg-type]


# ─── System routes ────────────────────────────────────────────────────


class TestSystemRoutes:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["version"] == __version__
        assert body["running_jobs"] == 0

    def test_auth_never_returns_tokens(self, client: TestClient) -> None:
        response = client.get("/api/auth")
        assert response.status_code == 200
        assert response.json() == {"github_authenticated": True, "agent_authenticated": True}
        assert "gh-token" not in response.text

    def test_recipes(self, client: TestClient) -> None:
        recipes = client.get("/api/recipes").json()["recipes"]
        ids = [r["id"] for r in recipes]
        assert ids == sorted(ids)
        assert "nextjs-app" in ids


# ─── Job routes ───────────────────────────────────────────────────────


class TestJobRoutes:
    def test_scaffold_lifecycle(self, client: TestClient) -> None:
        response = client.post("/api/jobs/scaffold", json={"name": "demo", "recipe_id": "nextjs-app"})
        assert response.status_code == 202
        job_id = response.json()["job_id"]

        body = wait_for_status(client, job_id, "pr_ready", "failed")
        assert body["status"] == "pr_ready"
        assert body["variant"] == "scaffold"
        assert body["repo_identifier"] == "acct/demo"
        assert body["pr"]["number"] == 1

        listing = client.get("/api/jobs").json()
        assert listing["total"] == 1
        assert listing["jobs"][0]["id"] == job_id
        assert client.get("/api/jobs", params={"status": "failed"}).json()["total"] == 0

        merged = client.post(f"/api/jobs/{job_id}/merge")
        assert merged.status_code == 200
        assert len(merged.json()["sha"]) == 40
        assert client.get(f"/api/jobs/{job_id}").json()["status"] == "merged"

    def test_unknown_recipe_is_422(self, client: TestClient) -> None:
        response = client.post("/api/jobs/scaffold", json={"name": "demo", "recipe_id": "cobol"})
        assert response.status_code == 422
        assert response.json()["kind"] == "configuration"
        assert response.json()["error_type"] == "InvalidRecipeError"
        assert client.get("/api/jobs").json()["total"] == 0

    def test_request_validation(self, client: TestClient) -> None:
        response = client.post("/api/jobs/scaffold", json={"name": "a/b", "recipe_id": "nextjs-app"})
        assert response.status_code == 422

    def test_bad_private_key_is_422(self, client: TestClient) -> None:
        response = client.post(
            "/api/jobs/remote",
            json={"host": "h", "username": "u", "private_key": "garbage"},
        )
        assert response.status_code == 422
        assert response.json()["error_type"] == "KeyDerivationError"

    def test_missing_credentials_is_401(
        self,
        config: LaunchpadConfig,
        source_control: FakeSourceControl,
        agent: ScriptedAgentSession,
        executor: FakeRemoteExecutor,
    ) -> None:
        manager = build_manager(config, source_control, agent, executor, github=None)
        with TestClient(create_app(manager)) as client:
            response = client.post("/api/jobs/uplink", json={"repo_url": "acme/shop"})
        assert response.status_code == 401
        assert response.json()["kind"] == "authentication"

    def test_unknown_job_is_404(self, client: TestClient) -> None:
        assert client.get("/api/jobs/nope").status_code == 404
        response = client.post("/api/jobs/nope/approve")
        assert response.status_code == 404
        assert response.json()["kind"] == "job_control"

    def test_control_on_finished_job_is_409(
        self, client: TestClient, source_control: FakeSourceControl
    ) -> None:
        source_control.writable = False
        job_id = client.post("/api/jobs/uplink", json={"repo_url": "acme/shop"}).json()["job_id"]
        body = wait_for_status(client, job_id, "failed")
        assert body["failure_reason"] == "no write access to acme/shop"

        assert client.post(f"/api/jobs/{job_id}/approve").status_code == 409
        assert client.post(f"/api/jobs/{job_id}/merge").status_code == 409
        assert client.post(f"/api/jobs/{job_id}/cancel").status_code == 409

    def test_refine_requires_feedback(self, client: TestClient) -> None:
        response = client.post("/api/jobs/any/refine", json={"feedback": ""})
        assert response.status_code == 422


# ─── SSE ──────────────────────────────────────────────────────────────


class TestSSEEvent:
    def test_format(self) -> None:
        event = SSEEvent(event="job_update", data='{"a": 1}\n{"b": 2}', id="j-1", retry=500)
        assert event.format() == (
            "id: j-1\nretry: 500\nevent: job_update\n"
            'data: {"a": 1}\ndata: {"b": 2}\n\n'
        )


class TestEventStream:
    @pytest.mark.asyncio
    async def test_job_stream_ends_with_failure_event(
        self, manager: JobManager, source_control: FakeSourceControl
    ) -> None:
        source_control.writable = False
        await manager.start()
        try:
            job_id = await manager.submit_uplink(UplinkRequest(repo_url="acme/shop"))
            frames = [frame async for frame in job_event_stream(manager, job_id)]
        finally:
            await manager.shutdown()

        parsed = parse_frames("".join(frames))
        assert parsed[0][0] == "job_state"
        assert parsed[0][1]["id"] == job_id
        updates = [data for name, data in parsed if name == "job_update"]
        assert updates[-1]["failure"]["kind"] == "authentication"
        assert all(u["id"] == job_id for u in updates)
        assert manager.event_bus.subscriber_count == 0

    def test_stream_for_finished_job_returns_snapshot(
        self, client: TestClient, source_control: FakeSourceControl
    ) -> None:
        source_control.writable = False
        job_id = client.post("/api/jobs/uplink", json={"repo_url": "acme/shop"}).json()["job_id"]
        wait_for_status(client, job_id, "failed")

        response = client.get("/api/events", params={"job_id": job_id})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        frames = parse_frames(response.text)
        assert len(frames) == 1
        name, data = frames[0]
        assert name == "job_state"
        assert data["status"] == JobStatus.FAILED.value

    def test_stream_unknown_job_is_404(self, client: TestClient) -> None:
        assert client.get("/api/events", params={"job_id": "nope"}).status_code == 404
