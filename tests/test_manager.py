"""Tests for launchpad.engine.manager.JobManager.

The manager is driven end to end with in-memory collaborators: one shared
FakeSourceControl, a ScriptedAgentSession and a FakeRemoteExecutor.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import pytest

from launchpad.clients.agent import SessionSnapshot
from launchpad.core.config import LaunchpadConfig, NotificationConfig, WebhookConfig
from launchpad.core.errors import (
    InvalidRecipeError,
    InvalidRepoUrlError,
    JobControlError,
    JobNotFoundError,
    MissingCredentialError,
)
from launchpad.core.models import (
    JobStatus,
    JobUpdateEvent,
    JobVariant,
    PrDetails,
    RemoteRequest,
    ScaffoldRequest,
    UplinkRequest,
)
from launchpad.credentials.store import StaticCredentialStore
from launchpad.engine.manager import JobManager
from launchpad.testing import FakeRemoteExecutor, FakeSourceControl, ScriptedAgentSession

PR = PrDetails(number=7, url="https://github.com/acct/demo/pull/7")
PLAN = "1. Add a login page\n2. Write tests"


def make_manager(
    config: LaunchpadConfig,
    source_control: FakeSourceControl,
    agent: ScriptedAgentSession,
    executor: FakeRemoteExecutor,
    *,
    github: str | None = "gh-token",
    agent_token: str | None = "agent-token",
) -> JobManager:
    return JobManager(
        config,
        credentials=StaticCredentialStore(github=github, agent=agent_token),
        source_control_factory=lambda _token: source_control,
        agent_factory=lambda _token: agent,
        executor_factory=lambda: executor,
        cancel_grace_seconds=2.0,
    )


@asynccontextmanager
async def running(manager: JobManager) -> AsyncIterator[JobManager]:
    await manager.start()
    try:
        yield manager
    finally:
        await manager.shutdown()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def slow_polling(config: LaunchpadConfig) -> LaunchpadConfig:
    return config.model_copy(
        update={"polling": config.polling.model_copy(update={"interval_seconds": 0.01})},
    )


@pytest.fixture
def agent() -> ScriptedAgentSession:
    return ScriptedAgentSession([
        SessionSnapshot(JobStatus.WORKING),
        SessionSnapshot(JobStatus.PR_READY, pr=PR),
    ])


@pytest.fixture
def manager(
    config: LaunchpadConfig,
    source_control: FakeSourceControl,
    agent: ScriptedAgentSession,
    executor: FakeRemoteExecutor,
) -> JobManager:
    return make_manager(config, source_control, agent, executor)


# ─── Submission ───────────────────────────────────────────────────────


class TestSubmission:
    """Jobs are accepted immediately and run as background tasks."""

    @pytest.mark.asyncio
    async def test_scaffold_runs_to_pr_ready(
        self, manager: JobManager, agent: ScriptedAgentSession
    ) -> None:
        events: list[JobUpdateEvent] = []
        async with running(manager):
            manager.subscribe(events.append)
            job_id = await manager.submit_scaffold(
                ScaffoldRequest(name="demo", recipe_id="nextjs-app"),
            )
            state = await manager.wait_for_job(job_id)

        assert state.status is JobStatus.PR_READY
        assert state.variant is JobVariant.SCAFFOLD
        assert state.pr == PR
        assert [e.status for e in events] == [
            JobStatus.BOOTING,
            JobStatus.GENERATING,
            JobStatus.PLANNING,
            JobStatus.WORKING,
            JobStatus.PR_READY,
        ]
        assert all(e.id == job_id for e in events)
        assert agent.closed

    @pytest.mark.asyncio
    async def test_uplink_and_remote(
        self, manager: JobManager, source_control: FakeSourceControl, private_key: str
    ) -> None:
        async with running(manager):
            uplink_id = await manager.submit_uplink(
                UplinkRequest(repo_url="https://github.com/acme/shop", context="ctx"),
            )
            remote_id = await manager.submit_remote(
                RemoteRequest(host="h", username="u", private_key=private_key),
            )
            uplink = await manager.wait_for_job(uplink_id)
            remote = await manager.wait_for_job(remote_id)

        assert uplink_id != remote_id
        assert uplink.status is JobStatus.PR_READY
        assert remote.status is JobStatus.PR_READY
        assert source_control.files[("acme", "shop", "AGENTS.md")] == "ctx"
        assert {s.id for s in manager.list_jobs()} == {uplink_id, remote_id}

    @pytest.mark.asyncio
    async def test_missing_token_rejects_before_registration(
        self,
        config: LaunchpadConfig,
        source_control: FakeSourceControl,
        agent: ScriptedAgentSession,
        executor: FakeRemoteExecutor,
    ) -> None:
        manager = make_manager(config, source_control, agent, executor, github=None)
        async with running(manager):
            with pytest.raises(MissingCredentialError):
                await manager.submit_uplink(UplinkRequest(repo_url="acme/shop"))
        assert manager.list_jobs() == []
        assert source_control.calls == []

    @pytest.mark.asyncio
    async def test_remote_needs_only_agent_token(
        self,
        config: LaunchpadConfig,
        source_control: FakeSourceControl,
        agent: ScriptedAgentSession,
        executor: FakeRemoteExecutor,
        private_key: str,
    ) -> None:
        manager = make_manager(config, source_control, agent, executor, github=None)
        async with running(manager):
            job_id = await manager.submit_remote(
                RemoteRequest(host="h", username="u", private_key=private_key),
            )
            state = await manager.wait_for_job(job_id)
        assert state.status is JobStatus.PR_READY

    @pytest.mark.asyncio
    async def test_invalid_input_emits_nothing(self, manager: JobManager) -> None:
        events: list[JobUpdateEvent] = []
        async with running(manager):
            manager.subscribe(events.append)
            with pytest.raises(InvalidRecipeError):
                await manager.submit_scaffold(ScaffoldRequest(name="demo", recipe_id="cobol"))
            with pytest.raises(InvalidRepoUrlError):
                await manager.submit_uplink(UplinkRequest(repo_url="onlyrepo"))
            await manager.event_bus.wait_idle()
        assert events == []
        assert manager.list_jobs() == []

    @pytest.mark.asyncio
    async def test_failed_job_is_recorded(
        self, manager: JobManager, source_control: FakeSourceControl
    ) -> None:
        source_control.writable = False
        async with running(manager):
            job_id = await manager.submit_uplink(UplinkRequest(repo_url="acme/shop"))
            state = await manager.wait_for_job(job_id)
        assert state.status is JobStatus.FAILED
        assert state.failure_reason == "no write access to acme/shop"
        assert state.finished_at is not None

    @pytest.mark.asyncio
    async def test_subscribe_to_one_job(self, manager: JobManager, private_key: str) -> None:
        seen: list[JobUpdateEvent] = []
        async with running(manager):
            first = await manager.submit_uplink(UplinkRequest(repo_url="acme/shop"))
            manager.subscribe(seen.append, job_id=first)
            second = await manager.submit_remote(
                RemoteRequest(host="h", username="u", private_key=private_key),
            )
            await manager.wait_for_job(first)
            await manager.wait_for_job(second)
        assert seen
        assert {e.id for e in seen} == {first}


# ─── Job control ──────────────────────────────────────────────────────


class TestJobControl:
    """Plan approval, refinement, merge and cancellation."""

    @pytest.mark.asyncio
    async def test_approve_and_refine_reach_the_session(
        self,
        config: LaunchpadConfig,
        source_control: FakeSourceControl,
        executor: FakeRemoteExecutor,
    ) -> None:
        agent = ScriptedAgentSession([SessionSnapshot(JobStatus.WAITING_APPROVAL, plan=PLAN)])
        manager = make_manager(slow_polling(config), source_control, agent, executor)
        async with running(manager):
            job_id = await manager.submit_uplink(UplinkRequest(repo_url="acme/shop"))
            await wait_until(
                lambda: manager.get_job(job_id).status is JobStatus.WAITING_APPROVAL,
            )
            session_id = manager.get_job(job_id).session_id

            await manager.approve_plan(job_id)
            await manager.refine_plan(job_id, "Use OAuth instead")
            with pytest.raises(JobControlError, match="empty"):
                await manager.refine_plan(job_id, "   ")

            state = await manager.cancel_job(job_id)

        control = [c for c in agent.calls if c.operation in ("resume_session", "send_feedback")]
        assert [(c.operation, c.args) for c in control] == [
            ("resume_session", (session_id,)),
            ("send_feedback", (session_id, "Use OAuth instead")),
        ]
        assert state.status is JobStatus.FAILED
        assert state.failure_reason == "cancelled"

    @pytest.mark.asyncio
    async def test_control_before_session_exists(self, manager: JobManager) -> None:
        manager.registry.register("job-x", JobVariant.UPLINK, JobStatus.UPLOADING_CONTEXT)
        with pytest.raises(JobControlError, match="no agent session"):
            await manager.approve_plan("job-x")

    @pytest.mark.asyncio
    async def test_unknown_job(self, manager: JobManager) -> None:
        with pytest.raises(JobNotFoundError):
            await manager.approve_plan("nope")
        with pytest.raises(JobNotFoundError):
            await manager.merge_pr("nope")
        with pytest.raises(JobNotFoundError):
            await manager.cancel_job("nope")
        with pytest.raises(JobNotFoundError):
            manager.get_job("nope")

    @pytest.mark.asyncio
    async def test_merge_pr(
        self, manager: JobManager, source_control: FakeSourceControl
    ) -> None:
        events: list[JobUpdateEvent] = []
        async with running(manager):
            manager.subscribe(events.append)
            job_id = await manager.submit_scaffold(
                ScaffoldRequest(name="demo", recipe_id="nextjs-app"),
            )
            await manager.wait_for_job(job_id)

            sha = await manager.merge_pr(job_id)
            state = await manager.wait_for_job(job_id)

            with pytest.raises(JobControlError):
                await manager.approve_plan(job_id)

        assert len(sha) == 40
        assert source_control.calls[-1].operation == "merge_pull_request"
        assert source_control.calls[-1].args == ("acct", "demo", 7)
        assert state.status is JobStatus.MERGED
        assert events[-1].status is JobStatus.MERGED
        assert events[-1].logs == ("Pull Request merged.",)

    @pytest.mark.asyncio
    async def test_merge_targets_job_repository(
        self,
        config: LaunchpadConfig,
        source_control: FakeSourceControl,
        executor: FakeRemoteExecutor,
    ) -> None:
        """The PR URL reported by the agent service does not pick the repo."""
        agent = ScriptedAgentSession([
            SessionSnapshot(
                JobStatus.PR_READY, pr=PrDetails(number=7, url="https://example/pr/7"),
            ),
        ])
        manager = make_manager(config, source_control, agent, executor)
        async with running(manager):
            scaffold_id = await manager.submit_scaffold(
                ScaffoldRequest(name="demo", recipe_id="nextjs-app"),
            )
            uplink_id = await manager.submit_uplink(
                UplinkRequest(repo_url="https://github.com/acme/shop"),
            )
            await manager.wait_for_job(scaffold_id)
            await manager.wait_for_job(uplink_id)

            await manager.merge_pr(scaffold_id)
            await manager.merge_pr(uplink_id)

        merges = [c.args for c in source_control.calls if c.operation == "merge_pull_request"]
        assert merges == [("acct", "demo", 7), ("acme", "shop", 7)]

    @pytest.mark.asyncio
    async def test_merge_remote_job_uses_repo_url(
        self,
        config: LaunchpadConfig,
        source_control: FakeSourceControl,
        executor: FakeRemoteExecutor,
        private_key: str,
    ) -> None:
        agent = ScriptedAgentSession([
            SessionSnapshot(
                JobStatus.PR_READY, pr=PrDetails(number=3, url="https://example/pr/3"),
            ),
        ])
        manager = make_manager(config, source_control, agent, executor)
        async with running(manager):
            job_id = await manager.submit_remote(
                RemoteRequest(
                    host="h",
                    username="u",
                    private_key=private_key,
                    repo_url="https://github.com/acme/tools",
                ),
            )
            await manager.wait_for_job(job_id)
            await manager.merge_pr(job_id)

        assert source_control.calls[-1].operation == "merge_pull_request"
        assert source_control.calls[-1].args == ("acme", "tools", 3)

    @pytest.mark.asyncio
    async def test_merge_requires_ready_pr(
        self, manager: JobManager, source_control: FakeSourceControl
    ) -> None:
        source_control.writable = False
        async with running(manager):
            job_id = await manager.submit_uplink(UplinkRequest(repo_url="acme/shop"))
            await manager.wait_for_job(job_id)
            with pytest.raises(JobControlError, match="no pull request"):
                await manager.merge_pr(job_id)

    @pytest.mark.asyncio
    async def test_cancel_finished_job(self, manager: JobManager) -> None:
        async with running(manager):
            job_id = await manager.submit_uplink(UplinkRequest(repo_url="acme/shop"))
            await manager.wait_for_job(job_id)
            with pytest.raises(JobControlError, match="not running"):
                await manager.cancel_job(job_id)

    @pytest.mark.asyncio
    async def test_cancel_before_first_step(self, manager: JobManager) -> None:
        async with running(manager):
            job_id = await manager.submit_uplink(UplinkRequest(repo_url="acme/shop"))
            state = await manager.cancel_job(job_id)
        assert state.status is JobStatus.FAILED
        assert state.failure_reason == "cancelled"


# ─── Lifecycle ────────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_jobs(
        self,
        config: LaunchpadConfig,
        source_control: FakeSourceControl,
        executor: FakeRemoteExecutor,
    ) -> None:
        agent = ScriptedAgentSession([SessionSnapshot(JobStatus.WORKING)])
        manager = make_manager(slow_polling(config), source_control, agent, executor)
        events: list[JobUpdateEvent] = []

        await manager.start()
        manager.subscribe(events.append)
        job_id = await manager.submit_uplink(UplinkRequest(repo_url="acme/shop"))
        await wait_until(lambda: manager.get_job(job_id).status is JobStatus.WORKING)
        await manager.shutdown()

        assert manager.running_count == 0
        assert manager.get_job(job_id).status is JobStatus.FAILED
        assert events[-1].failure is not None
        assert events[-1].failure.reason == "cancelled"

        with pytest.raises(JobControlError, match="shutting down"):
            await manager.submit_uplink(UplinkRequest(repo_url="acme/shop"))

    @pytest.mark.asyncio
    async def test_webhooks_attached_on_start(
        self,
        config: LaunchpadConfig,
        source_control: FakeSourceControl,
        agent: ScriptedAgentSession,
        executor: FakeRemoteExecutor,
    ) -> None:
        config = config.model_copy(
            update={
                "notifications": NotificationConfig(
                    webhooks=[WebhookConfig(url="https://hooks.example.com/a")],
                ),
            },
        )
        manager = make_manager(config, source_control, agent, executor)
        await manager.start()
        try:
            assert manager.event_bus.subscriber_count == 1
        finally:
            await manager.shutdown()
        assert manager._notifiers == []

    def test_queries(self, manager: JobManager) -> None:
        auth = manager.auth_status()
        assert auth.github_authenticated
        assert auth.agent_authenticated
        assert "nextjs-app" in manager.recipes()
        assert manager.list_jobs() == []
