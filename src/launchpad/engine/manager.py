"""Job manager: submission, control and lifecycle of job workers.

Each accepted job becomes one asyncio.Task running its pipeline; the caller
gets the job id back immediately and follows progress through the event bus.
The manager owns the registry and the bus and builds a fresh set of service
clients per job from the current credentials, so a token refreshed between
jobs is picked up without a restart.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from typing import Any

from launchpad.clients.agent import AgentSession, AgentSessionClient
from launchpad.clients.github import GitHubClient, SourceControl, parse_repo_url, split_full_name
from launchpad.core.config import LaunchpadConfig
from launchpad.core.errors import ErrorKind, JobControlError
from launchpad.core.logging import get_logger
from launchpad.core.models import (
    FINISHED_STATUSES,
    AuthState,
    FailureDetails,
    JobState,
    JobStatus,
    JobUpdateEvent,
    JobVariant,
    RemoteRequest,
    ScaffoldRequest,
    UplinkRequest,
)
from launchpad.credentials.store import CredentialStore
from launchpad.engine.event_bus import EventBus, EventCallback
from launchpad.engine.pipelines import (
    CANCELLED_REASON,
    Pipeline,
    PipelineServices,
    RemotePipeline,
    ScaffoldPipeline,
    UplinkPipeline,
)
from launchpad.engine.registry import JobRegistry
from launchpad.engine.reporting import FAILED_LOG_LINE, JobReporter
from launchpad.engine.task_utils import log_task_exception
from launchpad.notifications.webhook import WebhookNotifier
from launchpad.remote.ssh import RemoteExecutor, SshExecutor

_logger = get_logger("engine.manager")

SourceControlFactory = Callable[[str], SourceControl]
AgentFactory = Callable[[str], AgentSession]
ExecutorFactory = Callable[[], RemoteExecutor]


def _merge_target(state: JobState, pr_url: str) -> tuple[str, str]:
    if state.variant is not JobVariant.REMOTE and state.repo_identifier:
        return split_full_name(state.repo_identifier)
    if state.repo_identifier and state.repo_identifier.startswith(("http://", "https://")):
        return parse_repo_url(state.repo_identifier)
    return parse_repo_url(pr_url)


class JobManager:
    """Runs jobs as asyncio tasks and routes control actions to them.

    External clients are created through factories so tests and the
    ``--simulate`` CLI mode can substitute in-memory doubles.
    """

    def __init__(
        self,
        config: LaunchpadConfig | None = None,
        *,
        credentials: CredentialStore | None = None,
        registry: JobRegistry | None = None,
        event_bus: EventBus | None = None,
        source_control_factory: SourceControlFactory | None = None,
        agent_factory: AgentFactory | None = None,
        executor_factory: ExecutorFactory | None = None,
        cancel_grace_seconds: float = 10.0,
    ) -> None:
        self._config = config or LaunchpadConfig()
        cfg = self._config
        self._credentials = credentials or CredentialStore(cfg.auth)
        self._registry = registry or JobRegistry(cfg.registry)
        self._event_bus = event_bus or EventBus()
        self._source_control_factory: SourceControlFactory = source_control_factory or (
            lambda token: GitHubClient(token, cfg.github, machine=cfg.provisioning.machine)
        )
        self._agent_factory: AgentFactory = agent_factory or (
            lambda token: AgentSessionClient(token, cfg.agent)
        )
        self._executor_factory: ExecutorFactory = executor_factory or (
            lambda: SshExecutor(cfg.ssh)
        )
        self._cancel_grace = cancel_grace_seconds

        self._jobs: dict[str, asyncio.Task[Any]] = {}
        self._notifiers: list[WebhookNotifier] = []
        self._shutting_down = False

    # ─── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start the event bus and attach the configured webhooks."""
        await self._event_bus.start()
        for webhook in self._config.notifications.webhooks:
            notifier = WebhookNotifier.from_config(webhook)
            self._event_bus.subscribe(notifier.send)
            self._notifiers.append(notifier)
        _logger.info("manager.started", webhooks=len(self._notifiers))

    async def shutdown(self) -> None:
        """Cancel running jobs, flush the event bus, close notifiers."""
        self._shutting_down = True
        running = [t for t in self._jobs.values() if not t.done()]
        _logger.info("manager.shutting_down", running_jobs=len(running))
        for task in running:
            task.cancel(msg="manager shutdown")
        if running:
            results = await asyncio.gather(*running, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    _logger.warning(
                        "manager.shutdown_task_exception",
                        error=str(result),
                        error_type=type(result).__name__,
                    )
        self._jobs.clear()

        await self._event_bus.shutdown()
        for notifier in self._notifiers:
            await notifier.close()
        self._notifiers.clear()
        _logger.info("manager.shutdown_complete")

    # ─── Properties ───────────────────────────────────────────────────

    @property
    def config(self) -> LaunchpadConfig:
        return self._config

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def running_count(self) -> int:
        return sum(1 for t in self._jobs.values() if not t.done())

    # ─── Submission ───────────────────────────────────────────────────

    async def submit_scaffold(self, request: ScaffoldRequest) -> str:
        """Start a scaffold job and return its id.

        Raises:
            MissingCredentialError: If either service token is unavailable.
            InvalidRecipeError: If the recipe id is unknown.
        """
        services = self._services(source_control=True, executor=True)
        return await self._submit(ScaffoldPipeline, request, services)

    async def submit_uplink(self, request: UplinkRequest) -> str:
        """Start an uplink job and return its id.

        Raises:
            MissingCredentialError: If either service token is unavailable.
            InvalidRepoUrlError: If the URL lacks an owner or a name.
        """
        services = self._services(source_control=True)
        return await self._submit(UplinkPipeline, request, services)

    async def submit_remote(self, request: RemoteRequest) -> str:
        """Start a remote-host job and return its id.

        Raises:
            MissingCredentialError: If the agent token is unavailable.
            KeyDerivationError: If the private key cannot be parsed.
        """
        services = self._services(executor=True)
        return await self._submit(RemotePipeline, request, services)

    def _services(self, *, source_control: bool = False, executor: bool = False) -> PipelineServices:
        if self._shutting_down:
            raise JobControlError("manager is shutting down")
        agent_token = self._credentials.require_agent()
        github_token = self._credentials.require_github() if source_control else None
        return PipelineServices(
            config=self._config,
            agent=self._agent_factory(agent_token),
            source_control=(
                self._source_control_factory(github_token) if github_token is not None else None
            ),
            executor=self._executor_factory() if executor else None,
        )

    async def _submit(
        self,
        pipeline_cls: type[Pipeline[Any]],
        request: Any,
        services: PipelineServices,
    ) -> str:
        try:
            pipeline = pipeline_cls(request, services)
        except Exception:
            await services.aclose()
            raise

        job_id = uuid.uuid4().hex
        self._registry.register(job_id, pipeline.variant, pipeline.initial_status)
        reporter = JobReporter(
            job_id, self._registry, self._event_bus.publish, status=pipeline.initial_status,
        )
        task = asyncio.create_task(
            self._run_job(pipeline, reporter, services), name=f"job-{job_id}",
        )
        self._jobs[job_id] = task
        task.add_done_callback(lambda t: self._on_task_done(job_id, t))

        _logger.info("job.submitted", job_id=job_id, variant=pipeline.variant.value)
        return job_id

    async def _run_job(
        self,
        pipeline: Pipeline[Any],
        reporter: JobReporter,
        services: PipelineServices,
    ) -> None:
        try:
            await pipeline.run(reporter)
        finally:
            await services.aclose()

    def _on_task_done(self, job_id: str, task: asyncio.Task[Any]) -> None:
        """Drop the finished task; settle jobs cancelled before they ran.

        A task cancelled before its first step never reached the pipeline's
        own cancellation handling, so its entry is marked FAILED here and
        the final event is published from a follow-up task.
        """
        self._jobs.pop(job_id, None)
        log_task_exception(task, _logger, "job.task_failed", level="warning")
        if not task.cancelled():
            return

        state = self._registry.get(job_id)
        if state is None or state.status in FINISHED_STATUSES:
            return
        self._registry.mark_failed(job_id, CANCELLED_REASON)
        event = JobUpdateEvent(
            id=job_id,
            status=state.status,
            logs=(CANCELLED_REASON, FAILED_LOG_LINE),
            failure=FailureDetails(kind=ErrorKind.JOB_CONTROL, reason=CANCELLED_REASON),
        )
        try:
            publish_task = asyncio.get_running_loop().create_task(
                self._event_bus.publish(event), name=f"cancel-event-{job_id}",
            )
        except RuntimeError:
            _logger.error("job.cancel_event_failed", job_id=job_id, exc_info=True)
            return
        publish_task.add_done_callback(
            lambda t: log_task_exception(t, _logger, "job.cancel_event_failed"),
        )

    # ─── Job control ──────────────────────────────────────────────────

    def _active_session(self, job_id: str) -> JobState:
        state = self._registry.require(job_id)
        if state.status in FINISHED_STATUSES:
            raise JobControlError(f"job {job_id} is already {state.status.value}")
        if state.session_id is None:
            raise JobControlError(f"job {job_id} has no agent session yet")
        return state

    async def approve_plan(self, job_id: str) -> None:
        """Approve the agent's pending plan. The next poll observes the effect."""
        state = self._active_session(job_id)
        agent = self._agent_factory(self._credentials.require_agent())
        try:
            await agent.resume_session(state.session_id or "")
        finally:
            await agent.aclose()
        _logger.info("job.plan_approved", job_id=job_id)

    async def refine_plan(self, job_id: str, feedback: str) -> None:
        """Send refinement feedback on the agent's plan."""
        if not feedback.strip():
            raise JobControlError("feedback must not be empty")
        state = self._active_session(job_id)
        agent = self._agent_factory(self._credentials.require_agent())
        try:
            await agent.send_feedback(state.session_id or "", feedback)
        finally:
            await agent.aclose()
        _logger.info("job.plan_refined", job_id=job_id)

    async def merge_pr(self, job_id: str) -> str:
        """Merge the job's pull request; returns the merge commit sha.

        Scaffold and uplink jobs merge in the repository they worked on. Remote
        jobs use their repo_url when one was given, and the pull request URL
        otherwise.

        Raises:
            JobNotFoundError: If the job is unknown.
            JobControlError: If the job has no pull request ready to merge.
        """
        state = self._registry.require(job_id)
        if state.status is not JobStatus.PR_READY or state.pr is None:
            raise JobControlError(f"job {job_id} has no pull request ready to merge")
        if state.pr.number <= 0:
            raise JobControlError(f"pull request number unknown for {state.pr.url}")
        owner, repo = _merge_target(state, state.pr.url)

        sc = self._source_control_factory(self._credentials.require_github())
        try:
            sha = await sc.merge_pull_request(owner, repo, state.pr.number)
        finally:
            await sc.aclose()

        reporter = JobReporter(job_id, self._registry, self._event_bus.publish, status=state.status)
        await reporter.emit(JobStatus.MERGED, "Pull Request merged.", pr=state.pr)
        _logger.info("job.pr_merged", job_id=job_id, number=state.pr.number)
        return sha

    async def cancel_job(self, job_id: str) -> JobState:
        """Cancel a running job and wait briefly for it to settle.

        Raises:
            JobNotFoundError: If the job is unknown.
            JobControlError: If the job is not running.
        """
        task = self._jobs.get(job_id)
        if task is None or task.done():
            self._registry.require(job_id)
            raise JobControlError(f"job {job_id} is not running")
        task.cancel(msg=f"cancel_job({job_id})")
        _logger.info("job.cancel_requested", job_id=job_id)
        await asyncio.wait([task], timeout=self._cancel_grace)
        return self._registry.require(job_id)

    # ─── Queries ──────────────────────────────────────────────────────

    def auth_status(self) -> AuthState:
        return self._credentials.auth_state()

    def get_job(self, job_id: str) -> JobState:
        return self._registry.require(job_id)

    def list_jobs(self) -> list[JobState]:
        return self._registry.list_jobs()

    def recipes(self) -> dict[str, str]:
        return dict(self._config.recipes)

    def subscribe(self, callback: EventCallback, *, job_id: str | None = None) -> str:
        """Subscribe to job update events, optionally for one job only."""
        if job_id is None:
            return self._event_bus.subscribe(callback)
        return self._event_bus.subscribe(callback, event_filter=lambda e: e.id == job_id)

    def unsubscribe(self, sub_id: str) -> bool:
        return self._event_bus.unsubscribe(sub_id)

    async def wait_for_job(self, job_id: str) -> JobState:
        """Wait until a job's task ends and its events are delivered."""
        task = self._jobs.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        await self._event_bus.wait_idle()
        return self._registry.require(job_id)


__all__ = ["JobManager"]
