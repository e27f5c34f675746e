"""Job pipelines: scaffold, uplink and remote.

Each pipeline is a fixed sequence of stages that prepares a source for the
agent (a fresh repository, an existing repository, or an SSH host), then
starts an agent session and polls it until a pull request exists. Stages
raise; ``Pipeline.run`` is the one place a stage error is turned into the
job's final event and its FAILED registry status, after which it is
re-raised to the worker task.

Input validation happens in the constructors, before any event, so a job
with bad input is rejected at submission and never emits anything.
"""

from __future__ import annotations

import asyncio
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar, Generic, TypeVar

from launchpad.clients.agent import AgentSession, SessionSnapshot
from launchpad.clients.github import SourceControl, parse_repo_url, split_full_name
from launchpad.core.config import LaunchpadConfig
from launchpad.core.errors import (
    AccessDeniedError,
    CommandFailedError,
    ErrorKind,
    LaunchpadError,
)
from launchpad.core.logging import ExecutionContext, get_logger, with_context
from launchpad.core.models import (
    JobRequest,
    JobStatus,
    JobVariant,
    RemoteRequest,
    ScaffoldRequest,
    UplinkRequest,
)
from launchpad.credentials.keys import SshKeypair, derive_keypair, generate_ephemeral_keypair
from launchpad.engine.polling import poll_agent_session
from launchpad.engine.recipes import resolve_recipe
from launchpad.engine.reporting import JobReporter
from launchpad.remote.ssh import RemoteExecutor

_logger = get_logger("engine.pipelines")

SCAFFOLD_PROMPT = "Review the generated code and make improvements."
UPLINK_PROMPT = "Read AGENTS.md and execute instructions."
REMOTE_PROMPT = "Connect to the provided environment and execute the plan based on AGENTS.md"

CONNECTION_PROBE = "echo 'Connection Established'"
CANCELLED_REASON = "cancelled"

RequestT = TypeVar("RequestT", bound=JobRequest)


@dataclass
class PipelineServices:
    """External collaborators handed to one job run."""

    config: LaunchpadConfig
    agent: AgentSession
    source_control: SourceControl | None = None
    executor: RemoteExecutor | None = None

    def require_source_control(self) -> SourceControl:
        if self.source_control is None:
            raise ValueError("pipeline needs a source-control client")
        return self.source_control

    def require_executor(self) -> RemoteExecutor:
        if self.executor is None:
            raise ValueError("pipeline needs a remote executor")
        return self.executor

    async def aclose(self) -> None:
        """Close the HTTP clients; errors are logged, not raised."""
        for client in (self.agent, self.source_control):
            if client is None:
                continue
            try:
                await client.aclose()
            except (OSError, RuntimeError):
                _logger.warning("pipeline.client_close_failed", exc_info=True)


def github_source(owner: str, repo: str) -> str:
    """Source reference the agent service uses for a GitHub repository."""
    return f"github.com/{owner}/{repo}"


def write_file_command(path: str, content: str) -> str:
    """Shell command that writes ``content`` verbatim to ``path``."""
    return f"printf '%s' {shlex.quote(content)} > {shlex.quote(path)}"


class Pipeline(ABC, Generic[RequestT]):
    """Shared stage runner: prepare a source, start the agent, poll it."""

    variant: ClassVar[JobVariant]
    initial_status: ClassVar[JobStatus]
    prompt: ClassVar[str]

    def __init__(self, request: RequestT, services: PipelineServices) -> None:
        self.request = request
        self._services = services
        self._config = services.config

    @abstractmethod
    async def _prepare_source(self, reporter: JobReporter) -> str:
        """Run the variant's stages; return the source reference for the agent."""

    async def run(self, reporter: JobReporter) -> SessionSnapshot:
        """Execute every stage in order and poll the agent session to the end.

        Raises:
            LaunchpadError: The error of the failing stage, after the failure
                event was emitted and the job marked FAILED.
            asyncio.CancelledError: If the job was cancelled; the job is
                marked FAILED with reason "cancelled" first.
        """
        ctx = ExecutionContext(job_id=reporter.job_id, variant=self.variant.value)
        with with_context(ctx):
            _logger.info("job.started")
            try:
                source = await self._prepare_source(reporter)

                await reporter.emit(JobStatus.PLANNING, "Starting AI session...")
                agent = self._services.agent
                session_id = await agent.start_session(
                    source, self.prompt, self.request.mode.requires_approval,
                )
                reporter.record(session_id=session_id)

                snapshot = await poll_agent_session(
                    session_id, agent, reporter, self._config.polling,
                )
            except asyncio.CancelledError:
                _logger.warning("job.cancelled", status=reporter.status.value)
                await reporter.fail(ErrorKind.JOB_CONTROL, CANCELLED_REASON)
                raise
            except LaunchpadError as exc:
                _logger.error(
                    "job.failed",
                    status=reporter.status.value,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    kind=exc.kind.value,
                )
                await reporter.fail(exc.kind, str(exc))
                raise
            except Exception as exc:
                _logger.exception("job.unexpected_error", status=reporter.status.value)
                await reporter.fail(ErrorKind.EXECUTION, f"Unexpected internal error: {exc}")
                raise

            _logger.info("job.completed", status=snapshot.status.value)
            return snapshot


class ScaffoldPipeline(Pipeline[ScaffoldRequest]):
    """New repository from a recipe, generated inside a disposable codespace."""

    variant = JobVariant.SCAFFOLD
    initial_status = JobStatus.BOOTING
    prompt = SCAFFOLD_PROMPT

    def __init__(self, request: ScaffoldRequest, services: PipelineServices) -> None:
        super().__init__(request, services)
        self.script_url = resolve_recipe(request.recipe_id, self._config.recipes)
        self._source_control = services.require_source_control()
        self._executor = services.require_executor()

    def generator_command(self) -> str:
        """Write the context file, then download and run the recipe script."""
        context_file = self._config.provisioning.context_file
        return (
            f"{write_file_command(context_file, self.request.context)}"
            f" && curl -fsSL -o run.sh {shlex.quote(self.script_url)}"
            f" && bash run.sh {shlex.quote(self.request.name)}"
        )

    async def _prepare_source(self, reporter: JobReporter) -> str:
        sc = self._source_control
        provisioning = self._config.provisioning

        await reporter.emit(JobStatus.BOOTING, "Provisioning GitHub resources...")
        full_name = await sc.create_private_repo(self.request.name)
        owner, repo = split_full_name(full_name)
        reporter.record(repo_identifier=full_name)

        try:
            codespace = await sc.create_codespace(owner, repo)
        except LaunchpadError as exc:
            # The repository is not rolled back
            _logger.error("scaffold.repo_orphaned", repo=full_name, error=str(exc))
            raise
        key_id: int | None = None
        completed = False
        try:
            await sc.wait_for_codespace(
                codespace,
                interval=provisioning.ready_poll_interval_seconds,
                max_attempts=provisioning.ready_max_attempts,
            )
            keypair = generate_ephemeral_keypair()
            key_id = await sc.add_deploy_key(
                owner, repo, keypair.public_key, provisioning.deploy_key_title,
            )

            await reporter.emit(
                JobStatus.GENERATING, "Connecting via SSH and running generator...",
            )
            await self._run_generator(codespace, keypair)
            completed = True
        finally:
            await self._release(owner, repo, codespace, key_id, strict=completed)

        return github_source(owner, repo)

    async def _run_generator(self, codespace: str, keypair: SshKeypair) -> None:
        provisioning = self._config.provisioning
        command = self.generator_command()
        result = await self._executor.execute(
            provisioning.ssh_host_template.format(codespace=codespace),
            provisioning.ssh_port,
            provisioning.ssh_username,
            keypair.private_key,
            keypair.public_key,
            command,
        )
        if result.exit_code != 0:
            raise CommandFailedError(command, result.exit_code, result.output)
        _logger.info("scaffold.generator_finished", codespace=codespace)

    async def _release(
        self,
        owner: str,
        repo: str,
        codespace: str,
        key_id: int | None,
        *,
        strict: bool,
    ) -> None:
        """Revoke the deploy key and delete the codespace.

        Both are attempted. With ``strict`` the first error is raised after
        both attempts; otherwise errors are logged so the stage error that
        got us here propagates unchanged.
        """
        sc = self._source_control
        first_error: LaunchpadError | None = None
        if key_id is not None:
            try:
                await sc.remove_deploy_key(owner, repo, key_id)
            except LaunchpadError as exc:
                first_error = exc
                _logger.error("scaffold.deploy_key_revoke_failed", key_id=key_id, error=str(exc))
        try:
            await sc.delete_codespace(codespace)
        except LaunchpadError as exc:
            first_error = first_error or exc
            _logger.error("scaffold.codespace_delete_failed", codespace=codespace, error=str(exc))
        if strict and first_error is not None:
            raise first_error


class UplinkPipeline(Pipeline[UplinkRequest]):
    """Existing repository: sync the context file, then hand it to the agent."""

    variant = JobVariant.UPLINK
    initial_status = JobStatus.UPLOADING_CONTEXT
    prompt = UPLINK_PROMPT

    def __init__(self, request: UplinkRequest, services: PipelineServices) -> None:
        super().__init__(request, services)
        self.owner, self.repo = parse_repo_url(request.repo_url)
        self._source_control = services.require_source_control()

    async def _prepare_source(self, reporter: JobReporter) -> str:
        sc = self._source_control
        owner, repo = self.owner, self.repo

        await reporter.emit(JobStatus.UPLOADING_CONTEXT, "Verifying repository access...")
        if not await sc.check_repo_access(owner, repo):
            raise AccessDeniedError(f"no write access to {owner}/{repo}")
        reporter.record(repo_identifier=f"{owner}/{repo}")

        context_file = self._config.provisioning.context_file
        await reporter.emit(JobStatus.UPLOADING_CONTEXT, f"Syncing {context_file}...")
        await sc.upsert_file(
            owner, repo, context_file, self.request.context,
            f"Update {context_file} via launchpad",
        )
        return github_source(owner, repo)


class RemotePipeline(Pipeline[RemoteRequest]):
    """User-supplied host: probe it over SSH, upload the context file there."""

    variant = JobVariant.REMOTE
    initial_status = JobStatus.UPLOADING_CONTEXT
    prompt = REMOTE_PROMPT

    def __init__(self, request: RemoteRequest, services: PipelineServices) -> None:
        super().__init__(request, services)
        self._keypair = derive_keypair(request.private_key)
        self._executor = services.require_executor()

    async def _execute(self, command: str) -> None:
        req = self.request
        result = await self._executor.execute(
            req.host, req.port, req.username,
            self._keypair.private_key, self._keypair.public_key,
            command,
        )
        if result.exit_code != 0:
            raise CommandFailedError(command, result.exit_code, result.output)

    async def _prepare_source(self, reporter: JobReporter) -> str:
        req = self.request
        await reporter.emit(
            JobStatus.UPLOADING_CONTEXT, f"Connecting to {req.host}:{req.port}...",
        )
        await self._execute(CONNECTION_PROBE)
        reporter.record(repo_identifier=req.source_ref)

        context_file = self._config.provisioning.context_file
        await reporter.emit(JobStatus.UPLOADING_CONTEXT, f"Uploading {context_file}...")
        await self._execute(write_file_command(context_file, req.context))
        return req.source_ref


__all__ = [
    "CONNECTION_PROBE",
    "REMOTE_PROMPT",
    "SCAFFOLD_PROMPT",
    "UPLINK_PROMPT",
    "Pipeline",
    "PipelineServices",
    "RemotePipeline",
    "ScaffoldPipeline",
    "UplinkPipeline",
    "github_source",
    "write_file_command",
]
