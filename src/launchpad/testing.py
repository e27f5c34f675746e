"""In-memory doubles for the external collaborators.

Used by the test suite and by the CLI's ``--simulate`` mode. They implement
the same protocols as the real clients (SourceControl, AgentSession,
RemoteExecutor), record every call, and let a caller inject failures per
operation. Production code never checks whether it is talking to a double.
"""

from __future__ import annotations

import hashlib
import itertools
from dataclasses import dataclass, field
from typing import Any

from launchpad.clients.agent import SessionSnapshot
from launchpad.core.errors import ProvisioningTimeoutError, RevisionConflictError
from launchpad.core.models import JobStatus, PrDetails
from launchpad.remote.ssh import CommandResult


@dataclass
class RecordedCall:
    operation: str
    args: tuple[Any, ...] = ()


class _Recorder:
    def __init__(self) -> None:
        self.calls: list[RecordedCall] = []
        self._failures: dict[str, Exception] = {}
        self.closed = False

    def fail_on(self, operation: str, error: Exception) -> None:
        """Make the next call to ``operation`` raise ``error``."""
        self._failures[operation] = error

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append(RecordedCall(operation, args))
        error = self._failures.pop(operation, None)
        if error is not None:
            raise error

    @property
    def operations(self) -> list[str]:
        return [c.operation for c in self.calls]

    async def aclose(self) -> None:
        self.closed = True


def _sha(content: str) -> str:
    return hashlib.sha1(content.encode("utf-8")).hexdigest()


class FakeSourceControl(_Recorder):
    """SourceControl double with an in-memory file store."""

    def __init__(
        self,
        *,
        owner: str = "acct",
        codespace: str = "env1",
        ready_after: int = 0,
        writable: bool = True,
        files: dict[tuple[str, str, str], str] | None = None,
    ) -> None:
        super().__init__()
        self.owner = owner
        self.codespace = codespace
        self.ready_after = ready_after
        self.writable = writable
        self.files: dict[tuple[str, str, str], str] = dict(files or {})
        self.deploy_keys: dict[int, tuple[str, str, str]] = {}
        self.codespaces: set[str] = set()
        self._key_ids = itertools.count(1)

    async def create_private_repo(self, name: str) -> str:
        self._record("create_private_repo", name)
        return f"{self.owner}/{name}"

    async def create_codespace(self, owner: str, repo: str) -> str:
        self._record("create_codespace", owner, repo)
        self.codespaces.add(self.codespace)
        return self.codespace

    async def wait_for_codespace(
        self, codespace: str, *, interval: float = 0.0, max_attempts: int = 60
    ) -> None:
        self._record("wait_for_codespace", codespace)
        if self.ready_after >= max_attempts:
            raise ProvisioningTimeoutError(
                f"codespace {codespace} not available after {max_attempts} checks"
            )

    async def delete_codespace(self, codespace: str) -> None:
        self._record("delete_codespace", codespace)
        self.codespaces.discard(codespace)

    async def add_deploy_key(self, owner: str, repo: str, key: str, title: str) -> int:
        self._record("add_deploy_key", owner, repo, title)
        key_id = next(self._key_ids)
        self.deploy_keys[key_id] = (owner, repo, key)
        return key_id

    async def remove_deploy_key(self, owner: str, repo: str, key_id: int) -> None:
        self._record("remove_deploy_key", owner, repo, key_id)
        self.deploy_keys.pop(key_id, None)

    async def get_file_revision(self, owner: str, repo: str, path: str) -> str | None:
        self._record("get_file_revision", owner, repo, path)
        content = self.files.get((owner, repo, path))
        return _sha(content) if content is not None else None

    async def put_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: str,
        message: str,
        revision: str | None,
    ) -> str:
        self._record("put_file", owner, repo, path, revision)
        current = self.files.get((owner, repo, path))
        current_revision = _sha(current) if current is not None else None
        if revision != current_revision:
            raise RevisionConflictError("put_file", 409, f"{path} changed concurrently")
        self.files[(owner, repo, path)] = content
        return _sha(content)

    async def upsert_file(
        self, owner: str, repo: str, path: str, content: str, message: str
    ) -> str:
        revision = await self.get_file_revision(owner, repo, path)
        return await self.put_file(owner, repo, path, content, message, revision)

    async def check_repo_access(self, owner: str, repo: str) -> bool:
        self._record("check_repo_access", owner, repo)
        return self.writable

    async def merge_pull_request(self, owner: str, repo: str, number: int) -> str:
        self._record("merge_pull_request", owner, repo, number)
        return _sha(f"{owner}/{repo}#{number}")


def default_script(pr_url: str = "https://github.com/simulated/repo/pull/1") -> list[SessionSnapshot]:
    """A short, successful session: thinking, working, pull request."""
    return [
        SessionSnapshot(JobStatus.PLANNING),
        SessionSnapshot(JobStatus.WORKING),
        SessionSnapshot(
            JobStatus.PR_READY,
            pr=PrDetails(number=1, url=pr_url, title="Simulated change"),
        ),
    ]


class ScriptedAgentSession(_Recorder):
    """AgentSession double that replays a fixed sequence of poll results.

    Each script entry is either a SessionSnapshot or an exception to raise
    from that poll. Once the script runs out the last entry repeats.
    """

    def __init__(self, script: list[SessionSnapshot | Exception] | None = None) -> None:
        super().__init__()
        self.script: list[SessionSnapshot | Exception] = list(script or default_script())
        self.polls = 0
        self._session_ids = itertools.count(1)

    async def start_session(self, source: str, prompt: str, require_approval: bool) -> str:
        self._record("start_session", source, prompt, require_approval)
        return f"sessions/fake-{next(self._session_ids)}"

    async def poll_session(self, session_id: str) -> SessionSnapshot:
        self._record("poll_session", session_id)
        entry = self.script[min(self.polls, len(self.script) - 1)]
        self.polls += 1
        if isinstance(entry, Exception):
            raise entry
        return entry

    async def resume_session(self, session_id: str) -> None:
        self._record("resume_session", session_id)

    async def send_feedback(self, session_id: str, feedback: str) -> None:
        self._record("send_feedback", session_id, feedback)


@dataclass
class ExecutedCommand:
    host: str
    port: int
    username: str
    public_key: str
    command: str


@dataclass
class FakeRemoteExecutor:
    """RemoteExecutor double. Never sees a filesystem; records commands."""

    results: list[CommandResult | Exception] = field(default_factory=list)
    executed: list[ExecutedCommand] = field(default_factory=list)

    async def execute(
        self,
        host: str,
        port: int,
        username: str,
        private_key: str,
        public_key: str,
        command: str,
    ) -> CommandResult:
        self.executed.append(ExecutedCommand(host, port, username, public_key, command))
        if not self.results:
            return CommandResult(exit_code=0, output="")
        entry = self.results.pop(0)
        if isinstance(entry, Exception):
            raise entry
        return entry


__all__ = [
    "ExecutedCommand",
    "FakeRemoteExecutor",
    "FakeSourceControl",
    "RecordedCall",
    "ScriptedAgentSession",
    "default_script",
]
