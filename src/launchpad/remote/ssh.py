"""Remote command execution over SSH.

Runs exactly one non-interactive command on a host with the system ssh
client, authenticating with key material that is written to disk only inside
``materialized_key`` and destroyed before ``execute`` returns, on every exit
path.

Security Note: commands are launched with asyncio.create_subprocess_exec (no
local shell). The remote side does run ``command`` through the login shell,
so callers must quote every interpolated value with ``shlex.quote``.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import NamedTuple, Protocol

from launchpad.core.config import SshConfig
from launchpad.core.errors import (
    ChannelError,
    ConnectTimeoutError,
    HandshakeError,
    LaunchpadError,
    SshAuthError,
)
from launchpad.core.logging import get_logger

_logger = get_logger("remote.ssh")

# ssh reserves this exit status for its own (transport) failures
SSH_TRANSPORT_FAILURE = 255

_AUTH_MARKERS = ("permission denied", "too many authentication failures")
_CONNECT_MARKERS = (
    "connection timed out",
    "operation timed out",
    "connection refused",
    "no route to host",
    "network is unreachable",
    "could not resolve hostname",
    "name or service not known",
)
_HANDSHAKE_MARKERS = (
    "kex_exchange_identification",
    "host key verification failed",
    "no matching host key type",
    "no matching key exchange",
    "banner exchange",
    "connection closed by",
    "connection reset by",
)


class CommandResult(NamedTuple):
    """Exit status and combined stdout/stderr of one remote command."""

    exit_code: int
    output: str


class RemoteExecutor(Protocol):
    """Anything that can run one command on a host with a given key."""

    async def execute(
        self,
        host: str,
        port: int,
        username: str,
        private_key: str,
        public_key: str,
        command: str,
    ) -> CommandResult: ...


def _shred(path: Path) -> None:
    """Overwrite a file with zeros, then unlink it."""
    size = path.stat().st_size
    with open(path, "r+b") as f:
        f.write(b"\0" * size)
        f.flush()
        os.fsync(f.fileno())
    path.unlink()


def _write_owner_only(path: Path, content: str) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)


@contextmanager
def materialized_key(private_key: str, public_key: str) -> Iterator[Path]:
    """Write a keypair to a private temporary directory for one ssh call.

    The directory is created 0700 and the key files 0600. On exit, normal or
    exceptional, the key files are zero-filled and unlinked and the directory
    removed. Cleanup failures are logged and never mask the block's outcome.

    Yields:
        Path of the private key file; the public key sits beside it as ``.pub``.
    """
    workdir = Path(tempfile.mkdtemp(prefix="launchpad-key-"))
    key_path = workdir / "id_ephemeral"
    pub_path = workdir / "id_ephemeral.pub"
    try:
        _write_owner_only(key_path, private_key)
        _write_owner_only(pub_path, public_key.strip() + "\n")
        yield key_path
    finally:
        for path in (key_path, pub_path):
            if not path.exists():
                continue
            try:
                _shred(path)
            except OSError:
                _logger.error("ssh.key_shred_failed", path=str(path), exc_info=True)
        try:
            shutil.rmtree(workdir)
        except OSError:
            _logger.error("ssh.key_dir_cleanup_failed", path=str(workdir), exc_info=True)


def classify_transport_failure(output: str) -> LaunchpadError:
    """Map ssh's own failure text (exit 255) to an error by failing phase."""
    text = output.lower()
    detail = output.strip().splitlines()[-1] if output.strip() else "ssh transport failure"
    if any(marker in text for marker in _AUTH_MARKERS):
        return SshAuthError(detail)
    if any(marker in text for marker in _CONNECT_MARKERS):
        return ConnectTimeoutError(detail)
    if any(marker in text for marker in _HANDSHAKE_MARKERS):
        return HandshakeError(detail)
    return ChannelError(detail)


class SshExecutor:
    """RemoteExecutor backed by the OpenSSH client binary."""

    def __init__(self, config: SshConfig | None = None) -> None:
        self._config = config or SshConfig()

    def build_argv(
        self,
        key_path: Path,
        host: str,
        port: int,
        username: str,
        command: str,
    ) -> list[str]:
        cfg = self._config
        argv = [
            cfg.binary,
            "-T",
            "-i", str(key_path),
            "-p", str(port),
            "-o", "BatchMode=yes",
            "-o", "IdentitiesOnly=yes",
            "-o", "PasswordAuthentication=no",
            "-o", f"ConnectTimeout={cfg.connect_timeout_seconds}",
            "-o", f"StrictHostKeyChecking={cfg.strict_host_key_checking}",
            "-o", "LogLevel=ERROR",
        ]
        if cfg.known_hosts_file is not None:
            argv += ["-o", f"UserKnownHostsFile={cfg.known_hosts_file.expanduser()}"]
        argv += [f"{username}@{host}", command]
        return argv

    async def execute(
        self,
        host: str,
        port: int,
        username: str,
        private_key: str,
        public_key: str,
        command: str,
    ) -> CommandResult:
        """Run one command on ``host:port`` and return its exit status and output.

        A non-zero remote exit status is returned, not raised; callers decide
        whether it is fatal.

        Raises:
            ConnectTimeoutError: TCP connection or name resolution failed.
            HandshakeError: Key exchange or host key verification failed.
            SshAuthError: The host rejected the key.
            ChannelError: The session failed after authentication, the ssh
                client is missing, or the command exceeded its time limit.
        """
        log = _logger.bind(host=host, port=port, username=username)
        with materialized_key(private_key, public_key) as key_path:
            argv = self.build_argv(key_path, host, port, username, command)
            log.debug("ssh.executing", command_length=len(command))
            try:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                )
            except FileNotFoundError as exc:
                raise ChannelError(f"ssh client not found: {self._config.binary}") from exc

            try:
                stdout_bytes, _ = await asyncio.wait_for(
                    process.communicate(),
                    timeout=self._config.command_timeout_seconds,
                )
            except TimeoutError:
                await _kill(process)
                raise ChannelError(
                    f"remote command exceeded {self._config.command_timeout_seconds}s"
                ) from None
            except asyncio.CancelledError:
                await _kill(process)
                raise

        output = stdout_bytes.decode("utf-8", errors="replace")
        exit_code = process.returncode if process.returncode is not None else -1
        if exit_code == SSH_TRANSPORT_FAILURE:
            error = classify_transport_failure(output)
            log.warning("ssh.transport_failed", error_type=type(error).__name__, error=str(error))
            raise error
        if exit_code < 0:
            raise ChannelError(f"ssh client killed by signal {-exit_code}")

        log.info("ssh.completed", exit_code=exit_code)
        return CommandResult(exit_code=exit_code, output=output)


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()


__all__ = [
    "SSH_TRANSPORT_FAILURE",
    "CommandResult",
    "RemoteExecutor",
    "SshExecutor",
    "classify_transport_failure",
    "materialized_key",
]
