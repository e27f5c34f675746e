"""Exception hierarchy for launchpad.

Every launchpad-specific exception inherits from LaunchpadError and carries an
ErrorKind, so callers can catch broad (LaunchpadError, ConnectivityError) or
narrow (RevisionConflictError) and observers can report a failure kind without
parsing messages.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Failure kinds, independent of the transport that produced them."""

    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    CONNECTIVITY = "connectivity"
    REMOTE_API = "remote_api"
    PROVISIONING_TIMEOUT = "provisioning_timeout"
    EXECUTION = "execution"
    CREDENTIAL = "credential"
    JOB_CONTROL = "job_control"


class LaunchpadError(Exception):
    """Base exception for all launchpad errors."""

    kind: ErrorKind = ErrorKind.EXECUTION


# ─── Configuration ────────────────────────────────────────────────────


class ConfigurationError(LaunchpadError):
    """Raised when caller-supplied input cannot be used as given."""

    kind = ErrorKind.CONFIGURATION


class InvalidRecipeError(ConfigurationError):
    """Raised when a recipe id is not in the known recipe set."""


class InvalidRepoUrlError(ConfigurationError):
    """Raised when a repository URL lacks an owner and a name segment."""


class KeyDerivationError(ConfigurationError):
    """Raised when a user-supplied private key cannot be parsed."""


# ─── Authentication ───────────────────────────────────────────────────


class AuthenticationError(LaunchpadError):
    """Raised when a credential is missing or rejected."""

    kind = ErrorKind.AUTHENTICATION


class MissingCredentialError(AuthenticationError):
    """Raised at submission time when a service token is unavailable."""


class AccessDeniedError(AuthenticationError):
    """Raised when the authenticated account cannot write to a repository."""


class SshAuthError(AuthenticationError):
    """Raised when the remote host rejects the supplied key."""


# ─── Connectivity ─────────────────────────────────────────────────────


class ConnectivityError(LaunchpadError):
    """Raised on network, handshake or timeout failures to a remote party."""

    kind = ErrorKind.CONNECTIVITY


class ConnectTimeoutError(ConnectivityError):
    """Raised when a TCP connection cannot be established in time."""


class HandshakeError(ConnectivityError):
    """Raised when the SSH key exchange or host verification fails."""


# ─── Remote API ───────────────────────────────────────────────────────


class RemoteApiError(LaunchpadError):
    """Raised on a non-success response from the source-control or agent service."""

    kind = ErrorKind.REMOTE_API

    def __init__(self, operation: str, status_code: int, detail: str | None = None) -> None:
        self.operation = operation
        self.status_code = status_code
        self.detail = detail
        message = f"{operation} failed with HTTP {status_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class RevisionConflictError(RemoteApiError):
    """Raised when a file write carries a stale revision marker."""


class SessionStartError(RemoteApiError):
    """Raised when the agent service refuses to start a session."""


class SessionControlError(RemoteApiError):
    """Raised when a plan approval or feedback message is rejected."""


# ─── Provisioning / execution ─────────────────────────────────────────


class ProvisioningTimeoutError(LaunchpadError):
    """Raised when a remote environment never reports itself available."""

    kind = ErrorKind.PROVISIONING_TIMEOUT


class ExecutionError(LaunchpadError):
    """Raised when a remote command cannot run or exits non-zero."""

    kind = ErrorKind.EXECUTION


class ChannelError(ExecutionError):
    """Raised when the session channel fails after authentication."""


class CommandFailedError(ExecutionError):
    """Raised when a remote command exits with a non-zero status."""

    def __init__(self, command: str, exit_code: int, output: str) -> None:
        self.command = command
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"remote command exited with status {exit_code}")


class KeyGenerationError(LaunchpadError):
    """Raised when an ephemeral keypair cannot be generated or encoded."""

    kind = ErrorKind.CREDENTIAL


# ─── Job control ──────────────────────────────────────────────────────


class JobControlError(LaunchpadError):
    """Raised when a control action is invalid for the targeted job."""

    kind = ErrorKind.JOB_CONTROL


class JobNotFoundError(JobControlError):
    """Raised when a job id is unknown to the registry."""


__all__ = [
    "AccessDeniedError",
    "AuthenticationError",
    "ChannelError",
    "CommandFailedError",
    "ConfigurationError",
    "ConnectTimeoutError",
    "ConnectivityError",
    "ErrorKind",
    "ExecutionError",
    "HandshakeError",
    "InvalidRecipeError",
    "InvalidRepoUrlError",
    "JobControlError",
    "JobNotFoundError",
    "KeyDerivationError",
    "KeyGenerationError",
    "LaunchpadError",
    "MissingCredentialError",
    "ProvisioningTimeoutError",
    "RemoteApiError",
    "RevisionConflictError",
    "SessionControlError",
    "SessionStartError",
    "SshAuthError",
]
