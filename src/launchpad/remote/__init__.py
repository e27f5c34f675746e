"""Remote command execution with scoped key material."""

from launchpad.remote.ssh import CommandResult, RemoteExecutor, SshExecutor, materialized_key

__all__ = ["CommandResult", "RemoteExecutor", "SshExecutor", "materialized_key"]
