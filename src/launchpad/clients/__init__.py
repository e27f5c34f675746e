"""Clients for the external services a job talks to."""

from launchpad.clients.agent import (
    AgentSession,
    AgentSessionClient,
    SessionSnapshot,
    map_session_state,
)
from launchpad.clients.github import GitHubClient, SourceControl, parse_repo_url

__all__ = [
    "AgentSession",
    "AgentSessionClient",
    "GitHubClient",
    "SessionSnapshot",
    "SourceControl",
    "map_session_state",
    "parse_repo_url",
]
