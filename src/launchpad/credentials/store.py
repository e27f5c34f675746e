"""Service credential lookup.

Tokens for the source-control host and the agent service come from an
external secret store. Environment variables win; otherwise the JSON store
file written by the desktop login flow is consulted. Tokens are never logged
or returned through the API, only their presence.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from launchpad.core.config import AuthConfig
from launchpad.core.errors import MissingCredentialError
from launchpad.core.logging import get_logger
from launchpad.core.models import AuthState

_logger = get_logger("credentials.store")

GITHUB_STORE_KEY = "github_access_token"
AGENT_STORE_KEY = "agent_access_token"


class CredentialStore:
    """Read-only view over the configured credential sources."""

    def __init__(self, config: AuthConfig | None = None) -> None:
        self._config = config or AuthConfig()

    def _read_store(self) -> dict[str, object]:
        path = Path(self._config.store_path).expanduser()
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            _logger.warning("store.unreadable", path=str(path), exc_info=True)
            return {}
        return data if isinstance(data, dict) else {}

    def _lookup(self, env_name: str, store_key: str) -> str | None:
        value = os.environ.get(env_name)
        if value:
            return value
        stored = self._read_store().get(store_key)
        if isinstance(stored, str) and stored:
            return stored
        return None

    def github_token(self) -> str | None:
        return self._lookup(self._config.github_token_env, GITHUB_STORE_KEY)

    def agent_token(self) -> str | None:
        return self._lookup(self._config.agent_token_env, AGENT_STORE_KEY)

    def require_github(self) -> str:
        token = self.github_token()
        if token is None:
            raise MissingCredentialError("source-control host is not authenticated")
        return token

    def require_agent(self) -> str:
        token = self.agent_token()
        if token is None:
            raise MissingCredentialError("agent service is not authenticated")
        return token

    def auth_state(self) -> AuthState:
        return AuthState(
            github_authenticated=self.github_token() is not None,
            agent_authenticated=self.agent_token() is not None,
        )


class StaticCredentialStore(CredentialStore):
    """Credential store with fixed tokens, for simulation and tests."""

    def __init__(self, github: str | None = None, agent: str | None = None) -> None:
        super().__init__()
        self._github = github
        self._agent = agent

    def github_token(self) -> str | None:
        return self._github

    def agent_token(self) -> str | None:
        return self._agent


__all__ = ["AGENT_STORE_KEY", "GITHUB_STORE_KEY", "CredentialStore", "StaticCredentialStore"]
