"""Tests for launchpad.credentials.store."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from launchpad.core.config import AuthConfig
from launchpad.core.errors import MissingCredentialError
from launchpad.credentials.store import (
    AGENT_STORE_KEY,
    GITHUB_STORE_KEY,
    CredentialStore,
    StaticCredentialStore,
)


@pytest.fixture
def auth_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AuthConfig:
    monkeypatch.delenv("TEST_GH_TOKEN", raising=False)
    monkeypatch.delenv("TEST_AGENT_TOKEN", raising=False)
    return AuthConfig(
        store_path=tmp_path / "auth_store.json",
        github_token_env="TEST_GH_TOKEN",
        agent_token_env="TEST_AGENT_TOKEN",
    )


class TestCredentialStore:
    """Lookup order: environment first, then the store file."""

    def test_nothing_configured(self, auth_config: AuthConfig) -> None:
        store = CredentialStore(auth_config)
        state = store.auth_state()
        assert state.github_authenticated is False
        assert state.agent_authenticated is False
        with pytest.raises(MissingCredentialError):
            store.require_github()
        with pytest.raises(MissingCredentialError):
            store.require_agent()

    def test_environment(self, auth_config: AuthConfig, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TEST_GH_TOKEN", "gh-env")
        store = CredentialStore(auth_config)
        assert store.require_github() == "gh-env"
        assert store.auth_state().agent_authenticated is False

    def test_store_file(self, auth_config: AuthConfig) -> None:
        auth_config.store_path.write_text(
            json.dumps({GITHUB_STORE_KEY: "gh-file", AGENT_STORE_KEY: "agent-file"})
        )
        store = CredentialStore(auth_config)
        assert store.require_github() == "gh-file"
        assert store.require_agent() == "agent-file"

    def test_environment_wins(
        self, auth_config: AuthConfig, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        auth_config.store_path.write_text(json.dumps({AGENT_STORE_KEY: "agent-file"}))
        monkeypatch.setenv("TEST_AGENT_TOKEN", "agent-env")
        assert CredentialStore(auth_config).require_agent() == "agent-env"

    def test_tokens_read_on_every_call(self, auth_config: AuthConfig) -> None:
        store = CredentialStore(auth_config)
        assert store.github_token() is None
        auth_config.store_path.write_text(json.dumps({GITHUB_STORE_KEY: "late"}))
        assert store.github_token() == "late"

    @pytest.mark.parametrize("content", ["{not json", "[1, 2]", json.dumps({GITHUB_STORE_KEY: 5})])
    def test_unusable_store_file(self, auth_config: AuthConfig, content: str) -> None:
        auth_config.store_path.write_text(content)
        assert CredentialStore(auth_config).github_token() is None


class TestStaticCredentialStore:
    def test_fixed_tokens(self) -> None:
        store = StaticCredentialStore(github="g", agent=None)
        assert store.require_github() == "g"
        assert store.auth_state().agent_authenticated is False
