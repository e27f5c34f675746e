"""Configuration models for launchpad.

Pydantic v2 models for every tunable of the service: polling cadence,
provisioning bounds, SSH transport options, external API endpoints, registry
eviction, credential lookup, webhook observers, logging and recipes. A config
file is optional; every field has a working default.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, model_validator

from launchpad.core.logging import get_logger

_logger = get_logger("core.config")

DEFAULT_RECIPES: dict[str, str] = {
    "tauri-rust-v2": "https://raw.githubusercontent.com/mock-org/recipes/main/tauri-v2.sh",
    "nextjs-app": "https://raw.githubusercontent.com/mock-org/recipes/main/nextjs.sh",
}


class PollingConfig(BaseModel):
    """Agent-session polling loop settings."""

    interval_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Sleep before each poll of the agent session.",
    )
    max_consecutive_failures: int = Field(
        default=12,
        ge=0,
        description="Consecutive failed polls that end the job. "
        "0 retries indefinitely.",
    )


class ProvisioningConfig(BaseModel):
    """Disposable remote environment (codespace) settings for scaffold jobs."""

    machine: str = Field(
        default="basicLinux32gb",
        description="Codespace machine type requested at creation.",
    )
    ready_poll_interval_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Fixed interval between readiness checks.",
    )
    ready_max_attempts: int = Field(
        default=60,
        ge=1,
        description="Readiness checks before the environment is declared timed out.",
    )
    ssh_host_template: str = Field(
        default="{codespace}",
        description="SSH host for a codespace; '{codespace}' is replaced by its name. "
        "The default relies on an ssh_config entry such as the one written by "
        "'gh codespace ssh --config'.",
    )
    ssh_port: int = Field(default=22, ge=1, le=65535)
    ssh_username: str = Field(default="codespace")
    deploy_key_title: str = Field(default="launchpad ephemeral")
    context_file: str = Field(
        default="AGENTS.md",
        description="File the job context is written to, in the repo or on the host.",
    )


class SshConfig(BaseModel):
    """Remote execution transport settings."""

    binary: str = Field(default="ssh", description="ssh client executable")
    connect_timeout_seconds: int = Field(default=15, ge=1)
    command_timeout_seconds: float = Field(
        default=900.0,
        ge=1.0,
        description="Wall-clock limit for one remote command.",
    )
    strict_host_key_checking: Literal["yes", "no", "accept-new"] = Field(default="accept-new")
    known_hosts_file: Path | None = Field(
        default=None,
        description="Known-hosts file; None uses the ssh client default.",
    )


class GitHubConfig(BaseModel):
    """Source-control host API settings."""

    api_url: str = Field(default="https://api.github.com")
    user_agent: str = Field(default="launchpad-agent")
    timeout_seconds: float = Field(default=30.0, gt=0)
    merge_method: Literal["merge", "squash", "rebase"] = Field(default="squash")


class AgentConfig(BaseModel):
    """AI agent session service settings."""

    api_url: str = Field(default="https://jules.googleapis.com/v1alpha")
    timeout_seconds: float = Field(default=30.0, gt=0)


class RegistryConfig(BaseModel):
    """In-process job registry eviction policy."""

    terminal_ttl_seconds: float = Field(
        default=86400.0,
        ge=0.0,
        description="Seconds a finished job stays inspectable before eviction.",
    )
    max_jobs: int = Field(
        default=1000,
        ge=10,
        description="Upper bound on tracked jobs; oldest finished jobs are evicted first.",
    )


class AuthConfig(BaseModel):
    """Where service credentials are looked up."""

    store_path: Path = Field(default=Path("~/.launchpad/auth_store.json"))
    github_token_env: str = Field(default="LAUNCHPAD_GITHUB_TOKEN")
    agent_token_env: str = Field(default="LAUNCHPAD_AGENT_TOKEN")


class WebhookConfig(BaseModel):
    """One HTTP endpoint that receives every job update event."""

    url: str | None = None
    url_env: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    timeout: float = Field(default=10.0, gt=0)
    max_retries: int = Field(default=2, ge=0)
    retry_delay: float = Field(default=1.0, ge=0.0)

    @model_validator(mode="after")
    def _require_target(self) -> WebhookConfig:
        if not self.url and not self.url_env:
            raise ValueError("webhook requires url or url_env")
        return self


class NotificationConfig(BaseModel):
    webhooks: list[WebhookConfig] = Field(default_factory=list)


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    format: Literal["console", "json", "both"] = Field(default="console")
    file: Path | None = None

    @model_validator(mode="after")
    def _file_for_both(self) -> LoggingConfig:
        if self.format == "both" and self.file is None:
            raise ValueError("logging.file is required when logging.format is 'both'")
        return self


class LaunchpadConfig(BaseModel):
    """Top-level launchpad configuration."""

    polling: PollingConfig = Field(default_factory=PollingConfig)
    provisioning: ProvisioningConfig = Field(default_factory=ProvisioningConfig)
    ssh: SshConfig = Field(default_factory=SshConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    recipes: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_RECIPES),
        description="Recipe id to setup-script URL.",
    )

    @model_validator(mode="after")
    def _recipes_not_empty(self) -> LaunchpadConfig:
        if not self.recipes:
            _logger.warning("config.no_recipes", message="scaffold jobs will always be rejected")
        return self


def load_config(config_file: Path | None) -> LaunchpadConfig:
    """Load LaunchpadConfig from a YAML file, or return defaults.

    Raises:
        FileNotFoundError: If config_file is given but does not exist.
        pydantic.ValidationError: If the file content is invalid.
    """
    if config_file is None:
        return LaunchpadConfig()
    with open(config_file, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    config = LaunchpadConfig.model_validate(data)
    _logger.debug("config.loaded", path=str(config_file))
    return config


__all__ = [
    "DEFAULT_RECIPES",
    "AgentConfig",
    "AuthConfig",
    "GitHubConfig",
    "LaunchpadConfig",
    "LoggingConfig",
    "NotificationConfig",
    "PollingConfig",
    "ProvisioningConfig",
    "RegistryConfig",
    "SshConfig",
    "WebhookConfig",
    "load_config",
]
