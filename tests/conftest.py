"""Pytest fixtures for launchpad tests."""

from __future__ import annotations

import logging
from collections.abc import Generator

import pytest
import structlog

from launchpad.cli import helpers as cli_helpers
from launchpad.core.config import LaunchpadConfig, PollingConfig, ProvisioningConfig
from launchpad.credentials.keys import generate_ephemeral_keypair
from launchpad.engine.pipelines import PipelineServices
from launchpad.engine.registry import JobRegistry
from launchpad.testing import FakeRemoteExecutor, FakeSourceControl, ScriptedAgentSession

from tests.helpers import EventLog


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset CLI logging state, structlog and root handlers around each test."""
    cli_helpers.reset_logging_state()
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    cli_helpers.reset_logging_state()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


@pytest.fixture
def config() -> LaunchpadConfig:
    """Config with every wait set to zero so pipelines run instantly."""
    return LaunchpadConfig(
        polling=PollingConfig(interval_seconds=0.0, max_consecutive_failures=3),
        provisioning=ProvisioningConfig(ready_poll_interval_seconds=0.0, ready_max_attempts=3),
    )


@pytest.fixture
def source_control() -> FakeSourceControl:
    return FakeSourceControl()


@pytest.fixture
def agent() -> ScriptedAgentSession:
    return ScriptedAgentSession()


@pytest.fixture
def executor() -> FakeRemoteExecutor:
    return FakeRemoteExecutor()


@pytest.fixture
def services(
    config: LaunchpadConfig,
    agent: ScriptedAgentSession,
    source_control: FakeSourceControl,
    executor: FakeRemoteExecutor,
) -> PipelineServices:
    return PipelineServices(
        config=config,
        agent=agent,
        source_control=source_control,
        executor=executor,
    )


@pytest.fixture
def registry(config: LaunchpadConfig) -> JobRegistry:
    return JobRegistry(config.registry)


@pytest.fixture
def event_log() -> EventLog:
    return EventLog()


@pytest.fixture(scope="session")
def private_key() -> str:
    """A valid unencrypted OpenSSH private key."""
    return generate_ephemeral_keypair().private_key
