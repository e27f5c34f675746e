"""Tests for launchpad.core.logging."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from launchpad.core.logging import (
    ExecutionContext,
    configure_logging,
    get_current_context,
    get_logger,
    with_context,
)
from launchpad.core.logging import _sanitize_event_dict as sanitize


class TestExecutionContext:
    def test_to_dict_omits_unset_fields(self) -> None:
        assert ExecutionContext(job_id="j1").to_dict() == {"job_id": "j1"}

    def test_with_stage_returns_copy(self) -> None:
        ctx = ExecutionContext(job_id="j1", variant="scaffold")
        staged = ctx.with_stage("generating")
        assert staged.stage == "generating"
        assert ctx.stage is None

    def test_with_context_restores_previous(self) -> None:
        assert get_current_context() is None
        with with_context(ExecutionContext(job_id="outer")):
            with with_context(ExecutionContext(job_id="inner")):
                assert get_current_context().job_id == "inner"  # type: ignore[union-attr]
            assert get_current_context().job_id == "outer"  # type: ignore[union-attr]
        assert get_current_context() is None

    @pytest.mark.asyncio
    async def test_context_is_task_local(self) -> None:
        seen: list[str | None] = []

        async def worker(job_id: str) -> None:
            with with_context(ExecutionContext(job_id=job_id)):
                await asyncio.sleep(0)
                ctx = get_current_context()
                seen.append(ctx.job_id if ctx else None)

        await asyncio.gather(worker("a"), worker("b"))
        assert sorted(seen) == ["a", "b"]  # type: ignore[type-var]


class TestSanitize:
    """Sensitive fields never reach a sink."""

    def test_redacts_sensitive_keys(self) -> None:
        out = sanitize(None, "info", {"event": "x", "github_token": "ghp_abc", "host": "h"})
        assert out["github_token"] == "[REDACTED]"
        assert out["host"] == "h"

    def test_redacts_nested_one_level(self) -> None:
        out = sanitize(None, "info", {"event": "x", "headers": {"Authorization": "Bearer t"}})
        assert out["headers"]["Authorization"] == "[REDACTED]"

    def test_private_key_redacted(self) -> None:
        out = sanitize(None, "info", {"event": "x", "private_key": "-----BEGIN"})
        assert out["private_key"] == "[REDACTED]"


class TestConfigureLogging:
    def test_both_requires_file(self) -> None:
        with pytest.raises(ValueError, match="file_path"):
            configure_logging(format="both")

    def test_json_file_output_carries_context(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "launchpad.log"
        configure_logging(level="DEBUG", format="json", file_path=log_file)

        logger = get_logger("test.component")
        with with_context(ExecutionContext(job_id="j42", variant="remote")):
            logger.info("stage.started", agent_token="secret")

        entries = [json.loads(line) for line in log_file.read_text().splitlines()]
        entry = next(e for e in entries if e["event"] == "stage.started")
        assert entry["component"] == "test.component"
        assert entry["job_id"] == "j42"
        assert entry["variant"] == "remote"
        assert entry["agent_token"] == "[REDACTED]"
        assert "timestamp" in entry

    def test_bind_adds_fields(self, tmp_path: Path) -> None:
        log_file = tmp_path / "bind.log"
        configure_logging(level="INFO", format="json", file_path=log_file)
        get_logger("c").bind(session_id="sessions/1").warning("poll.failed")
        entry = json.loads(log_file.read_text().splitlines()[-1])
        assert entry["session_id"] == "sessions/1"
        assert entry["level"] == "warning"

    def test_level_filters(self, tmp_path: Path) -> None:
        log_file = tmp_path / "level.log"
        configure_logging(level="ERROR", format="json", file_path=log_file)
        get_logger("c").info("dropped")
        assert "dropped" not in log_file.read_text()


class TestLaunchpadLogger:
    def test_bind_keeps_component_and_chains(self) -> None:
        base = get_logger("engine.polling", job_id="j1")
        bound = base.bind(session_id="sessions/1").bind(consecutive_failures=2)
        assert bound._component == "engine.polling"
        assert bound._context == {
            "component": "engine.polling",
            "job_id": "j1",
            "session_id": "sessions/1",
            "consecutive_failures": 2,
        }
        # The parent is left untouched
        assert base._context == {"component": "engine.polling", "job_id": "j1"}

    def test_bound_logger_emits(self) -> None:
        get_logger("remote.ssh").bind(host="h", port=22).debug("ssh.connecting")
