"""In-process job registry.

The only structure mutated by more than one job worker. Each worker owns one
entry by job id; every access goes through a single lock and readers get
copies, so a caller can never observe or cause a half-applied update.

Finished entries (PR_READY, MERGED, FAILED) are evicted once they are older
than ``terminal_ttl_seconds``, and the map never holds more than ``max_jobs``
entries: when full, the oldest finished entries go first. Running jobs are
never evicted.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from launchpad.core.config import RegistryConfig
from launchpad.core.errors import JobNotFoundError
from launchpad.core.logging import get_logger
from launchpad.core.models import FINISHED_STATUSES, JobState, JobStatus, JobVariant

_logger = get_logger("engine.registry")

_UPDATABLE_FIELDS = frozenset({
    "status",
    "repo_identifier",
    "session_id",
    "last_poll_timestamp",
    "pr",
    "failure_reason",
})


class JobRegistry:
    """Thread-safe map of job id to JobState with TTL eviction."""

    def __init__(
        self,
        config: RegistryConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or RegistryConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._jobs: dict[str, JobState] = {}

    def register(self, job_id: str, variant: JobVariant, status: JobStatus) -> JobState:
        """Create the entry for a new job; evicts expired entries first."""
        with self._lock:
            if job_id in self._jobs:
                raise ValueError(f"job {job_id} already registered")
            self._evict_locked(reserve=1)
            state = JobState(id=job_id, variant=variant, status=status, created_at=self._clock())
            self._jobs[job_id] = state
            return replace(state)

    def get(self, job_id: str) -> JobState | None:
        with self._lock:
            state = self._jobs.get(job_id)
            return replace(state) if state is not None else None

    def require(self, job_id: str) -> JobState:
        """Like get(), but an unknown id raises JobNotFoundError."""
        state = self.get(job_id)
        if state is None:
            raise JobNotFoundError(f"unknown job {job_id}")
        return state

    def update(self, job_id: str, **changes: Any) -> JobState:
        """Apply field changes to one entry atomically and return the result.

        Moving into a finished status stamps ``finished_at``; moving back out
        of one clears it.

        Raises:
            JobNotFoundError: If the job is unknown (or already evicted).
            ValueError: If a field is not updatable.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update fields: {sorted(unknown)}")
        with self._lock:
            state = self._jobs.get(job_id)
            if state is None:
                raise JobNotFoundError(f"unknown job {job_id}")
            for name, value in changes.items():
                setattr(state, name, value)
            if "status" in changes:
                if state.status in FINISHED_STATUSES:
                    state.finished_at = state.finished_at or self._clock()
                else:
                    state.finished_at = None
            return replace(state)

    def mark_failed(self, job_id: str, reason: str) -> JobState:
        return self.update(job_id, status=JobStatus.FAILED, failure_reason=reason)

    def list_jobs(self) -> list[JobState]:
        """All entries, oldest first."""
        with self._lock:
            states = [replace(s) for s in self._jobs.values()]
        return sorted(states, key=lambda s: s.created_at)

    def evict_expired(self) -> int:
        """Drop finished entries past their TTL; return how many went."""
        with self._lock:
            return self._evict_locked()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs

    def _evict_locked(self, reserve: int = 0) -> int:
        now = self._clock()
        ttl = self._config.terminal_ttl_seconds
        expired = [
            job_id for job_id, s in self._jobs.items()
            if s.finished_at is not None and now - s.finished_at >= ttl
        ]
        for job_id in expired:
            del self._jobs[job_id]

        # reserve: room for an entry about to be registered
        excess = len(self._jobs) - self._config.max_jobs + reserve
        overflow: list[str] = []
        if excess > 0:
            finished = sorted(
                (s for s in self._jobs.values() if s.finished_at is not None),
                key=lambda s: s.finished_at or 0.0,
            )
            overflow = [s.id for s in finished[:excess]]
            for job_id in overflow:
                del self._jobs[job_id]

        evicted = len(expired) + len(overflow)
        if evicted:
            _logger.debug(
                "registry.evicted",
                expired=len(expired),
                overflow=len(overflow),
                remaining=len(self._jobs),
            )
        return evicted


__all__ = ["JobRegistry"]
