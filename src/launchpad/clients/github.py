"""Source-control host client (GitHub REST API).

Thin typed facade over the repository, codespace, deploy-key, contents and
pull-request endpoints a job needs. Every operation is a single
request/response; only codespace readiness polls. Any non-success response
raises RemoteApiError carrying the operation name and status code.
"""

from __future__ import annotations

import asyncio
import base64
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx

from launchpad.clients.base import HttpServiceClient
from launchpad.core.config import GitHubConfig
from launchpad.core.errors import (
    InvalidRepoUrlError,
    ProvisioningTimeoutError,
    RemoteApiError,
    RevisionConflictError,
)
from launchpad.core.logging import get_logger

_logger = get_logger("clients.github")

CODESPACE_AVAILABLE = "Available"


class SourceControl(Protocol):
    """Operations the pipelines need from the source-control host."""

    async def create_private_repo(self, name: str) -> str: ...

    async def create_codespace(self, owner: str, repo: str) -> str: ...

    async def wait_for_codespace(
        self, codespace: str, *, interval: float, max_attempts: int
    ) -> None: ...

    async def delete_codespace(self, codespace: str) -> None: ...

    async def add_deploy_key(self, owner: str, repo: str, key: str, title: str) -> int: ...

    async def remove_deploy_key(self, owner: str, repo: str, key_id: int) -> None: ...

    async def get_file_revision(self, owner: str, repo: str, path: str) -> str | None: ...

    async def put_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: str,
        message: str,
        revision: str | None,
    ) -> str: ...

    async def upsert_file(
        self, owner: str, repo: str, path: str, content: str, message: str
    ) -> str: ...

    async def check_repo_access(self, owner: str, repo: str) -> bool: ...

    async def merge_pull_request(self, owner: str, repo: str, number: int) -> str: ...

    async def aclose(self) -> None: ...


def split_full_name(full_name: str) -> tuple[str, str]:
    """Split ``owner/name`` as returned by the repository API."""
    owner, sep, name = full_name.partition("/")
    if not sep or not owner or not name or "/" in name:
        raise RemoteApiError("create_private_repo", 200, f"unexpected full_name {full_name!r}")
    return owner, name


def parse_repo_url(repo_url: str) -> tuple[str, str]:
    """Extract ``(owner, name)`` from a repository reference.

    Accepts ``https://host/owner/name[.git][/...]``, scp-style
    ``git@host:owner/name.git``, ``host/owner/name`` and bare ``owner/name``.

    Raises:
        InvalidRepoUrlError: If fewer than two path segments are present.
    """
    text = repo_url.strip()
    if "://" in text:
        path = urlparse(text).path
    elif "@" in text.split("/", 1)[0] and ":" in text:
        path = text.split(":", 1)[1]
    else:
        path = text
        first = path.split("/", 1)[0]
        if "." in first and path.count("/") >= 2:
            path = path.split("/", 1)[1]

    segments = [s for s in path.split("/") if s]
    if len(segments) < 2:
        raise InvalidRepoUrlError(f"not a repository URL: {repo_url!r}")
    owner, name = segments[0], segments[1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    if not name:
        raise InvalidRepoUrlError(f"not a repository URL: {repo_url!r}")
    return owner, name


class GitHubClient(HttpServiceClient):
    """SourceControl implementation for the GitHub REST API."""

    def __init__(
        self,
        token: str,
        config: GitHubConfig | None = None,
        *,
        machine: str = "basicLinux32gb",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or GitHubConfig()
        self._machine = machine
        super().__init__(
            self._config.api_url,
            token,
            timeout=self._config.timeout_seconds,
            headers={
                "Accept": "application/vnd.github+json",
                "User-Agent": self._config.user_agent,
                "X-GitHub-Api-Version": "2022-11-28",
            },
            transport=transport,
        )

    # ─── Repositories ─────────────────────────────────────────────────

    async def create_private_repo(self, name: str) -> str:
        """Create a private, initialised repository; return its ``owner/name``."""
        op = "create_private_repo"
        response = await self._request(
            op, "POST", "/user/repos",
            json={"name": name, "private": True, "auto_init": True},
        )
        self._raise_for_status(op, response)
        full_name = self._json(op, response).get("full_name")
        if not isinstance(full_name, str):
            raise RemoteApiError(op, response.status_code, "response missing full_name")
        _logger.info("github.repo_created", repo=full_name)
        return full_name

    async def check_repo_access(self, owner: str, repo: str) -> bool:
        """Whether the token can see the repository and push to it."""
        op = "check_repo_access"
        response = await self._request(op, "GET", f"/repos/{owner}/{repo}")
        if response.status_code in (401, 403, 404):
            return False
        self._raise_for_status(op, response)
        permissions = self._json(op, response).get("permissions")
        if isinstance(permissions, dict):
            return bool(permissions.get("push"))
        return True

    # ─── Codespaces ───────────────────────────────────────────────────

    async def create_codespace(self, owner: str, repo: str) -> str:
        op = "create_codespace"
        response = await self._request(
            op, "POST", f"/repos/{owner}/{repo}/codespaces",
            json={"machine": self._machine},
        )
        self._raise_for_status(op, response)
        name = self._json(op, response).get("name")
        if not isinstance(name, str) or not name:
            raise RemoteApiError(op, response.status_code, "response missing codespace name")
        _logger.info("github.codespace_created", codespace=name, repo=f"{owner}/{repo}")
        return name

    async def wait_for_codespace(
        self,
        codespace: str,
        *,
        interval: float = 5.0,
        max_attempts: int = 60,
    ) -> None:
        """Poll until the codespace reports Available.

        Non-success responses while waiting count as "not ready yet".

        Raises:
            ProvisioningTimeoutError: After max_attempts checks without readiness.
        """
        op = "wait_for_codespace"
        for attempt in range(1, max_attempts + 1):
            response = await self._request(op, "GET", f"/user/codespaces/{codespace}")
            if response.is_success:
                state = self._json(op, response).get("state")
                if state == CODESPACE_AVAILABLE:
                    _logger.info("github.codespace_ready", codespace=codespace, attempts=attempt)
                    return
                _logger.debug("github.codespace_pending", codespace=codespace, state=state)
            else:
                _logger.debug(
                    "github.codespace_check_failed",
                    codespace=codespace,
                    status_code=response.status_code,
                )
            if attempt < max_attempts:
                await asyncio.sleep(interval)
        raise ProvisioningTimeoutError(
            f"codespace {codespace} not available after {max_attempts} checks"
        )

    async def delete_codespace(self, codespace: str) -> None:
        op = "delete_codespace"
        response = await self._request(op, "DELETE", f"/user/codespaces/{codespace}")
        self._raise_for_status(op, response)
        _logger.info("github.codespace_deleted", codespace=codespace)

    # ─── Deploy keys ──────────────────────────────────────────────────

    async def add_deploy_key(self, owner: str, repo: str, key: str, title: str) -> int:
        """Register a read-write deploy key; return its id."""
        op = "add_deploy_key"
        response = await self._request(
            op, "POST", f"/repos/{owner}/{repo}/keys",
            json={"title": title, "key": key, "read_only": False},
        )
        self._raise_for_status(op, response)
        key_id = self._json(op, response).get("id")
        if not isinstance(key_id, int):
            raise RemoteApiError(op, response.status_code, "response missing key id")
        return key_id

    async def remove_deploy_key(self, owner: str, repo: str, key_id: int) -> None:
        op = "remove_deploy_key"
        response = await self._request(op, "DELETE", f"/repos/{owner}/{repo}/keys/{key_id}")
        self._raise_for_status(op, response)

    # ─── Contents ─────────────────────────────────────────────────────

    async def get_file_revision(self, owner: str, repo: str, path: str) -> str | None:
        """Return the blob sha of ``path``, or None if the file does not exist."""
        op = "get_file_revision"
        response = await self._request(op, "GET", f"/repos/{owner}/{repo}/contents/{path}")
        if response.status_code == 404:
            return None
        self._raise_for_status(op, response)
        sha = self._json(op, response).get("sha")
        return sha if isinstance(sha, str) else None

    async def put_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: str,
        message: str,
        revision: str | None,
    ) -> str:
        """Write ``path`` guarded by its revision marker.

        ``revision=None`` means create. A stale marker, or a create racing
        another writer, raises RevisionConflictError instead of overwriting.
        """
        op = "put_file"
        payload: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        }
        if revision is not None:
            payload["sha"] = revision
        response = await self._request(
            op, "PUT", f"/repos/{owner}/{repo}/contents/{path}", json=payload,
        )
        if response.status_code == 409 or (response.status_code == 422 and revision is None):
            raise RevisionConflictError(op, response.status_code, f"{path} changed concurrently")
        self._raise_for_status(op, response)
        content_info = self._json(op, response).get("content")
        if isinstance(content_info, dict) and isinstance(content_info.get("sha"), str):
            return content_info["sha"]
        return ""

    async def upsert_file(
        self, owner: str, repo: str, path: str, content: str, message: str
    ) -> str:
        """Create or update ``path`` with optimistic concurrency."""
        revision = await self.get_file_revision(owner, repo, path)
        return await self.put_file(owner, repo, path, content, message, revision)

    # ─── Pull requests ────────────────────────────────────────────────

    async def merge_pull_request(self, owner: str, repo: str, number: int) -> str:
        """Merge a pull request; return the merge commit sha."""
        op = "merge_pull_request"
        response = await self._request(
            op, "PUT", f"/repos/{owner}/{repo}/pulls/{number}/merge",
            json={"merge_method": self._config.merge_method},
        )
        self._raise_for_status(op, response)
        sha = self._json(op, response).get("sha")
        _logger.info("github.pr_merged", repo=f"{owner}/{repo}", number=number)
        return sha if isinstance(sha, str) else ""


__all__ = [
    "CODESPACE_AVAILABLE",
    "GitHubClient",
    "SourceControl",
    "parse_repo_url",
    "split_full_name",
]
