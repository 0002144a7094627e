from __future__ import annotations

import logging
import os
import time
from collections.abc import Sequence
from typing import Any
from urllib.parse import quote

import requests

from gitcontent.errors import (
    ConflictError,
    FastForwardRejectedError,
    HostError,
    NotFoundError,
    RateLimitedError,
)
from gitcontent.retry import RetryPolicy, is_rate_limited

from .base import ContentsWrite, HostEntry, TreeEntry

GITHUB_API_BASE = "https://api.github.com"
_RATE_LIMIT_STATUS_CODES = {403, 429}
_FAST_FORWARD_TOKEN = "not a fast forward"

logger = logging.getLogger(__name__)


class GitHubHost:
    """GitHub REST client covering the contents and Git database endpoints."""

    def __init__(
        self,
        *,
        token: str | None = None,
        api_base: str = GITHUB_API_BASE,
        timeout_seconds: float = 20.0,
        session: requests.Session | None = None,
        rate_limit_policy: RetryPolicy | None = None,
        max_retry_after_seconds: float = 60.0,
    ) -> None:
        if not api_base.strip():
            raise ValueError("GitHub API base is empty.")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0.")
        if max_retry_after_seconds < 0:
            raise ValueError("max_retry_after_seconds must be >= 0.")

        self.api_base = api_base.strip().rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_retry_after_seconds = max_retry_after_seconds
        self.session = session or requests.Session()
        self.rate_limit_policy = rate_limit_policy or RetryPolicy(
            max_retries=3,
            retry_on=is_rate_limited,
            label="github request",
        )

        self.session.headers.setdefault("Accept", "application/vnd.github+json")
        self.session.headers.setdefault("X-GitHub-Api-Version", "2022-11-28")
        self.session.headers.setdefault("User-Agent", "gitcontent/0.1.0")
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    @classmethod
    def from_env(
        cls,
        *,
        env_var: str = "GITHUB_TOKEN",
        api_base: str = GITHUB_API_BASE,
        timeout_seconds: float = 20.0,
        session: requests.Session | None = None,
        rate_limit_policy: RetryPolicy | None = None,
    ) -> GitHubHost:
        token = os.getenv(env_var, "").strip()
        if not token:
            raise ValueError(f"Environment variable {env_var} is not set.")
        return cls(
            token=token,
            api_base=api_base,
            timeout_seconds=timeout_seconds,
            session=session,
            rate_limit_policy=rate_limit_policy,
        )

    def get_contents(
        self, owner: str, repo: str, path: str, *, ref: str | None = None
    ) -> HostEntry | list[HostEntry]:
        params = {"ref": ref} if ref else None
        data = self._request("GET", self._contents_path(owner, repo, path), params=params)
        if isinstance(data, list):
            return [self._to_entry(item) for item in data]
        return self._to_entry(data)

    def put_contents(
        self,
        owner: str,
        repo: str,
        path: str,
        *,
        content_base64: str,
        message: str,
        branch: str,
        sha: str | None = None,
    ) -> ContentsWrite:
        payload: dict[str, Any] = {
            "message": message,
            "content": content_base64,
            "branch": branch,
        }
        if sha:
            payload["sha"] = sha
        data = self._request("PUT", self._contents_path(owner, repo, path), json=payload)
        return ContentsWrite(
            content_sha=data["content"]["sha"],
            commit_sha=data["commit"]["sha"],
        )

    def delete_contents(
        self,
        owner: str,
        repo: str,
        path: str,
        *,
        sha: str,
        message: str,
        branch: str,
    ) -> str:
        data = self._request(
            "DELETE",
            self._contents_path(owner, repo, path),
            json={"message": message, "sha": sha, "branch": branch},
        )
        return data["commit"]["sha"]

    def get_blob(self, owner: str, repo: str, sha: str) -> str:
        data = self._request("GET", f"/repos/{owner}/{repo}/git/blobs/{sha}")
        return data["content"]

    def create_blob(self, owner: str, repo: str, content_base64: str) -> str:
        data = self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/blobs",
            json={"content": content_base64, "encoding": "base64"},
        )
        return data["sha"]

    def get_ref(self, owner: str, repo: str, branch: str) -> str:
        data = self._request("GET", f"/repos/{owner}/{repo}/git/ref/heads/{quote(branch)}")
        return data["object"]["sha"]

    def get_commit_tree(self, owner: str, repo: str, commit_sha: str) -> str:
        data = self._request("GET", f"/repos/{owner}/{repo}/git/commits/{commit_sha}")
        return data["tree"]["sha"]

    def create_tree(
        self,
        owner: str,
        repo: str,
        *,
        base_tree: str,
        entries: Sequence[TreeEntry],
    ) -> str:
        data = self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/trees",
            json={
                "base_tree": base_tree,
                "tree": [entry.to_payload() for entry in entries],
            },
        )
        return data["sha"]

    def create_commit(
        self,
        owner: str,
        repo: str,
        *,
        message: str,
        tree: str,
        parents: Sequence[str],
    ) -> str:
        data = self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/commits",
            json={"message": message, "tree": tree, "parents": list(parents)},
        )
        return data["sha"]

    def update_ref(self, owner: str, repo: str, branch: str, sha: str) -> None:
        self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/git/refs/heads/{quote(branch)}",
            json={"sha": sha, "force": False},
        )

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        return self.rate_limit_policy.run(
            lambda: self._send(method, path, json=json, params=params)
        )

    def _send(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None,
        params: dict[str, str] | None,
    ) -> Any:
        response = self.session.request(
            method,
            f"{self.api_base}{path}",
            json=json,
            params=params,
            timeout=self.timeout_seconds,
        )
        if response.status_code >= 400:
            raise self._to_error(method, path, response)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def _to_error(self, method: str, path: str, response: requests.Response) -> Exception:
        status = response.status_code
        message = self._extract_error_message(response)
        lowered = message.lower()

        if status == 404:
            return NotFoundError(f"Not found: {method} {path}")
        if status == 409:
            return ConflictError(message or "Conflict")
        if status == 422 and _FAST_FORWARD_TOKEN in lowered:
            return FastForwardRejectedError(status, message)
        if self._is_rate_limit_response(response, lowered):
            retry_after = self._retry_after_seconds(response)
            logger.warning(
                "github rate limited method=%s path=%s status=%s retry_after=%s",
                method,
                path,
                status,
                retry_after,
            )
            return RateLimitedError(status, message, retry_after=retry_after)
        return HostError(status, message or response.reason or "error")

    @staticmethod
    def _is_rate_limit_response(response: requests.Response, message: str) -> bool:
        if response.status_code not in _RATE_LIMIT_STATUS_CODES:
            return False
        if response.status_code == 429:
            return True
        if response.headers.get("X-RateLimit-Remaining") == "0":
            return True
        if "Retry-After" in response.headers:
            return True
        return "rate limit" in message

    def _retry_after_seconds(self, response: requests.Response) -> float | None:
        raw_retry_after = response.headers.get("Retry-After")
        if raw_retry_after:
            try:
                return min(float(raw_retry_after), self.max_retry_after_seconds)
            except ValueError:
                logger.warning("unparseable Retry-After header value=%s", raw_retry_after)

        raw_reset = response.headers.get("X-RateLimit-Reset")
        if raw_reset:
            try:
                wait = float(raw_reset) - time.time()
            except ValueError:
                return None
            return min(max(wait, 0.0), self.max_retry_after_seconds)
        return None

    @staticmethod
    def _extract_error_message(response: requests.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text or ""
        if not isinstance(payload, dict):
            return ""
        message = payload.get("message")
        return str(message) if message is not None else ""

    @staticmethod
    def _contents_path(owner: str, repo: str, path: str) -> str:
        clean_path = quote(path.strip().strip("/"), safe="/")
        if not clean_path:
            return f"/repos/{owner}/{repo}/contents"
        return f"/repos/{owner}/{repo}/contents/{clean_path}"

    @staticmethod
    def _to_entry(item: dict[str, Any]) -> HostEntry:
        return HostEntry(
            name=item["name"],
            path=item["path"],
            type=item.get("type", "file"),
            sha=item["sha"],
            size=int(item.get("size") or 0),
            content=item.get("content"),
        )
