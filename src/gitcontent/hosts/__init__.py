"""Git host adapters behind the VersionControlHost protocol."""

from __future__ import annotations

import os

from gitcontent.config import AppConfig
from gitcontent.retry import RetryPolicy, is_rate_limited
from gitcontent.schemas import HostProvider, RepositoryIdentity

from .base import ContentsWrite, HostEntry, TreeEntry, VersionControlHost
from .github import GitHubHost
from .memory import MemoryHost, blob_sha


def create_host(identity: RepositoryIdentity, config: AppConfig) -> VersionControlHost:
    """Build the adapter for an identity's provider."""
    if identity.provider == HostProvider.GITHUB:
        token = os.getenv(config.host.token_env, "").strip() or None
        return GitHubHost(
            token=token,
            api_base=identity.base_url or config.host.api_base,
            timeout_seconds=config.host.timeout_seconds,
            rate_limit_policy=RetryPolicy(
                max_retries=config.retry.rate_limit_max_retries,
                base_delay_seconds=config.retry.base_delay_seconds,
                retry_on=is_rate_limited,
                label="github request",
            ),
        )
    if identity.provider == HostProvider.MEMORY:
        return MemoryHost(default_branch=config.host.branch)
    raise ValueError(f"Provider {identity.provider} not yet implemented")


__all__ = [
    "ContentsWrite",
    "GitHubHost",
    "HostEntry",
    "MemoryHost",
    "TreeEntry",
    "VersionControlHost",
    "blob_sha",
    "create_host",
]
