from __future__ import annotations

import logging
from typing import Protocol

from .errors import NotFoundError
from .schemas import GitOrganization, HostProvider, RepositoryIdentity

logger = logging.getLogger(__name__)


class OrganizationLookup(Protocol):
    def get_organization(
        self,
        login: str,
        *,
        provider: HostProvider | None = None,
    ) -> GitOrganization | None:
        """Return the directory record for a login, if any."""


class IdentityResolver:
    """Turns a repository identity or a bare login into a canonical identity.

    Identities are not cached; every call chain resolves its own.
    """

    def __init__(self, directory: OrganizationLookup | None = None) -> None:
        self.directory = directory

    def resolve(
        self,
        identity: RepositoryIdentity | str,
        repo: str | None = None,
    ) -> RepositoryIdentity:
        if isinstance(identity, RepositoryIdentity):
            return identity

        login, repo_name = _split_identity(identity, repo)
        if self.directory is None:
            raise ValueError(
                f"Cannot resolve {login!r} without an organization directory"
            )

        organization = self.directory.get_organization(login, provider=HostProvider.GITHUB)
        if organization is None:
            organization = self.directory.get_organization(login)
        if organization is None:
            raise NotFoundError(f"Git organization not found: {login}")

        logger.debug(
            "resolved identity login=%s repo=%s provider=%s",
            organization.login,
            repo_name,
            organization.provider,
        )
        return RepositoryIdentity(
            provider=organization.provider,
            login=organization.login,
            repo=repo_name,
            base_url=organization.base_url,
        )


def _split_identity(identity: str, repo: str | None) -> tuple[str, str]:
    raw = (identity or "").strip().strip("/")
    if not raw:
        raise ValueError("Either a repository identity or a login must be provided")

    if repo is not None and repo.strip():
        return raw, repo.strip()

    login, sep, repo_name = raw.partition("/")
    if not sep or not login or not repo_name or "/" in repo_name:
        raise ValueError(f"Expected 'login/repo', got {identity!r}")
    return login, repo_name
