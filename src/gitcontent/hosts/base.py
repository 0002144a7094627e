from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

FILE_MODE = "100644"


@dataclass(slots=True)
class HostEntry:
    """One item returned by a host's contents endpoint."""

    name: str
    path: str
    type: str
    sha: str
    size: int = 0
    content: str | None = None


@dataclass(slots=True)
class ContentsWrite:
    content_sha: str
    commit_sha: str


@dataclass(slots=True, frozen=True)
class TreeEntry:
    path: str
    sha: str | None
    mode: str = FILE_MODE
    type: str = "blob"

    def to_payload(self) -> dict[str, str | None]:
        return {"path": self.path, "mode": self.mode, "type": self.type, "sha": self.sha}


class VersionControlHost(Protocol):
    """Operations a Git host must offer to back a content store.

    ``get_contents`` and friends are the host's simple per-file endpoints; the
    blob/tree/commit/ref primitives are what atomic multi-file commits use.
    Missing paths raise ``NotFoundError``; a refused non fast-forward ref update
    raises ``FastForwardRejectedError``.
    """

    def get_contents(
        self, owner: str, repo: str, path: str, *, ref: str | None = None
    ) -> HostEntry | list[HostEntry]: ...

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
    ) -> ContentsWrite: ...

    def delete_contents(
        self,
        owner: str,
        repo: str,
        path: str,
        *,
        sha: str,
        message: str,
        branch: str,
    ) -> str: ...

    def get_blob(self, owner: str, repo: str, sha: str) -> str: ...

    def create_blob(self, owner: str, repo: str, content_base64: str) -> str: ...

    def get_ref(self, owner: str, repo: str, branch: str) -> str: ...

    def get_commit_tree(self, owner: str, repo: str, commit_sha: str) -> str: ...

    def create_tree(
        self,
        owner: str,
        repo: str,
        *,
        base_tree: str,
        entries: Sequence[TreeEntry],
    ) -> str: ...

    def create_commit(
        self,
        owner: str,
        repo: str,
        *,
        message: str,
        tree: str,
        parents: Sequence[str],
    ) -> str: ...

    def update_ref(self, owner: str, repo: str, branch: str, sha: str) -> None: ...
