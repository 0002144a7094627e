from __future__ import annotations

import base64
import binascii
import hashlib
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from gitcontent.errors import (
    ConflictError,
    FastForwardRejectedError,
    HostError,
    NotFoundError,
)

from .base import ContentsWrite, HostEntry, TreeEntry

_BASE64_LINE_LENGTH = 60


@dataclass(slots=True)
class _Commit:
    tree: str
    parents: tuple[str, ...]
    message: str


@dataclass(slots=True)
class _Repo:
    blobs: dict[str, bytes] = field(default_factory=dict)
    trees: dict[str, dict[str, str]] = field(default_factory=dict)
    commits: dict[str, _Commit] = field(default_factory=dict)
    refs: dict[str, str] = field(default_factory=dict)


def blob_sha(data: bytes) -> str:
    header = f"blob {len(data)}\0".encode("utf-8")
    return hashlib.sha1(header + data).hexdigest()


def _tree_sha(files: Mapping[str, str]) -> str:
    lines = "\n".join(f"{path} {sha}" for path, sha in sorted(files.items()))
    return hashlib.sha1(f"tree\0{lines}".encode("utf-8")).hexdigest()


def _wrap_base64(data: bytes) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    lines = [
        encoded[i : i + _BASE64_LINE_LENGTH]
        for i in range(0, len(encoded), _BASE64_LINE_LENGTH)
    ]
    return "\n".join(lines) + ("\n" if lines else "")


class MemoryHost:
    """In-process Git object store with host-side fast-forward checks.

    Trees are kept flat (full path -> blob sha). Ref updates are refused
    unless the current head is an ancestor of the new commit, which is the
    same compare-and-swap guarantee a hosted Git server gives.
    """

    def __init__(self, *, default_branch: str = "main") -> None:
        self.default_branch = default_branch
        self._repos: dict[tuple[str, str], _Repo] = {}
        self._lock = threading.RLock()
        self._commit_seq = 0
        self.blob_requests = 0

    def create_repo(
        self,
        owner: str,
        repo: str,
        *,
        files: Mapping[str, str | bytes] | None = None,
        branch: str | None = None,
    ) -> str:
        with self._lock:
            state = _Repo()
            self._repos[(owner, repo)] = state
            blobs = {
                path.strip("/"): self._store_blob(state, _as_bytes(content))
                for path, content in (files or {}).items()
            }
            return self._commit_files(
                state,
                branch or self.default_branch,
                blobs,
                message="Initial commit",
                parents=(),
            )

    def read_file(
        self, owner: str, repo: str, path: str, *, ref: str | None = None
    ) -> bytes | None:
        with self._lock:
            state = self._repo(owner, repo)
            sha = self._files_at(state, ref).get(path.strip("/"))
            if sha is None:
                return None
            return state.blobs[sha]

    def list_files(self, owner: str, repo: str, *, ref: str | None = None) -> dict[str, str]:
        with self._lock:
            return dict(self._files_at(self._repo(owner, repo), ref))

    def commit_parents(self, owner: str, repo: str, commit_sha: str) -> tuple[str, ...]:
        with self._lock:
            return self._repo(owner, repo).commits[commit_sha].parents

    def get_contents(
        self, owner: str, repo: str, path: str, *, ref: str | None = None
    ) -> HostEntry | list[HostEntry]:
        clean_path = path.strip().strip("/")
        with self._lock:
            state = self._repo(owner, repo)
            files = self._files_at(state, ref)

            sha = files.get(clean_path)
            if sha is not None:
                data = state.blobs[sha]
                return HostEntry(
                    name=clean_path.rsplit("/", 1)[-1],
                    path=clean_path,
                    type="file",
                    sha=sha,
                    size=len(data),
                    content=_wrap_base64(data),
                )

            entries = self._list_children(files, clean_path)
            if not entries and clean_path:
                raise NotFoundError(f"Not found: {clean_path}")
            return entries

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
        clean_path = path.strip().strip("/")
        data = _decode_base64(content_base64)
        with self._lock:
            state = self._repo(owner, repo)
            files = dict(self._files_at(state, branch))
            if any(existing.startswith(f"{clean_path}/") for existing in files):
                raise HostError(422, f"{clean_path} is a directory")

            existing_sha = files.get(clean_path)
            if existing_sha is not None:
                if sha is None:
                    raise HostError(422, 'Invalid request. "sha" wasn\'t supplied.')
                if sha != existing_sha:
                    raise ConflictError(f"{clean_path} does not match {sha}")

            files[clean_path] = self._store_blob(state, data)
            commit_sha = self._commit_files(
                state,
                branch,
                files,
                message=message,
                parents=(state.refs[branch],),
            )
            return ContentsWrite(content_sha=files[clean_path], commit_sha=commit_sha)

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
        clean_path = path.strip().strip("/")
        with self._lock:
            state = self._repo(owner, repo)
            files = dict(self._files_at(state, branch))
            existing_sha = files.get(clean_path)
            if existing_sha is None:
                raise NotFoundError(f"Not found: {clean_path}")
            if existing_sha != sha:
                raise ConflictError(f"{clean_path} does not match {sha}")

            del files[clean_path]
            return self._commit_files(
                state,
                branch,
                files,
                message=message,
                parents=(state.refs[branch],),
            )

    def get_blob(self, owner: str, repo: str, sha: str) -> str:
        with self._lock:
            data = self._repo(owner, repo).blobs.get(sha)
        if data is None:
            raise NotFoundError(f"Blob not found: {sha}")
        return _wrap_base64(data)

    def create_blob(self, owner: str, repo: str, content_base64: str) -> str:
        data = _decode_base64(content_base64)
        with self._lock:
            self.blob_requests += 1
            return self._store_blob(self._repo(owner, repo), data)

    def get_ref(self, owner: str, repo: str, branch: str) -> str:
        with self._lock:
            head = self._repo(owner, repo).refs.get(branch)
        if head is None:
            raise NotFoundError(f"Branch not found: {branch}")
        return head

    def get_commit_tree(self, owner: str, repo: str, commit_sha: str) -> str:
        with self._lock:
            commit = self._repo(owner, repo).commits.get(commit_sha)
        if commit is None:
            raise NotFoundError(f"Commit not found: {commit_sha}")
        return commit.tree

    def create_tree(
        self,
        owner: str,
        repo: str,
        *,
        base_tree: str,
        entries: Sequence[TreeEntry],
    ) -> str:
        with self._lock:
            state = self._repo(owner, repo)
            base = state.trees.get(base_tree)
            if base is None:
                raise HostError(422, f"base_tree {base_tree} is not a valid tree")

            files = dict(base)
            for entry in entries:
                path = entry.path.strip("/")
                if entry.sha is None:
                    files.pop(path, None)
                    continue
                if entry.sha not in state.blobs:
                    raise HostError(422, f"tree.sha {entry.sha} is not a valid blob")
                files[path] = entry.sha
            return self._store_tree(state, files)

    def create_commit(
        self,
        owner: str,
        repo: str,
        *,
        message: str,
        tree: str,
        parents: Sequence[str],
    ) -> str:
        with self._lock:
            state = self._repo(owner, repo)
            if tree not in state.trees:
                raise HostError(422, f"tree {tree} is not a valid tree")
            for parent in parents:
                if parent not in state.commits:
                    raise HostError(422, f"parent {parent} is not a valid commit")
            return self._store_commit(state, tree, tuple(parents), message)

    def update_ref(self, owner: str, repo: str, branch: str, sha: str) -> None:
        with self._lock:
            state = self._repo(owner, repo)
            if sha not in state.commits:
                raise HostError(422, f"Object does not exist: {sha}")
            current = state.refs.get(branch)
            if current is None:
                raise NotFoundError(f"Branch not found: {branch}")
            if not self._is_ancestor(state, current, sha):
                raise FastForwardRejectedError(422, "Update is not a fast forward")
            state.refs[branch] = sha

    def _repo(self, owner: str, repo: str) -> _Repo:
        state = self._repos.get((owner, repo))
        if state is None:
            raise NotFoundError(f"Repository not found: {owner}/{repo}")
        return state

    def _files_at(self, state: _Repo, ref: str | None) -> dict[str, str]:
        branch = ref or self.default_branch
        head = state.refs.get(branch)
        if head is None:
            raise NotFoundError(f"Branch not found: {branch}")
        return state.trees[state.commits[head].tree]

    def _list_children(self, files: Mapping[str, str], folder: str) -> list[HostEntry]:
        prefix = f"{folder}/" if folder else ""
        children: dict[str, HostEntry] = {}
        subtrees: dict[str, dict[str, str]] = {}

        for path, sha in files.items():
            if not path.startswith(prefix):
                continue
            rest = path[len(prefix) :]
            name, sep, _ = rest.partition("/")
            if sep:
                subtrees.setdefault(name, {})[path] = sha
                continue
            children[name] = HostEntry(name=name, path=path, type="file", sha=sha)

        for name, subtree in subtrees.items():
            children.setdefault(
                name,
                HostEntry(name=name, path=f"{prefix}{name}", type="dir", sha=_tree_sha(subtree)),
            )
        return [children[name] for name in sorted(children)]

    def _is_ancestor(self, state: _Repo, ancestor: str, descendant: str) -> bool:
        pending = [descendant]
        seen: set[str] = set()
        while pending:
            sha = pending.pop()
            if sha == ancestor:
                return True
            if sha in seen:
                continue
            seen.add(sha)
            pending.extend(state.commits[sha].parents)
        return False

    def _commit_files(
        self,
        state: _Repo,
        branch: str,
        files: Mapping[str, str],
        *,
        message: str,
        parents: tuple[str, ...],
    ) -> str:
        tree = self._store_tree(state, files)
        commit_sha = self._store_commit(state, tree, parents, message)
        state.refs[branch] = commit_sha
        return commit_sha

    @staticmethod
    def _store_blob(state: _Repo, data: bytes) -> str:
        sha = blob_sha(data)
        state.blobs.setdefault(sha, data)
        return sha

    @staticmethod
    def _store_tree(state: _Repo, files: Mapping[str, str]) -> str:
        sha = _tree_sha(files)
        state.trees.setdefault(sha, dict(files))
        return sha

    def _store_commit(
        self, state: _Repo, tree: str, parents: tuple[str, ...], message: str
    ) -> str:
        self._commit_seq += 1
        payload = f"commit\0{tree}\0{','.join(parents)}\0{message}\0{self._commit_seq}"
        sha = hashlib.sha1(payload.encode("utf-8")).hexdigest()
        state.commits[sha] = _Commit(tree=tree, parents=parents, message=message)
        return sha


def _as_bytes(content: str | bytes) -> bytes:
    if isinstance(content, bytes):
        return content
    return content.encode("utf-8")


def _decode_base64(content_base64: str) -> bytes:
    try:
        return base64.b64decode(content_base64, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise HostError(422, "content is not valid Base64") from exc
