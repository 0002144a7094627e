"""Atomic multi-file commits built from blob, tree, commit and ref primitives."""

from __future__ import annotations

import base64
import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed

from .errors import NotFoundError
from .hosts.base import HostEntry, TreeEntry, VersionControlHost
from .retry import RetryPolicy
from .schemas import UploadProgress

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[UploadProgress], None]


def encode_content(content: str | bytes, encoding: str = "utf-8") -> str:
    """Return the base64 transfer form of ``content``."""
    if encoding == "base64":
        if isinstance(content, bytes):
            return content.decode("ascii")
        return content
    if isinstance(content, str):
        content = content.encode("utf-8")
    return base64.b64encode(content).decode("ascii")


def create_blobs(
    host: VersionControlHost,
    owner: str,
    repo: str,
    files: Sequence[tuple[str, str]],
    *,
    max_workers: int = 8,
    on_progress: ProgressCallback | None = None,
) -> list[TreeEntry]:
    """Create one blob per distinct payload and map every path onto it.

    ``files`` holds ``(path, base64 payload)`` pairs. A later duplicate path
    replaces an earlier one. Runs once per batch, never inside a retry.
    """
    payload_by_path: dict[str, str] = {}
    for path, payload in files:
        payload_by_path[path] = payload

    paths_by_payload: dict[str, list[str]] = {}
    for path, payload in payload_by_path.items():
        paths_by_payload.setdefault(payload, []).append(path)

    total = len(payload_by_path)
    completed = 0
    sha_by_path: dict[str, str] = {}

    workers = max(1, min(max_workers, len(paths_by_payload)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {
            executor.submit(host.create_blob, owner, repo, payload): payload
            for payload in paths_by_payload
        }
        for future in as_completed(futures):
            sha = future.result()
            for path in paths_by_payload[futures[future]]:
                sha_by_path[path] = sha
                completed += 1
                if on_progress is not None:
                    on_progress(
                        UploadProgress(
                            current=completed,
                            total=total,
                            filename=path.rsplit("/", 1)[-1],
                        )
                    )

    logger.info(
        "blobs created repo=%s/%s files=%d unique_blobs=%d",
        owner,
        repo,
        total,
        len(paths_by_payload),
    )
    return [TreeEntry(path=path, sha=sha_by_path[path]) for path in payload_by_path]


def commit_tree_changes(
    host: VersionControlHost,
    owner: str,
    repo: str,
    *,
    branch: str,
    entries: Sequence[TreeEntry],
    message: str,
    retry_policy: RetryPolicy,
) -> str:
    """Apply ``entries`` on top of the branch head as a single commit.

    Every attempt re-reads the head and its tree, so a retry after a rejected
    ref update rebuilds on the latest state. Entries with ``sha=None`` delete.
    """
    if not entries:
        raise ValueError("No tree entries to commit")

    def attempt() -> str:
        head = host.get_ref(owner, repo, branch)
        base_tree = host.get_commit_tree(owner, repo, head)
        tree = host.create_tree(owner, repo, base_tree=base_tree, entries=entries)
        commit = host.create_commit(
            owner,
            repo,
            message=message,
            tree=tree,
            parents=[head],
        )
        host.update_ref(owner, repo, branch, commit)
        return commit

    commit_sha = retry_policy.run(attempt)
    logger.info(
        "tree commit repo=%s/%s branch=%s entries=%d commit=%s",
        owner,
        repo,
        branch,
        len(entries),
        commit_sha,
    )
    return commit_sha


def collect_files(
    host: VersionControlHost,
    owner: str,
    repo: str,
    folder: str,
    *,
    ref: str | None = None,
    max_workers: int = 3,
) -> list[HostEntry]:
    """List every file under ``folder``, one directory level per round.

    Sibling directories of a level are listed concurrently, at most
    ``max_workers`` at a time. Missing paths contribute nothing.
    """
    files: list[HostEntry] = []
    pending = [folder.strip().strip("/")]

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        while pending:
            listings = list(
                executor.map(
                    lambda path: _list_or_empty(host, owner, repo, path, ref),
                    pending,
                )
            )
            pending = []
            for listing in listings:
                for item in listing:
                    if item.type == "dir":
                        pending.append(item.path)
                    else:
                        files.append(item)
    return files


def _list_or_empty(
    host: VersionControlHost,
    owner: str,
    repo: str,
    path: str,
    ref: str | None,
) -> list[HostEntry]:
    try:
        data = host.get_contents(owner, repo, path, ref=ref)
    except NotFoundError:
        return []
    if isinstance(data, list):
        return data
    return [data]
