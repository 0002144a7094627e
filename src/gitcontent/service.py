from __future__ import annotations

import base64
import logging
import threading
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from .commits import (
    ProgressCallback,
    collect_files,
    commit_tree_changes,
    create_blobs,
    encode_content,
)
from .config import AppConfig
from .errors import ConflictError, InvalidUploadError, NotFoundError
from .hosts import create_host
from .hosts.base import HostEntry, TreeEntry, VersionControlHost
from .identity import IdentityResolver
from .orphans import find_unreferenced
from .retry import RetryPolicy, is_fast_forward_rejection
from .schemas import (
    BatchFile,
    BatchResult,
    CopyFolderResult,
    DeleteFolderResult,
    DeleteMultipleResult,
    DeleteResult,
    EntryKind,
    FileContent,
    FileMeta,
    FolderEntry,
    OrphanedImage,
    PutResult,
    RepositoryIdentity,
    UploadResult,
)
from .storage import OrganizationDirectory, ResponseCache, cache_key
from .storage.cache import CONTENT, CONTENT_RAW, LISTING, META
from .urls import get_raw_content_url
from .validation import is_image_path, sanitize_filename, validate_file

logger = logging.getLogger(__name__)

IdentityLike = RepositoryIdentity | str
HostFactory = Callable[[RepositoryIdentity], VersionControlHost]


class ContentStore:
    """Read/write/cache API over files stored in a remote Git repository.

    One instance per process owns the response cache; pass it to callers
    instead of reaching for a global. Reads map a missing path to ``None``
    (or ``[]`` for listings). Writes invalidate the touched paths and their
    parent listings. Multi-file changes go through a single tree commit whose
    branch update is retried when another writer moved the branch first.
    """

    def __init__(
        self,
        *,
        config: AppConfig | None = None,
        resolver: IdentityResolver | None = None,
        host: VersionControlHost | None = None,
        host_factory: HostFactory | None = None,
        cache: ResponseCache | None = None,
        cas_retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.resolver = resolver or IdentityResolver()
        self.cache = cache or ResponseCache(ttl_seconds=self.config.cache.ttl_seconds)
        self.cas_retry_policy = cas_retry_policy or RetryPolicy(
            max_retries=self.config.retry.max_retries,
            base_delay_seconds=self.config.retry.base_delay_seconds,
            retry_on=is_fast_forward_rejection,
            label="git ref update",
        )
        self.branch = self.config.host.branch

        self._host = host
        self._host_factory = host_factory or (
            lambda identity: create_host(identity, self.config)
        )
        self._hosts: dict[tuple[str, str, str | None], VersionControlHost] = {}
        self._hosts_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: AppConfig) -> ContentStore:
        directory = OrganizationDirectory(config.directory_db_path)
        return cls(config=config, resolver=IdentityResolver(directory))

    # Reads

    def get_meta(
        self,
        identity: IdentityLike,
        path: str,
        *,
        skip_cache: bool = False,
    ) -> FileMeta | None:
        resolved = self.resolver.resolve(identity)
        key = cache_key(resolved.login, resolved.repo, path, META)
        cacheable = not is_image_path(path)

        if not skip_cache and cacheable:
            cached = self._cache_get(key)
            if cached is not None:
                return cached

        entry = self._fetch_file(resolved, path)
        if entry is None:
            return None

        result = FileMeta(content_hash=entry.sha, size=entry.size)
        if cacheable:
            self._cache_set(key, result)
        return result

    def get_content(
        self,
        identity: IdentityLike,
        path: str,
        *,
        raw: bool = False,
        skip_cache: bool = False,
    ) -> FileContent | None:
        """Fetch file content; text is decoded to UTF-8 unless ``raw`` is set.

        ``raw=True`` returns the base64 payload with transport line breaks
        stripped, for binary-safe pass-through.
        """
        resolved = self.resolver.resolve(identity)
        key = cache_key(resolved.login, resolved.repo, path, CONTENT_RAW if raw else CONTENT)
        cacheable = not is_image_path(path)

        if not skip_cache and cacheable:
            cached = self._cache_get(key)
            if cached is not None:
                return cached

        entry = self._fetch_file(resolved, path)
        if entry is None:
            return None

        payload = entry.content or ""
        if not payload and entry.size > 0:
            # The contents endpoint omits bodies above its size ceiling.
            payload = self._host_for(resolved).get_blob(resolved.login, resolved.repo, entry.sha)

        payload = _strip_transport(payload)
        if raw:
            content = payload
        else:
            content = base64.b64decode(payload).decode("utf-8", errors="replace")
        result = FileContent(content=content, content_hash=entry.sha)
        if cacheable:
            self._cache_set(key, result)
        return result

    def get_large_content(self, identity: IdentityLike, path: str) -> FileContent | None:
        """Fetch a file of any size through the blob endpoint. Never cached.

        ``content`` is base64 with line breaks stripped.
        """
        resolved = self.resolver.resolve(identity)
        entry = self._fetch_file(resolved, path)
        if entry is None:
            return None

        host = self._host_for(resolved)
        try:
            payload = host.get_blob(resolved.login, resolved.repo, entry.sha)
        except NotFoundError:
            return None
        return FileContent(content=_strip_transport(payload), content_hash=entry.sha)

    def list_folder(
        self,
        identity: IdentityLike,
        path: str,
        *,
        skip_cache: bool = False,
    ) -> list[FolderEntry]:
        resolved = self.resolver.resolve(identity)
        key = cache_key(resolved.login, resolved.repo, path, LISTING)

        if not skip_cache:
            cached = self._cache_get(key)
            if cached is not None:
                return list(cached)

        host = self._host_for(resolved)
        try:
            data = host.get_contents(resolved.login, resolved.repo, path, ref=self.branch)
        except NotFoundError:
            return []

        if not isinstance(data, list):
            return []

        result = [
            FolderEntry(
                name=item.name,
                path=item.path,
                kind=EntryKind.DIR if item.type == "dir" else EntryKind.FILE,
                content_hash=item.sha,
            )
            for item in data
        ]
        self._cache_set(key, result)
        return list(result)

    def exists(self, identity: IdentityLike, path: str) -> bool:
        resolved = self.resolver.resolve(identity)
        if self.get_meta(resolved, path) is not None:
            return True
        return bool(self.list_folder(resolved, path))

    # Single-file writes

    def put(
        self,
        identity: IdentityLike,
        path: str,
        content: str | bytes,
        *,
        expected_hash: str | None = None,
        message: str | None = None,
    ) -> PutResult:
        """Create or update one file.

        With ``expected_hash`` the write only happens while the stored hash
        still equals it; otherwise ``ConflictError`` is raised and nothing is
        written. A file that no longer exists never matches.
        """
        resolved = self.resolver.resolve(identity)
        current = self.get_meta(resolved, path, skip_cache=True)

        if expected_hash is not None:
            current_hash = current.content_hash if current is not None else None
            if current_hash != expected_hash:
                logger.warning(
                    "optimistic lock failed repo=%s path=%s expected=%s current=%s",
                    resolved.slug,
                    path,
                    expected_hash,
                    current_hash,
                )
                raise ConflictError("File was modified by someone else")

        host = self._host_for(resolved)
        write = host.put_contents(
            resolved.login,
            resolved.repo,
            path,
            content_base64=encode_content(content),
            message=message or f"Update {path}",
            branch=self.branch,
            sha=current.content_hash if current is not None else None,
        )
        self._invalidate(resolved, path)
        logger.info("put repo=%s path=%s commit=%s", resolved.slug, path, write.commit_sha)
        return PutResult(content_hash=write.content_sha, commit_ref=write.commit_sha)

    def upload(
        self,
        identity: IdentityLike,
        file: bytes,
        filename: str,
        folder: str,
        *,
        message: str | None = None,
    ) -> UploadResult:
        resolved = self.resolver.resolve(identity)
        uploads = self.config.uploads

        validation = validate_file(
            filename,
            len(file),
            max_size=uploads.max_file_size_bytes,
            allowed_extensions=uploads.allowed_extensions,
        )
        if not validation.valid:
            raise InvalidUploadError(validation.error or "Invalid file")

        sanitized = sanitize_filename(filename, max_length=uploads.filename_max_length)
        clean_folder = folder.strip().rstrip("/")
        file_path = f"{clean_folder}/{sanitized}" if clean_folder else sanitized
        commit_message = message or f"Upload {sanitized}"

        if len(file) > uploads.single_write_limit_bytes:
            return self.upload_large(resolved, file, file_path, message=commit_message)

        host = self._host_for(resolved)
        write = host.put_contents(
            resolved.login,
            resolved.repo,
            file_path,
            content_base64=encode_content(file),
            message=commit_message,
            branch=self.branch,
        )
        self._invalidate(resolved, file_path)
        logger.info("upload repo=%s path=%s bytes=%d", resolved.slug, file_path, len(file))
        return UploadResult(
            path=file_path,
            content_hash=write.content_sha,
            url=self._raw_url(resolved, file_path),
        )

    def upload_large(
        self,
        identity: IdentityLike,
        file: bytes,
        file_path: str,
        *,
        message: str | None = None,
    ) -> UploadResult:
        """Upload one file through the blob endpoint, bypassing the size ceiling."""
        resolved = self.resolver.resolve(identity)
        host = self._host_for(resolved)

        entries = create_blobs(
            host,
            resolved.login,
            resolved.repo,
            [(file_path, encode_content(file))],
            max_workers=1,
        )
        commit_tree_changes(
            host,
            resolved.login,
            resolved.repo,
            branch=self.branch,
            entries=entries,
            message=message or f"Upload {file_path}",
            retry_policy=self.cas_retry_policy,
        )
        self._invalidate(resolved, file_path)
        logger.info("upload_large repo=%s path=%s bytes=%d", resolved.slug, file_path, len(file))
        return UploadResult(
            path=file_path,
            content_hash=entries[0].sha or "",
            url=self._raw_url(resolved, file_path),
        )

    def delete(
        self,
        identity: IdentityLike,
        path: str,
        *,
        message: str | None = None,
    ) -> DeleteResult:
        resolved = self.resolver.resolve(identity)
        existing = self.get_meta(resolved, path, skip_cache=True)
        if existing is None:
            raise NotFoundError(f"File not found: {path}")

        host = self._host_for(resolved)
        commit_sha = host.delete_contents(
            resolved.login,
            resolved.repo,
            path,
            sha=existing.content_hash,
            message=message or f"Delete {path}",
            branch=self.branch,
        )
        self._invalidate(resolved, path)
        logger.info("delete repo=%s path=%s commit=%s", resolved.slug, path, commit_sha)
        return DeleteResult(commit_ref=commit_sha)

    def delete_multiple(
        self,
        identity: IdentityLike,
        paths: Iterable[str],
        *,
        message: str | None = None,
    ) -> DeleteMultipleResult:
        """Delete files one by one; failures are reported, not raised."""
        resolved = self.resolver.resolve(identity)
        deleted = 0
        errors: list[str] = []

        for path in paths:
            try:
                self.delete(resolved, path, message=message or f"Delete {path}")
                deleted += 1
            except Exception as exc:
                logger.exception("failed to delete repo=%s path=%s", resolved.slug, path)
                errors.append(f"{path}: {exc}")

        return DeleteMultipleResult(deleted=deleted, errors=errors)

    # Atomic multi-file commits

    def upload_batch(
        self,
        identity: IdentityLike,
        files: Sequence[BatchFile | Mapping[str, Any]],
        *,
        message: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> BatchResult:
        if not files:
            raise ValueError("No files to upload")

        batch = [
            item if isinstance(item, BatchFile) else BatchFile.model_validate(item)
            for item in files
        ]
        resolved = self.resolver.resolve(identity)
        host = self._host_for(resolved)

        entries = create_blobs(
            host,
            resolved.login,
            resolved.repo,
            [(item.path, encode_content(item.content, item.encoding)) for item in batch],
            max_workers=self.config.concurrency.blob_workers,
            on_progress=on_progress,
        )
        commit_sha = commit_tree_changes(
            host,
            resolved.login,
            resolved.repo,
            branch=self.branch,
            entries=entries,
            message=message or f"Upload {len(batch)} files",
            retry_policy=self.cas_retry_policy,
        )

        for entry in entries:
            self._invalidate(resolved, entry.path)
        return BatchResult(commit_ref=commit_sha, files_uploaded=len(batch))

    def delete_folder(
        self,
        identity: IdentityLike,
        path: str,
        *,
        message: str | None = None,
    ) -> DeleteFolderResult:
        resolved = self.resolver.resolve(identity)
        host = self._host_for(resolved)

        files = collect_files(
            host,
            resolved.login,
            resolved.repo,
            path,
            ref=self.branch,
            max_workers=self.config.concurrency.read_window,
        )
        if not files:
            return DeleteFolderResult(commit_ref=None, files_deleted=0)

        commit_sha = commit_tree_changes(
            host,
            resolved.login,
            resolved.repo,
            branch=self.branch,
            entries=[TreeEntry(path=item.path, sha=None) for item in files],
            message=message or f"Delete folder {path}",
            retry_policy=self.cas_retry_policy,
        )

        for item in files:
            self._invalidate(resolved, item.path)
        self._invalidate(resolved, path)
        return DeleteFolderResult(commit_ref=commit_sha, files_deleted=len(files))

    def copy_folder(
        self,
        identity: IdentityLike,
        source_path: str,
        dest_path: str,
        *,
        message: str | None = None,
    ) -> CopyFolderResult:
        """Copy every file under ``source_path`` to ``dest_path`` in one commit.

        The destination entries point at the existing blobs, so no content is
        downloaded or uploaded again.
        """
        resolved = self.resolver.resolve(identity)
        host = self._host_for(resolved)
        source = source_path.strip().strip("/")
        dest = dest_path.strip().strip("/")

        files = collect_files(
            host,
            resolved.login,
            resolved.repo,
            source,
            ref=self.branch,
            max_workers=self.config.concurrency.read_window,
        )
        if not files:
            return CopyFolderResult(commit_ref=None, copied=0)

        entries = [
            TreeEntry(path=_join(dest, _relative_to(item.path, source)), sha=item.sha)
            for item in files
        ]
        commit_sha = commit_tree_changes(
            host,
            resolved.login,
            resolved.repo,
            branch=self.branch,
            entries=entries,
            message=message or f"Copy {source} to {dest}",
            retry_policy=self.cas_retry_policy,
        )

        for entry in entries:
            self._invalidate(resolved, entry.path)
        return CopyFolderResult(commit_ref=commit_sha, copied=len(entries))

    # Orphans

    def find_orphaned_images(
        self,
        identity: IdentityLike,
        images_folder: str,
        content: str,
    ) -> list[OrphanedImage]:
        resolved = self.resolver.resolve(identity)
        entries = self.list_folder(resolved, images_folder)
        return [
            OrphanedImage(
                name=entry.name,
                path=entry.path,
                url=self._raw_url(resolved, entry.path),
            )
            for entry in find_unreferenced(entries, content)
        ]

    # Internals

    def _fetch_file(self, identity: RepositoryIdentity, path: str) -> HostEntry | None:
        host = self._host_for(identity)
        try:
            data = host.get_contents(identity.login, identity.repo, path, ref=self.branch)
        except NotFoundError:
            return None
        if isinstance(data, list):
            return None
        return data

    def _host_for(self, identity: RepositoryIdentity) -> VersionControlHost:
        if self._host is not None:
            return self._host

        key = (identity.provider.value, identity.login, identity.base_url)
        with self._hosts_lock:
            host = self._hosts.get(key)
            if host is None:
                host = self._host_factory(identity)
                self._hosts[key] = host
        return host

    def _cache_get(self, key: str) -> Any | None:
        if not self.config.cache.enabled:
            return None
        return self.cache.get(key)

    def _cache_set(self, key: str, payload: Any) -> None:
        if self.config.cache.enabled:
            self.cache.set(key, payload)

    def _invalidate(self, identity: RepositoryIdentity, path: str) -> None:
        self.cache.invalidate_path(identity.login, identity.repo, path)

    def _raw_url(self, identity: RepositoryIdentity, path: str) -> str:
        return get_raw_content_url(identity.login, identity.repo, path, branch=self.branch)


def _strip_transport(payload: str) -> str:
    return payload.replace("\n", "").replace("\r", "")


def _relative_to(path: str, folder: str) -> str:
    if not folder:
        return path
    return path[len(folder) :].lstrip("/")


def _join(folder: str, relative: str) -> str:
    return f"{folder}/{relative}" if folder else relative
