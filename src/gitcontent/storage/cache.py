from __future__ import annotations

import logging
import threading
import time
from typing import Any

logger = logging.getLogger(__name__)

META = "meta"
CONTENT = "content"
CONTENT_RAW = "content:raw"
LISTING = "list"
VARIANTS = (META, CONTENT, CONTENT_RAW, LISTING)


def cache_key(login: str, repo: str, path: str, variant: str | None = None) -> str:
    base = f"{login}:{repo}:{_normalize_path(path)}"
    if variant is None:
        return base
    return f"{base}:{variant}"


def parent_path(path: str) -> str:
    normalized = _normalize_path(path)
    if "/" not in normalized:
        return ""
    return normalized.rsplit("/", 1)[0]


def ancestor_paths(path: str) -> list[str]:
    """Return every enclosing folder of ``path``, nearest first, ending at the root."""
    folders: list[str] = []
    current = _normalize_path(path)
    while current:
        current = parent_path(current)
        folders.append(current)
    return folders


def _normalize_path(path: str) -> str:
    return path.strip().strip("/")


class ResponseCache:
    """In-process TTL cache for host responses.

    Expiry is checked lazily on read; there is no background sweep. All
    operations take a single lock so concurrent in-flight calls can share
    one instance.
    """

    def __init__(self, ttl_seconds: float = 60.0) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")

        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug("response_cache miss key=%s reason=not_found", key)
                return None

            payload, expires_at = entry
            if time.time() >= expires_at:
                del self._entries[key]
                logger.debug("response_cache miss key=%s reason=expired", key)
                return None

        logger.debug("response_cache hit key=%s", key)
        return payload

    def set(self, key: str, payload: Any) -> None:
        expires_at = time.time() + self.ttl_seconds
        with self._lock:
            self._entries[key] = (payload, expires_at)
        logger.debug("response_cache set key=%s ttl_seconds=%s", key, self.ttl_seconds)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_path(self, login: str, repo: str, path: str) -> None:
        keys = [cache_key(login, repo, path)]
        keys.extend(cache_key(login, repo, path, variant) for variant in VARIANTS)
        keys.extend(cache_key(login, repo, folder, LISTING) for folder in ancestor_paths(path))

        with self._lock:
            for key in keys:
                self._entries.pop(key, None)
        logger.debug("response_cache invalidate login=%s repo=%s path=%s", login, repo, path)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
