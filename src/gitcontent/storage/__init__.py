"""Storage layer for the response cache + SQLite organization directory."""

from .cache import ResponseCache, cache_key
from .directory import OrganizationDirectory

__all__ = ["OrganizationDirectory", "ResponseCache", "cache_key"]
