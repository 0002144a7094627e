"""Git-hosted content storage: cached reads, guarded writes, atomic batches."""

from .config import AppConfig, load_config
from .errors import (
    ConflictError,
    ContentStoreError,
    FastForwardRejectedError,
    HostError,
    InvalidUploadError,
    NotFoundError,
    RateLimitedError,
)
from .identity import IdentityResolver
from .retry import RetryPolicy
from .schemas import BatchFile, HostProvider, RepositoryIdentity
from .service import ContentStore
from .validation import (
    ALLOWED_EXTENSIONS,
    MAX_FILE_SIZE,
    sanitize_filename,
    validate_file,
)

__all__ = [
    "ALLOWED_EXTENSIONS",
    "AppConfig",
    "BatchFile",
    "ConflictError",
    "ContentStore",
    "ContentStoreError",
    "FastForwardRejectedError",
    "HostError",
    "HostProvider",
    "IdentityResolver",
    "InvalidUploadError",
    "MAX_FILE_SIZE",
    "NotFoundError",
    "RateLimitedError",
    "RepositoryIdentity",
    "RetryPolicy",
    "load_config",
    "sanitize_filename",
    "validate_file",
]
