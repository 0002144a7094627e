from __future__ import annotations


class ContentStoreError(Exception):
    """Base class for content storage failures."""


class NotFoundError(ContentStoreError):
    pass


class ConflictError(ContentStoreError):
    pass


class HostError(ContentStoreError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"{status_code} {message}")
        self.status_code = status_code
        self.message = message


class FastForwardRejectedError(HostError, ConflictError):
    """Branch ref update refused because the branch moved since it was read."""


class RateLimitedError(HostError):
    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(status_code, message)
        self.retry_after = retry_after


class InvalidUploadError(ContentStoreError, ValueError):
    pass
