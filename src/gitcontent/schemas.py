from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DTOBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class HostProvider(StrEnum):
    """``MEMORY`` is a process-local store, one per ``ContentStore`` and login."""

    GITHUB = "GITHUB"
    GITLAB = "GITLAB"
    MEMORY = "MEMORY"


class EntryKind(StrEnum):
    FILE = "file"
    DIR = "dir"


class GitOrganization(DTOBase):
    provider: HostProvider = HostProvider.GITHUB
    login: str
    base_url: str | None = None

    @field_validator("login")
    @classmethod
    def validate_login(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("login must not be empty")
        return normalized


class RepositoryIdentity(DTOBase):
    model_config = ConfigDict(extra="forbid", frozen=True)

    provider: HostProvider
    login: str
    repo: str
    base_url: str | None = None

    @field_validator("login", "repo")
    @classmethod
    def validate_names(cls, value: str) -> str:
        normalized = value.strip().strip("/")
        if not normalized:
            raise ValueError("login and repo must not be empty")
        return normalized

    @property
    def slug(self) -> str:
        return f"{self.login}/{self.repo}"


class FileMeta(DTOBase):
    content_hash: str
    size: int = Field(ge=0)


class FileContent(DTOBase):
    content: str
    content_hash: str


class FolderEntry(DTOBase):
    name: str
    path: str
    kind: EntryKind
    content_hash: str


class PutResult(DTOBase):
    content_hash: str
    commit_ref: str


class UploadResult(DTOBase):
    path: str
    content_hash: str
    url: str


class DeleteResult(DTOBase):
    commit_ref: str


class BatchFile(DTOBase):
    path: str
    content: str | bytes
    encoding: Literal["utf-8", "base64"] = "utf-8"

    @field_validator("path")
    @classmethod
    def validate_path(cls, value: str) -> str:
        normalized = value.strip().strip("/")
        if not normalized:
            raise ValueError("batch file path must not be empty")
        return normalized


class BatchResult(DTOBase):
    commit_ref: str
    files_uploaded: int


class DeleteFolderResult(DTOBase):
    commit_ref: str | None
    files_deleted: int


class CopyFolderResult(DTOBase):
    commit_ref: str | None
    copied: int


class DeleteMultipleResult(DTOBase):
    deleted: int
    errors: list[str] = Field(default_factory=list)


class OrphanedImage(DTOBase):
    name: str
    path: str
    url: str


class ValidationResult(DTOBase):
    valid: bool
    error: str | None = None


class UploadProgress(DTOBase):
    current: int
    total: int
    filename: str
