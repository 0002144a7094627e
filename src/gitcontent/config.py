from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .schemas import HostProvider

DEFAULT_MAX_FILE_SIZE = 5 * 1024 * 1024
DEFAULT_ALLOWED_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".pdf")


class HostConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider: HostProvider = HostProvider.GITHUB
    api_base: str = "https://api.github.com"
    token_env: str = "GITHUB_TOKEN"
    branch: str = "main"
    timeout_seconds: float = Field(default=20.0, gt=0.0)

    @field_validator("api_base")
    @classmethod
    def validate_api_base(cls, value: str) -> str:
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError("host.api_base must not be empty")
        return normalized

    @field_validator("token_env", "branch")
    @classmethod
    def validate_non_empty(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("host.token_env and host.branch must not be empty")
        return normalized


class CacheConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    ttl_seconds: float = Field(default=60.0, ge=0.0)


class RetryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_retries: int = Field(default=5, ge=0)
    base_delay_ms: int = Field(default=200, ge=0)
    rate_limit_max_retries: int = Field(default=3, ge=0)

    @property
    def base_delay_seconds(self) -> float:
        return self.base_delay_ms / 1000.0


class UploadConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_file_size_bytes: int = Field(default=DEFAULT_MAX_FILE_SIZE, ge=1)
    allowed_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_EXTENSIONS)
    )
    single_write_limit_bytes: int = Field(default=1024 * 1024, ge=1)
    filename_max_length: int = Field(default=50, ge=1)

    @field_validator("allowed_extensions")
    @classmethod
    def normalize_extensions(cls, value: list[str]) -> list[str]:
        normalized: list[str] = []
        for raw in value:
            ext = raw.strip().lower()
            if not ext:
                continue
            if not ext.startswith("."):
                ext = f".{ext}"
            if ext not in normalized:
                normalized.append(ext)
        if not normalized:
            raise ValueError("uploads.allowed_extensions must not be empty")
        return normalized

    @model_validator(mode="after")
    def validate_limits(self) -> UploadConfig:
        if self.single_write_limit_bytes > self.max_file_size_bytes:
            raise ValueError(
                "uploads.single_write_limit_bytes must be <= max_file_size_bytes"
            )
        return self


class ConcurrencyConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    read_window: int = Field(default=3, ge=1)
    blob_workers: int = Field(default=8, ge=1)


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    host: HostConfig = Field(default_factory=HostConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    uploads: UploadConfig = Field(default_factory=UploadConfig)
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    directory_db_path: str = "data/storage/gitcontent.db"


def load_config(path: str | Path) -> AppConfig:
    raw = Path(path).read_text(encoding="utf-8")
    payload = _parse_yaml_or_json(raw)
    try:
        return AppConfig.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc


def _parse_yaml_or_json(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        try:
            parsed = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ValueError(f"Configuration is neither JSON nor YAML: {exc}") from exc
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ValueError("Configuration root must be an object.")
    return parsed
