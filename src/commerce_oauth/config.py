# Settings for the authorization server.
# Created: 2026-10-12
#
# Values come from COMMERCE_OAUTH_* environment variables or a .env file.
# Use get_settings() rather than instantiating Settings directly.

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Authorization server settings.

    Every field can be overridden with an environment variable carrying the
    ``COMMERCE_OAUTH_`` prefix, e.g. ``COMMERCE_OAUTH_ISSUER``.
    """

    model_config = SettingsConfigDict(
        env_prefix="COMMERCE_OAUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Public base URL, used as `issuer` and to build endpoint URLs in metadata
    issuer: str = "http://localhost:8080"

    # Where clients and tokens are persisted when `persist` is on
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".commerce-oauth")
    persist: bool = True

    # Lifetimes
    code_ttl_seconds: int = Field(default=600, gt=0)
    access_token_ttl_seconds: int = Field(default=3600, gt=0)
    refresh_token_ttl_days: int = Field(default=30, gt=0)

    # Revoke the previous access token when its refresh token rotates
    revoke_access_on_refresh: bool = True

    # PBKDF2 work factor for client secrets
    secret_hash_iterations: int = Field(default=260_000, ge=1)

    # Append-only JSONL audit trail; disabled when unset
    audit_log_path: Path | None = None

    cors_allowed_origins: list[str] = Field(default_factory=list)
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8080

    @field_validator("issuer")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    return Settings()

