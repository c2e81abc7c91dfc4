"""Configuration using pydantic-settings.

Settings come from ``GRIDSYNC_*`` environment variables or a ``.env`` file.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Signed URLs live 7 days on the backend; cache them for 6.
DEFAULT_CACHE_TTL_SECONDS = 6 * 24 * 60 * 60


class Settings(BaseSettings):
    """gridsync settings loaded from environment variables.

    Environment variables (all optional):
    - GRIDSYNC_API_BASE_URL: Base URL of the backend exposing the endpoints
    - GRIDSYNC_AUTH_TOKEN: Bearer token used for backend calls
    - GRIDSYNC_CACHE_BACKEND: Where signed URLs are cached (file, keyring, memory)
    """

    model_config = SettingsConfigDict(
        env_prefix="GRIDSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Backend
    api_base_url: str = "http://localhost:3000"
    download_url_path: str = "/api/storage/download-url"
    apply_edits_path: str = "/api/documents/edit"
    auth_token: str | None = None

    # URL cache
    cache_backend: str = "file"
    cache_dir: Path = Path.home() / ".config" / "gridsync"
    cache_namespace: str = "file"
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS

    # Timeouts (seconds). resolve_timeout=None leaves resolution unbounded.
    http_timeout: float = 60.0
    resolve_timeout: float | None = None
    save_timeout: float = 30.0

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    @property
    def download_url_endpoint(self) -> str:
        return self.api_base_url.rstrip("/") + self.download_url_path

    @property
    def apply_edits_endpoint(self) -> str:
        return self.api_base_url.rstrip("/") + self.apply_edits_path

    @field_validator("cache_backend")
    @classmethod
    def validate_cache_backend(cls, v: str) -> str:
        """Validate the cache backend is a known value."""
        allowed = {"file", "keyring", "memory"}
        if v not in allowed:
            raise ValueError(f"cache_backend must be one of: {allowed}")
        return v

    @field_validator("cache_namespace")
    @classmethod
    def validate_cache_namespace(cls, v: str) -> str:
        allowed = {"excel", "file"}
        if v not in allowed:
            raise ValueError(f"cache_namespace must be one of: {allowed}")
        return v

    @field_validator("cache_ttl_seconds", "http_timeout", "save_timeout")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("resolve_timeout")
    @classmethod
    def validate_resolve_timeout(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("resolve_timeout must be greater than zero when set")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded once and cached for the lifetime of the process.
    """
    return Settings()
