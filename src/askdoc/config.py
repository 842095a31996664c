"""Runtime configuration for the askdoc service."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="askdoc_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Azure AD app registration (client-credentials flow)
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    authority_host: str = "https://login.microsoftonline.com"
    token_refresh_margin_seconds: float = 300.0

    # Microsoft Graph storage
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    graph_scope: str = "https://graph.microsoft.com/.default"
    drive_id: str = ""
    parent_path: str = "/askdoc"
    # None sends the whole document as one range
    upload_segment_bytes: int | None = None

    # Retrieval
    retrieval_endpoint: str = "https://graph.microsoft.com/beta/copilot/retrieval"
    retrieval_top_n: int = 6

    # Azure OpenAI
    openai_endpoint: str = ""
    openai_api_key: str = ""
    openai_deployment: str = ""
    openai_api_version: str = "2024-08-01-preview"

    # Outbound HTTP
    http_timeout_seconds: float = 30.0
    pipeline_timeout_seconds: float | None = 120.0
    retry_max_attempts: int = 3
    retry_initial_backoff_seconds: float = 0.5
    retry_max_backoff_seconds: float = 8.0

    # API & upload safety
    max_upload_size_mb: int = 25

    # CORS
    cors_allow_origins: tuple[str, ...] = ()  # e.g., ("*") to allow all
    cors_allow_credentials: bool = False
    cors_allow_methods: tuple[str, ...] = ("GET", "POST", "OPTIONS")
    cors_allow_headers: tuple[str, ...] = ("*",)

    @property
    def token_url(self) -> str:
        return f"{self.authority_host.rstrip('/')}/{self.tenant_id}/oauth2/v2.0/token"

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
