"""Settings for the playsync synchronization layer."""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_field(default, *env_names: str):
    if env_names:
        alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
        return Field(default=default, validation_alias=alias)
    return Field(default=default)


class Settings(BaseSettings):
    environment: str = _env_field("production", "PLAYSYNC_ENV", "APP_ENV", "ENVIRONMENT")
    service_name: str = _env_field("playsync", "SERVICE_NAME")

    # Remote store (HTTP API of the scheduling platform). When unset the session
    # falls back to the in-process store.
    remote_base_url: Optional[str] = _env_field(None, "PLAYSYNC_REMOTE_BASE_URL", "API_BASE_URL")
    remote_timeout_seconds: float = _env_field(10.0, "PLAYSYNC_REMOTE_TIMEOUT_SECONDS")

    # Push transport
    push_url: Optional[str] = _env_field(None, "PLAYSYNC_PUSH_URL")
    push_namespace: str = _env_field("/social", "PLAYSYNC_PUSH_NAMESPACE")

    # Fetch cache
    relationship_cache_ttl_seconds: float = _env_field(60.0, "PLAYSYNC_RELATIONSHIP_CACHE_TTL_SECONDS")
    cache_max_entries: int = _env_field(1024, "PLAYSYNC_CACHE_MAX_ENTRIES")
    cache_backend: str = _env_field("memory", "PLAYSYNC_CACHE_BACKEND")
    cache_key_prefix: str = _env_field("playsync:", "PLAYSYNC_CACHE_KEY_PREFIX")
    redis_url: str = _env_field("redis://localhost:6379/0", "REDIS_URL")

    # Message stream
    message_page_size: int = _env_field(50, "PLAYSYNC_MESSAGE_PAGE_SIZE")
    # Conversations poll the newest page on this interval when no push URL is set
    chat_poll_interval_seconds: float = _env_field(3.0, "PLAYSYNC_CHAT_POLL_INTERVAL_SECONDS")

    # Observability
    obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
    obs_log_sampling_rate_info: float = _env_field(1.0, "LOG_SAMPLING_RATE_INFO")
    obs_enabled: bool = _env_field(True, "OBS_ENABLED")

    def is_prod(self) -> bool:
        return self.environment.lower() in ("prod", "production", "live")

    def is_dev(self) -> bool:
        return self.environment.lower() in ("dev", "development", "test")

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("cache_backend", mode="before")
    def _normalise_backend(cls, value):  # type: ignore[override]
        """Accept `memory` / `redis` in any case; anything else means memory."""
        text = str(value or "").strip().lower()
        return text if text in ("memory", "redis") else "memory"

    @field_validator("remote_base_url", "push_url", mode="before")
    def _blank_url_is_none(cls, value):  # type: ignore[override]
        if value is None:
            return None
        text = str(value).strip()
        return text.rstrip("/") or None


settings = Settings()
