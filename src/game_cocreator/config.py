"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    openai_api_key: str
    openai_model: str = "gpt-5.2"
    openai_reasoning_effort: str = "medium"
    openai_store: bool = False
    supabase_url: str
    supabase_service_key: str
    supabase_upload_bucket: str = "uploads"
    event_webhook_url: str | None = None
    admin_token: str
    initial_variant_count: int = 5
    max_variant_count: int = 10
    session_ttl_seconds: float = 3600
    cleanup_interval_seconds: float = 60
    session_idle_timeout_seconds: float = 86400
    game_sdk_script_url: str | None = None
    enabled_categories: str | None = None
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_enabled_categories(raw: str | None) -> set[str] | None:
    """Parse the enabled subject categories from env."""
    if raw is None:
        return None
    cleaned = raw.strip()
    if cleaned in {"", "*"}:
        return None
    categories: set[str] = set()
    for chunk in cleaned.split(","):
        value = chunk.strip().lower()
        if value:
            categories.add(value)
    return categories or None
