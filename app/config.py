"""
Analytics Configuration

All environment variables and settings for the analytics engine.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ==========================================================================
    # APP
    # ==========================================================================
    app_name: str = "Omnichannel Analytics"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # ==========================================================================
    # SUPABASE (bucket store + auxiliary record sets)
    # ==========================================================================
    supabase_url: str | None = None
    supabase_service_key: str | None = None

    # ==========================================================================
    # ANALYTICS STORE
    # ==========================================================================
    analytics_store_backend: Literal["supabase", "memory"] = "supabase"
    analytics_store_max_retries: int = 5

    # Default scope when the caller does not name one
    analytics_org_id: str | None = None
    analytics_user_id: str | None = None

    # ==========================================================================
    # ANALYTICS BEHAVIOR
    # ==========================================================================
    analytics_seed_fallback: bool = True
    analytics_conversion_basis: Literal["sessions", "messages"] = "sessions"
    analytics_dashboard_days: int = 14
    analytics_chart_days: int = 7
    analytics_top_conversations: int = 10
    analytics_scan_limit_large: int = 400  # leads, conversations
    analytics_scan_limit_small: int = 200  # follow-up logs, outreach, bookings

    # ==========================================================================
    # CRM (lead forwarding)
    # ==========================================================================
    crm_webhook_url: str | None = None
    crm_scenario_id: str | None = None
    crm_timeout_seconds: float = 10.0

    # ==========================================================================
    # CORS
    # ==========================================================================
    cors_origins: str = "*"

    # ==========================================================================
    # SERVER
    # ==========================================================================
    host: str = "0.0.0.0"
    port: int = 8000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
