# Pydantic settings

from pydantic_settings import BaseSettings, SettingsConfigDict
import os


class Settings(BaseSettings):
    """Application settings"""

    # App
    app_name: str = "Visitor Analytics"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./visitor_analytics.db"

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # Rate limiting
    rate_limit_requests: int = 100
    rate_limit_period: int = 60  # seconds

    # API Key (optional)
    api_key: str | None = None

    # Classification
    session_window_minutes: int = 30
    identity_salt: str = ""
    trust_forwarded_for: bool = False

    # Reporting
    reporting_timezone: str = "UTC"
    stats_cache_ttl_seconds: int = 60

    # Live window
    live_ttl_seconds: int = 30
    live_default_limit: int = 20
    live_max_limit: int = 100
    live_heartbeat_seconds: int = 15
    live_subscriber_buffer: int = 10

    # Ingestion limits
    max_payload_bytes: int = 4096
    raw_payload_max_bytes: int = 1000

    # Retention
    retention_days: int = 90
    retention_sweep_interval_seconds: int = 3600

    model_config = SettingsConfigDict(
        # Use .env.local if it exists (for local dev), otherwise .env (for Docker)
        env_file=".env.local" if os.path.exists(".env.local") else ".env",
        case_sensitive=False
    )


settings = Settings()
