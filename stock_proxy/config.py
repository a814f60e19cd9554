"""
Centralized configuration management for the Stock Proxy API.

All configuration values should be defined here and imported elsewhere.
Supports environment variable overrides.
"""
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        # e.g., CACHE_TTL_PRICE_HISTORY_SECONDS=10 overrides cache_ttl_price_history_seconds
    )

    # Application
    app_name: str = "Stock Aggregation Proxy"
    app_version: str = "1.0.0"
    debug: bool = False
    # DEBUG, INFO, WARNING, ... ; unset falls back to DEBUG when debug is on, else INFO
    log_level: Optional[str] = None

    # CORS
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173"
    ]

    # Upstream pricing service
    stock_api_base_url: str = "http://20.244.56.144/evaluation-service"
    upstream_timeout_seconds: float = 10.0

    # Identity fields posted to /auth
    auth_email: str = ""
    auth_name: str = ""
    auth_roll_no: str = ""
    auth_access_code: str = ""
    client_id: str = ""
    client_secret: str = ""

    # Credentials are renewed this long before the issuer-reported expiry
    credential_safety_margin_seconds: int = 60

    # Cache settings
    cache_ttl_default_seconds: int = 60
    cache_ttl_stock_list_seconds: int = 3600   # stock list rarely changes
    cache_ttl_price_history_seconds: int = 30  # prices are time-sensitive
    cache_sweep_interval_seconds: float = 15.0

    # Window used when a request does not pass ?minutes=
    default_window_minutes: int = 60


# Singleton instance
settings = Settings()


def get_settings() -> Settings:
    """Get the settings instance. Useful for dependency injection."""
    return settings
