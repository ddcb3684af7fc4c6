"""
Application settings for the clinic audit service.

Usage:
    from clinic_audit.config import settings
    print(settings.export_row_cap)
"""
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Database ---
    # DATABASE_URL; postgres:// URLs are accepted and rewritten
    database_url: str = "sqlite:///./clinic_audit.db"
    db_pool_size: int = 5
    db_max_overflow: int = 10

    # --- Application ---
    debug: bool = False
    app_version: str = "0.1.0"

    # Comma-separated list of allowed frontend origins
    cors_origins: str = "*"

    # --- Log viewer ---
    default_page_size: int = 50
    max_page_size: int = 500
    export_row_cap: int = 10000
    statistics_window_days: int = 30

    # --- Recorder ---
    session_hash_prefix_length: int = 20
    fallback_log_path: str = "error_fallback_log.json"
    fallback_log_max_entries: int = 10

    @property
    def cors_origins_list(self) -> List[str]:
        """Split comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
