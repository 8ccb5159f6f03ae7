"""
Application configuration using pydantic-settings.
All config is validated at startup - fail fast if anything is missing.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_base_url: str = "http://localhost:8000"
    log_level: str = "INFO"

    # Database
    database_url: str
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (worker heartbeats)
    redis_url: str = "redis://localhost:6379/0"

    # Sentry
    sentry_dsn: str = ""

    # Meta Lead Ads
    meta_app_secret: str = ""  # Signs X-Hub-Signature-256 on webhook deliveries
    meta_verify_token: str = ""  # Shared token for the subscription handshake
    meta_access_token: str = ""
    meta_page_id: str = ""
    meta_graph_api_version: str = "v21.0"
    meta_api_timeout_seconds: float = 10.0

    # Lead assignment
    meta_preferred_agent_email: str = ""
    agent_eligible_roles: str = "Agent,SuperAgent"  # Comma-separated

    # Phone normalization
    phone_default_country_code: str = "91"

    # Backup sync job
    cron_secret: str = ""
    sync_enabled: bool = True
    sync_interval_seconds: int = 900
    sync_default_window_hours: int = 1
    sync_max_window_days: int = 90
    placeholder_batch_size: int = 50

    @property
    def eligible_roles(self) -> list[str]:
        return [r.strip() for r in self.agent_eligible_roles.split(",") if r.strip()]

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache()
def get_settings() -> Settings:
    return Settings()
