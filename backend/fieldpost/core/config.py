"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "FieldPost"
    environment: Literal["development", "test", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"
    api_v1_prefix: str = "/api/v1"
    public_base_url: str = "http://localhost:8000"

    # Database
    database_url: str = "sqlite+aiosqlite:///./fieldpost.db"

    # Sessions
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    session_expire_hours: int = 24 * 7
    dashboard_session_expire_hours: int = 8
    auth_code_ttl_hours: int = 4

    # Role membership (comma-separated lists)
    approved_team_emails: str = ""
    team_leader_email: str = ""
    pro_email: str = ""

    # Shared secrets
    pro_password_hash: str | None = None
    dashboard_password: str | None = None

    # CORS
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Reverse proxies whose X-Forwarded-For is trusted (comma-separated, "*" for any)
    forwarded_allow_ips: str | None = None

    # Rate Limiting
    rate_limit_backend: Literal["memory", "database"] | None = None
    rate_limit_requests: int = 300
    rate_limit_period: int = 60  # seconds

    # LLM Configuration
    llm_provider: Literal["openai", "anthropic"] = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_base_url: str | None = None
    openai_api_key: str | None = None
    anthropic_api_key: str | None = None

    # Email (Resend)
    resend_api_key: str | None = None
    resend_from_email: str = "FieldPost <noreply@example.com>"
    email_timeout: float = 10.0

    # Meta Graph API
    facebook_page_id: str | None = None
    instagram_account_id: str | None = None
    meta_access_token: str | None = None
    meta_graph_version: str = "v18.0"
    social_timeout: float = 30.0

    # Uploads
    upload_dir: str = "./uploads"

    # Bot detection
    bot_detection_enabled: bool = True

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
