"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file and override existing env vars
load_dotenv(override=True)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The instance is frozen: it is built once at startup and handed to every
    provisioner explicitly, so tests can fabricate credentials by constructing
    their own ``Settings(...)``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # GitHub (source control)
    github_token: str = Field(default="")
    github_org: str | None = None
    github_api_url: str = "https://api.github.com"
    github_private_repos: bool = False

    # Railway (compute)
    railway_token: str = Field(default="")
    railway_team_id: str | None = None
    railway_api_url: str = "https://backboard.railway.app/graphql/v2"

    # Cloudflare (DNS)
    cloudflare_token: str = Field(default="")
    cloudflare_zone_id: str = Field(default="")
    cloudflare_zone_id_app: str = Field(default="")
    cloudflare_api_url: str = "https://api.cloudflare.com/client/v4"

    # Managed domain families
    root_domain: str = "be1st.io"
    app_root_domain: str = "be1st.app"
    default_admin_email: str = "admin@be1st.io"

    # Timeouts and retries
    http_timeout_seconds: float = 30.0
    git_timeout_seconds: float = 300.0
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 2.0
    retry_max_delay_seconds: float = 30.0
    compute_settle_seconds: float = 20.0
    build_poll_interval_seconds: float = 10.0
    build_timeout_seconds: float = 600.0

    # Deployment session retention
    deployment_ttl_hours: int = 24

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    log_directory: str = "logs"
    log_file_name: str = "launchpad.log"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
