"""Application settings using Pydantic Settings for configuration management."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process settings loaded from environment variables (COURRIER_*).

    Servers and accounts live in the TOML mail config, see ``mail_config``.
    """

    model_config = SettingsConfigDict(
        env_prefix="COURRIER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Application
    app_name: str = "Courrier"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # Files
    config_path: Path = Path("config.toml")
    db_path: Path = Path("courrier.db")

    # Concurrency
    max_concurrent_sessions: int = Field(default=4, ge=1)
    max_sessions_per_server: int | None = Field(default=2, ge=1)
    sessions_per_account: int = Field(default=1, ge=1)

    # IMAP networking
    connect_timeout: float = 10.0
    operation_timeout: float = 60.0
    connect_attempts: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = 1.0

    # Mailbox selection (glob patterns on the server path)
    mailbox_include: list[str] = Field(default_factory=lambda: ["*"])
    mailbox_exclude: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def api_base_url(self) -> str:
        """URL the status API is reachable at."""
        return f"http://{self.api_host}:{self.api_port}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
