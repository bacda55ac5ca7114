"""Application configuration settings."""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO")
    format: str = Field(default="console")
    file_path: Optional[str] = Field(default=None)
    directory: str = Field(default="./logs", description="Base directory for per-connection log files")

    class Config:
        env_prefix = "SYNCWATCH_LOG_"


class SessionSettings(BaseSettings):
    """Sync session behaviour."""

    debounce_seconds: float = Field(default=1.0, description="Quiet window before a resync is triggered")
    reconnect_interval_seconds: float = Field(default=1.0)
    max_concurrent_passes: int = Field(default=0, description="Passes allowed at once across sessions, 0 = unlimited")
    settings_file_name: str = Field(default="sync-settings.json")

    class Config:
        env_prefix = "SYNCWATCH_SESSION_"


class TransferSettings(BaseSettings):
    """SFTP transfer configuration."""

    port: int = Field(default=22)
    connect_timeout_seconds: float = Field(default=20.0)
    file_permissions: int = Field(default=0o777)
    remove_files: bool = Field(default=True, description="Delete remote files missing locally")
    preserve_timestamps: bool = Field(default=True)

    class Config:
        env_prefix = "SYNCWATCH_TRANSFER_"


class ErrorTrackingSettings(BaseSettings):
    """Sentry error tracking configuration."""

    sentry_dsn: Optional[str] = Field(default=None)
    environment: str = Field(default="production")

    class Config:
        env_prefix = "SYNCWATCH_"


class StatusSettings(BaseSettings):
    """Health/status HTTP endpoint."""

    enabled: bool = Field(default=False)
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080)

    class Config:
        env_prefix = "SYNCWATCH_STATUS_"


class AppSettings(BaseSettings):
    """Main application settings."""

    name: str = Field(default="syncwatch")
    version: str = Field(default="1.0.0")

    # Sub-settings
    logging: LoggingSettings = LoggingSettings()
    session: SessionSettings = SessionSettings()
    transfer: TransferSettings = TransferSettings()
    error_tracking: ErrorTrackingSettings = ErrorTrackingSettings()
    status: StatusSettings = StatusSettings()

    class Config:
        env_prefix = "SYNCWATCH_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = AppSettings()


def get_settings() -> AppSettings:
    """Get application settings."""
    return settings
