"""fieldsync configuration settings using pydantic-settings."""

from functools import cached_property
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration settings for the fieldsync client.

    Settings are loaded from environment variables with the FIELDSYNC_ prefix.
    For example, FIELDSYNC_BACKEND_URL=https://abc.example.co sets backend_url.
    """

    model_config = SettingsConfigDict(
        env_prefix="FIELDSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Backend settings
    backend_url: str = "http://localhost:54321"
    api_key: str = ""
    access_token: str | None = None  # user session token, falls back to api_key
    photo_bucket: str = "project-photos"
    photo_table: str = "project_photos"
    classify_function: str = "analyze-photo"
    request_timeout: float = 30.0

    # Sync behaviour
    probe_interval: float = 15.0  # seconds between connectivity probes
    retry_base_delay: float = 5.0
    retry_max_delay: float = 300.0

    # Identity of this field device, attached to every log record
    device_id: str | None = None

    # File paths
    data_dir: Path = Path("~/.local/share/fieldsync")

    # Logging
    log_level: str = "INFO"

    @field_validator("request_timeout", "probe_interval", "retry_base_delay", "retry_max_delay")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Ensure timing settings are positive."""
        if v <= 0:
            raise ValueError("timing settings must be greater than zero")
        return v

    @field_validator("backend_url")
    @classmethod
    def validate_backend_url(cls, v: str) -> str:
        """Strip the trailing slash so paths can be appended."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("backend_url must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @cached_property
    def data_path(self) -> Path:
        """Return expanded data directory path."""
        return self.data_dir.expanduser()

    @cached_property
    def queue_db_path(self) -> Path:
        """Return the offline photo queue database path."""
        return self.data_path / "photo_queue.db"
