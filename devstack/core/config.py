"""
Application configuration using Pydantic Settings.
"""
import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Application
    APP_NAME: str = "devstack"
    LOG_LEVEL: str = "info"

    # Docker Engine API
    # Either a unix socket path (unix:///var/run/docker.sock) or an http(s) URL
    DOCKER_HOST: str = "unix:///var/run/docker.sock"
    DOCKER_API_VERSION: str = "v1.43"
    DOCKER_TIMEOUT: float = 60.0

    # Instances
    DAEMON_INSTANCE_TYPE: str = "daemon"
    INSTANCE_LABEL_PREFIX: str = "devstack"

    # Tracking
    TRACKER_ENABLED: bool = False
    TRACKER_URL: str = "http://localhost:8080/events"
    TRACKER_API_KEY: str = ""
    TRACKER_TIMEOUT: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Accept only level names known to the logging module."""
        if logging.getLevelName(value.upper()) == f"Level {value.upper()}":
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


settings = Settings()


def configure_logging(level: str = None) -> None:
    """Configure root logging from LOG_LEVEL."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=f"%(asctime)s {settings.APP_NAME} %(levelname)s [%(name)s] %(message)s",
    )
