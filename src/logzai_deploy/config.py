"""Configuration management for LogzAI deployments."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from logzai_deploy import constants


class Settings(BaseSettings):
    """Deployment settings loaded from ``LOGZAI_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LOGZAI_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Installation layout
    project_dir: str = Field(default=".", description="LogzAI installation directory")
    compose_file: str = Field(
        default=constants.COMPOSE_FILE, description="Compose file, relative to project_dir"
    )
    env_file_name: str = Field(
        default=constants.ENV_FILE, description="Generated run configuration file"
    )

    # Readiness polling
    readiness_max_attempts: int = Field(default=constants.READINESS_MAX_ATTEMPTS, ge=1)
    readiness_interval_seconds: float = Field(
        default=constants.READINESS_INTERVAL_SECONDS, ge=0
    )
    probe_timeout_seconds: float = Field(default=constants.PROBE_TIMEOUT_SECONDS, gt=0)

    # Container runtime
    post_start_settle_seconds: float = Field(
        default=constants.POST_START_SETTLE_SECONDS, ge=0
    )
    command_timeout_seconds: int = Field(default=constants.COMMAND_TIMEOUT_SECONDS, gt=0)

    # HTTPS provisioning
    gateway_config: str = Field(default=constants.GATEWAY_CONFIG)
    gateway_https_template: str = Field(default=constants.GATEWAY_HTTPS_TEMPLATE)
    gateway_container: str = Field(default=constants.GATEWAY_CONTAINER)
    gateway_service: str = Field(default=constants.GATEWAY_SERVICE)
    certbot_binary: str = Field(default="certbot", description="certbot executable")
    use_sudo: bool = Field(default=True, description="Run certbot through sudo")

    # Application
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")
    log_to_file: bool = Field(default=False, description="Also write JSON logs to a file")
    log_directory: str = Field(default="logs")
    log_file_max_bytes: int = Field(default=10 * 1024 * 1024)
    log_file_backup_count: int = Field(default=5)

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def project_path(self) -> Path:
        return Path(self.project_dir)

    @property
    def compose_path(self) -> Path:
        return self.project_path / self.compose_file

    @property
    def env_path(self) -> Path:
        return self.project_path / self.env_file_name

    @property
    def gateway_config_path(self) -> Path:
        return self.project_path / self.gateway_config

    @property
    def gateway_template_path(self) -> Path:
        return self.project_path / self.gateway_https_template

    @property
    def log_directory_path(self) -> Path:
        """Log directory; relative paths resolve against the installation."""
        return self.project_path / self.log_directory

    @property
    def log_file_path(self) -> str:
        return str(self.log_directory_path / "logzai_deploy.log")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
