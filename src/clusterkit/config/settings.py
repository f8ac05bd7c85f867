"""Configuration management with Pydantic Settings.

Environment variables are loaded from:
1. Environment variables (highest priority)
2. .env file (development)
3. Defaults (lowest priority)
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "kube-credential-helper"


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging level."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Logging format."""

    JSON = "json"
    TEXT = "text"


class RedisSettings(BaseSettings):
    """Redis configuration for the synchronized store."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: str | None = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")

    @property
    def url(self) -> str:
        """Build Redis URL."""
        if self.password:
            return f"redis://:{self.password}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class StorageSettings(BaseSettings):
    """Secret store configuration."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    local_dir: Path = Field(
        default=DEFAULT_DATA_DIR / "clusters",
        description="Directory of the device-local encrypted store",
    )
    key_file: Path = Field(
        default=DEFAULT_DATA_DIR / "secret.key",
        description="AES-256 key of the device-local store",
    )
    local_service: str = Field(
        default="io.kubehelper.cluster.local",
        description="Namespace of the device-local store",
    )
    synchronized_service: str = Field(
        default="io.kubehelper.cluster.sync",
        description="Namespace of the synchronized store",
    )
    sync_enabled: bool = Field(
        default=False,
        description="Use Redis for the synchronized store (in-process store otherwise)",
    )
    sync_encryption_key: str | None = Field(
        default=None,
        description="Base64 AES key applied to synchronized values",
    )


class ExecSettings(BaseSettings):
    """Exec plugin configuration."""

    model_config = SettingsConfigDict(env_prefix="EXEC_")

    shell: str | None = Field(
        default=None,
        description="Shell used to launch exec plugins (defaults to $SHELL)",
    )
    login_shell: bool = Field(default=True, description="Launch the shell as a login shell")
    non_interactive_shells: list[str] = Field(
        default_factory=lambda: ["bash"],
        description=(
            "Shells whose interactive flag is skipped: interactive bash without a "
            "terminal writes job-control warnings to stderr, which fail the plugin"
        ),
    )


class Settings(BaseSettings):
    """Main application settings.

    All settings can be overridden via environment variables.
    For nested settings, use the appropriate prefix (e.g., REDIS_HOST).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application metadata
    app_name: str = Field(default="kube-credential-helper", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        alias="ENV",
        description="Deployment environment",
    )

    # Logging configuration
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: LogFormat = Field(default=LogFormat.TEXT, description="Logging format")

    # Nested settings
    redis: RedisSettings = Field(default_factory=RedisSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    exec: ExecSettings = Field(default_factory=ExecSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses LRU cache to avoid re-parsing environment variables.
    """
    return Settings()


class HelperSettings(Settings):
    """Settings specific to the credential helper service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    refresh_interval_seconds: int = Field(
        default=30,
        description="Interval between credential re-evaluations",
    )
    kubeconfig_paths: list[Path] = Field(
        default_factory=list,
        description="Tracked kubeconfig files",
    )
    device_id: str | None = Field(default=None, description="Override the device identifier")
    device_user: str | None = Field(default=None, description="Override the device user name")
    default_namespace: str = Field(
        default="default",
        description="Namespace used when a context does not name one",
    )

    @field_validator("refresh_interval_seconds")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        """Ensure the interval is at least one second."""
        return max(1, v)
