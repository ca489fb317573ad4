"""Configuration system for the data manager."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Data Manager Configuration."""

    # Container
    container_name: str = Field(
        default="Model",
        min_length=1,
        description="Persistent container name; schema resources are named after it",
    )
    resource_path: Path = Field(
        default=Path("./resources"),
        description="Directory holding <container>.schemas/ and <container>.mappings/",
    )

    # Storage
    store_path: Path = Field(
        default=Path("./data/Model.sqlite"),
        description="Path to the persistent SQLite store",
    )
    scratch_path: Path | None = Field(
        default=None,
        description="Directory for intermediate migration stores (system temp dir if unset)",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    log_json: bool = Field(
        default=False,
        description="Emit JSON structured log lines",
    )

    # Cross-process locking
    filelock_enabled: bool = Field(
        default=True,
        description="Serialize migrations of one store across processes with a lock file",
    )
    filelock_timeout: float = Field(
        default=30.0,
        ge=0.0,
        description="Seconds to wait for the migration lock",
    )
    filelock_poll_interval: float = Field(
        default=0.1,
        gt=0.0,
        description="Seconds between lock acquisition attempts",
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    model_config = {
        "env_prefix": "DATA_MANAGER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


# Settings singleton with dependency injection support
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the settings instance (lazy-loaded singleton).

    Returns:
        The Settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def override_settings(new_settings: Settings) -> None:
    """Override the settings instance (for testing).

    Args:
        new_settings: The new Settings instance to use.
    """
    global _settings
    _settings = new_settings


def reset_settings() -> None:
    """Reset settings to None (forces reload on next get_settings call)."""
    global _settings
    _settings = None
