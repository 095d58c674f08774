"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator


class CalendarSettings(BaseModel):
    """Rolling window, retention and write behaviour of the calendar store."""
    future_months: int = 2
    retention_months: int = 3
    default_slot_minutes: int = 30
    max_write_retries: int = 3

    @field_validator("future_months", "retention_months")
    @classmethod
    def validate_months(cls, value: int) -> int:
        """Window sizes are counted in whole months."""
        if not 0 <= value <= 24:
            raise ValueError(f"Month windows must be between 0 and 24, got {value}")
        return value

    @field_validator("default_slot_minutes")
    @classmethod
    def validate_slot_minutes(cls, value: int) -> int:
        """Ensure the default slot duration fits in a day."""
        if not 0 < value <= 1440:
            raise ValueError("default_slot_minutes must be between 1 and 1440")
        return value

    @field_validator("max_write_retries")
    @classmethod
    def validate_retries(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_write_retries must be at least 1")
        return value


class SchedulerSettings(BaseModel):
    """Periods and jitter of the background reconciliation tasks."""
    full_pass_hour: int = 2
    booking_sync_hours: int = 6
    availability_sync_hours: int = 6
    jitter_seconds: int = 120
    startup_delay_seconds: int = 10
    misfire_grace_seconds: int = 60

    @field_validator("full_pass_hour")
    @classmethod
    def validate_hour(cls, v: int) -> int:
        """Validate hour is between 0 and 23."""
        if not 0 <= v <= 23:
            raise ValueError(f"Hour must be between 0 and 23, got {v}")
        return v

    @field_validator("booking_sync_hours", "availability_sync_hours")
    @classmethod
    def validate_interval(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Sync intervals must be greater than zero")
        return value

    @field_validator("jitter_seconds", "startup_delay_seconds", "misfire_grace_seconds")
    @classmethod
    def validate_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("Scheduler delays must not be negative")
        return value


class LedgerSettings(BaseModel):
    """Connection to the appointment ledger and professional directory API."""
    base_url: str = ""
    api_token: str = ""
    timeout_seconds: float = 10.0

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "Asia/Kolkata"
    store_dir: Path = Path(".calendar-store")
    calendar: CalendarSettings = Field(default_factory=CalendarSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Ensure the canonical local timezone is known."""
        try:
            pendulum.timezone(value)
        except Exception as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
