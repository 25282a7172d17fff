"""Configuration management for SplitLedger."""

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SPLITLEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database path
    database_path: Path = Path.home() / ".splitledger" / "splitledger.db"

    # Settlement settings
    settlement_strategy: Literal["two-pointer", "priority"] = "two-pointer"
    persist_settlements: bool = True  # Save emitted transactions as an audit trail

    # Exhaustive minimum-count search bounds
    settlement_search_timeout: float | None = 10.0  # seconds, None = unbounded
    settlement_search_max_users: int = 15

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check the SPLITLEDGER_* environment "
            f"variables or your .env file.\n"
            f"Error: {e}"
        ) from e
