"""Configuration management for ledger-sync."""

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Document store
    store_backend: Literal["local", "firestore"] = "local"
    database_path: Path = Path.home() / ".ledger_sync" / "ledger_sync.db"

    # Firestore (only for store_backend=firestore)
    firestore_project_id: str | None = None
    firestore_access_token: str | None = None
    firestore_database: str = "(default)"
    poll_interval_seconds: float = 5.0

    # Session
    current_user_id: str | None = None  # Default identity for CLI commands
    sync_timeout_seconds: float = 30.0

    # Display
    currency_symbol: str = "₹"

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        if self.store_backend == "local":
            self.database_path.parent.mkdir(parents=True, exist_ok=True)


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ValueError(
            f"Failed to load settings. Make sure your .env file is valid. "
            f"See .env.example for reference.\n"
            f"Error: {e}"
        ) from e
