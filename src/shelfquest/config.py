"""Configuration management for shelfquest.

Loads configuration from environment variables and provides defaults.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class Config:
    """Application configuration."""

    # Database
    db_path: Path

    # Default user for the CLI (the engine itself is multi-user)
    user_id: str

    # Logging
    log_level: str

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_path_str = os.environ.get(
            "SHELFQUEST_DB_PATH",
            str(Path.home() / ".shelfquest" / "shelfquest.db"),
        )
        db_path = Path(db_path_str).expanduser()

        return cls(
            db_path=db_path,
            user_id=os.environ.get("SHELFQUEST_USER", "me"),
            log_level=os.environ.get("SHELFQUEST_LOG_LEVEL", "WARNING").upper(),
        )

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if str(self.db_path) != ":memory:" and not self.db_path.parent.exists():
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                errors.append(f"Cannot create database directory: {self.db_path.parent}")

        if self.log_level not in LOG_LEVELS:
            errors.append(
                f"Invalid log level '{self.log_level}', expected one of {', '.join(LOG_LEVELS)}"
            )

        if not self.user_id.strip():
            errors.append("SHELFQUEST_USER must not be empty")

        return errors

    @property
    def logging_level(self) -> int:
        """Numeric logging level, falling back to WARNING."""
        return getattr(logging, self.log_level, logging.WARNING)


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global config instance. Used for testing."""
    global _config
    _config = None
