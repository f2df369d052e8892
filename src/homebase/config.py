"""Configuration module for Homebase."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the default vault
_USER_ENV = Path.home() / ".homebase" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

# Directories a new note may be created in (relative to the vault root)
CREATABLE_ROOTS = ("notes/inbox", "notes/folders", "notes/projects")

INBOX_DIR = "notes/inbox"
DAILY_DIR = "notes/daily"
ARCHIVE_DIR = "notes/archive"
FOLDERS_DIR = "notes/folders"
PROJECTS_DIR = "notes/projects"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class HomebaseConfig(BaseModel):
    """Configuration for a Homebase vault and its store."""

    # Vault root; every note location is relative to it
    vault_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("HOMEBASE_VAULT_DIR", str(Path.home() / "Homebase"))
        )
    )
    # Quiet period before a coalesced body edit is flushed to disk
    save_debounce_ms: int = Field(
        default_factory=lambda: int(os.getenv("HOMEBASE_SAVE_DEBOUNCE_MS", "500"))
    )
    # Derived titles longer than this are truncated with an ellipsis
    title_max_length: int = Field(
        default_factory=lambda: int(os.getenv("HOMEBASE_TITLE_MAX_LENGTH", "80"))
    )
    default_target_dir: str = Field(
        default_factory=lambda: os.getenv("HOMEBASE_DEFAULT_TARGET_DIR", INBOX_DIR)
    )
    # Directory for rotating log files; None uses ~/.homebase/logs
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("HOMEBASE_LOG_DIR"))
            if os.getenv("HOMEBASE_LOG_DIR")
            else None
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("HOMEBASE_LOG_LEVEL", "WARNING")
    )

    @model_validator(mode="after")
    def _validate_settings(self) -> "HomebaseConfig":
        """Reject settings the store cannot work with."""
        if self.save_debounce_ms < 0:
            raise ValueError("save_debounce_ms must be >= 0")
        if self.title_max_length < 1:
            raise ValueError("title_max_length must be >= 1")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError("log_level must be one of: " + ", ".join(LOG_LEVELS))
        if not self.default_target_dir.startswith(CREATABLE_ROOTS):
            raise ValueError(
                "default_target_dir must be under one of: "
                + ", ".join(CREATABLE_ROOTS)
            )
        if self.save_debounce_ms > 10_000:
            logger.warning(
                "save_debounce_ms=%d is unusually long; edits may sit unsaved "
                "for over ten seconds.",
                self.save_debounce_ms,
            )
        return self

    @property
    def save_debounce_seconds(self) -> float:
        return self.save_debounce_ms / 1000.0

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on vault_dir."""
        if path.is_absolute():
            return path
        return self.vault_dir / path

    def get_log_dir(self) -> Path:
        """Get the directory for persistent log files."""
        if self.log_dir is None:
            return Path.home() / ".homebase" / "logs"
        return self.get_absolute_path(self.log_dir)


# Create a global config instance
config = HomebaseConfig()
