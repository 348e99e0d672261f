"""Configuration module for the Unfold note store."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from unfold_store import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the data it describes
_USER_ENV = Path.home() / ".unfold" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "stable"
DATABASE_BASENAME = "unfold"
IMAGES_DIRNAME = "images"


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    return Path(value).expanduser() if value else default


class StoreConfig(BaseModel):
    """Configuration for the note store and its command server."""

    # Roaming data: holds the relational store file
    app_data_dir: Path = Field(
        default_factory=lambda: _env_path(
            "UNFOLD_APP_DATA_DIR", Path.home() / ".unfold" / "data"
        )
    )
    # Machine-local data: holds the image blob directory
    app_local_data_dir: Path = Field(
        default_factory=lambda: _env_path(
            "UNFOLD_APP_LOCAL_DATA_DIR",
            _env_path("UNFOLD_APP_DATA_DIR", Path.home() / ".unfold" / "data"),
        )
    )
    # Build channel; non-stable channels get their own database file so a
    # development build never migrates the user's real store
    channel: str = Field(
        default_factory=lambda: os.getenv("UNFOLD_CHANNEL", DEFAULT_CHANNEL)
    )
    # Explicit database file name, overrides the channel-derived one
    database_name: Optional[str] = Field(
        default_factory=lambda: os.getenv("UNFOLD_DATABASE_NAME") or None
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("UNFOLD_SERVER_NAME", "unfold-store"))
    server_version: str = Field(default=__version__)
    # Logging
    log_level: str = Field(
        default_factory=lambda: os.getenv("UNFOLD_LOG_LEVEL", "INFO").upper()
    )
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("UNFOLD_LOG_DIR")).expanduser()
            if os.getenv("UNFOLD_LOG_DIR")
            else None
        )
    )

    @model_validator(mode="after")
    def _validate_names(self) -> "StoreConfig":
        """Reject channel and database names that cannot form a file name."""
        if not self.channel or not self.channel.strip():
            raise ValueError("channel must not be empty")
        if self.database_name is not None:
            if "/" in self.database_name or "\\" in self.database_name:
                raise ValueError("database_name must be a file name, not a path")
        return self

    def get_database_name(self) -> str:
        """File name of the relational store for the configured channel."""
        if self.database_name:
            return self.database_name
        if self.channel == DEFAULT_CHANNEL:
            return f"{DATABASE_BASENAME}.db"
        return f"{DATABASE_BASENAME}-{self.channel}.db"

    def get_database_path(self) -> Path:
        """Absolute path of the store file; creates its parent directory."""
        db_path = self.app_data_dir.resolve() / self.get_database_name()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return db_path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        return f"sqlite:///{self.get_database_path()}"

    def get_images_dir(self) -> Path:
        """Absolute path of the blob directory, created on demand."""
        images_dir = self.app_local_data_dir.resolve() / IMAGES_DIRNAME
        images_dir.mkdir(parents=True, exist_ok=True)
        return images_dir


# Create a global config instance
config = StoreConfig()
