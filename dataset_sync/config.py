"""Configuration management for dataset-sync."""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, List

from dotenv import load_dotenv

load_dotenv()  # Load .env file if it exists


VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _parse_optional_bool(value: Optional[str]) -> Optional[bool]:
    if value is None or not value.strip():
        return None
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


@dataclass
class Config:
    """Configuration for dataset-sync with validation and defaults."""

    # Repository defaults
    default_branch: str = "main"
    default_remote: str = "origin"
    prune: Optional[bool] = None

    # Commit identity
    author_name: str = "dataset-sync"
    author_email: str = "dataset-sync@localhost"

    # Dataset used by the MCP server
    dataset_dir: Path = field(default_factory=lambda: Path.home() / ".dataset-sync" / "dataset")
    remote_url: Optional[str] = None
    remote_token: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate configuration after initialization."""
        if isinstance(self.dataset_dir, str):
            self.dataset_dir = Path(self.dataset_dir)
        self.dataset_dir = self.dataset_dir.expanduser()

        self.log_level = self.log_level.upper()
        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.log_level}. Must be one of {VALID_LOG_LEVELS}")

        if not self.default_branch or not self.default_branch.strip():
            raise ValueError("default_branch must not be empty")

        if not self.default_remote or not self.default_remote.strip():
            raise ValueError("default_remote must not be empty")

        if not self.author_name or not self.author_email:
            raise ValueError("author_name and author_email must not be empty")

    def to_settings(self):
        """
        Build the Settings override layer used by every public operation.

        Returns:
            Settings populated with this configuration's defaults
        """
        from .git_sync.settings import Settings

        return Settings(
            default_branch=self.default_branch,
            default_remote=self.default_remote,
            prune=self.prune,
        )


def load_configuration() -> Config:
    """Load configuration from environment variables."""
    try:
        defaults = Config()
        return Config(
            default_branch=os.getenv("DATASET_SYNC_DEFAULT_BRANCH", defaults.default_branch),
            default_remote=os.getenv("DATASET_SYNC_DEFAULT_REMOTE", defaults.default_remote),
            prune=_parse_optional_bool(os.getenv("DATASET_SYNC_PRUNE")),
            author_name=os.getenv("DATASET_SYNC_AUTHOR_NAME", defaults.author_name),
            author_email=os.getenv("DATASET_SYNC_AUTHOR_EMAIL", defaults.author_email),
            dataset_dir=Path(os.getenv("DATASET_SYNC_DATASET_DIR", str(defaults.dataset_dir))),
            remote_url=os.getenv("DATASET_SYNC_REMOTE_URL") or None,
            remote_token=os.getenv("DATASET_SYNC_REMOTE_TOKEN") or None,
            log_level=os.getenv("DATASET_SYNC_LOG_LEVEL", defaults.log_level).upper(),
        )
    except (ValueError, TypeError) as e:
        raise ValueError(f"Configuration error: {e}")


def validate_configuration(config: Config) -> List[str]:
    """Validate configuration and return any errors or warnings."""
    errors = []

    if config.dataset_dir.exists() and not config.dataset_dir.is_dir():
        errors.append(f"ERROR: Dataset path is not a directory: {config.dataset_dir}")

    try:
        config.dataset_dir.parent.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        errors.append(f"ERROR: No write permission for dataset parent directory: {config.dataset_dir.parent}")
    except OSError as e:
        errors.append(f"ERROR: Cannot access dataset parent directory {config.dataset_dir.parent}: {e}")

    if config.remote_url:
        if not config.remote_url.startswith(("http://", "https://", "ssh://", "git@", "file://", "/")):
            errors.append(f"WARNING: Remote URL may be invalid: {config.remote_url}")
        if config.remote_token and not config.remote_url.startswith(("http://", "https://")):
            errors.append("WARNING: Remote token is only sent to HTTP(S) remotes and will be ignored")
    elif config.remote_token:
        errors.append("WARNING: Remote token configured without a remote URL")

    logging.getLogger('dataset_sync.config').debug(f"Configuration validated with {len(errors)} issue(s)")
    return errors
