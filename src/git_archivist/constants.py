import os
from pathlib import Path

"""Global constants and default locations for Git Archivist.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, and the default thresholds used when no configuration
overrides them.
"""

# --- Identity ---
APP_NAME = "git-archivist"
"""str: The human-readable application name (also the logger name)."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "git-archivist"
"""Path: The directory for runtime state data (logs)."""

LOG_FILE = STATE_DIR / "backup.log"
"""Path: The default log file used by non-interactive runs."""

_XDG_CONFIG = os.environ.get("XDG_CONFIG_HOME")
_BASE_CONFIG = Path(_XDG_CONFIG) if _XDG_CONFIG else Path.home() / ".config"

CONFIG_DIR: Path = _BASE_CONFIG / "git-archivist"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

# --- Defaults ---
DEFAULT_REPO_LIST = "backup_gits.md"
DEFAULT_CLONE_DIR = "repos"
DEFAULT_BACKUP_DIR = "backups"
DEFAULT_HOURS_THRESHOLD = 24.5
DEFAULT_BACKUP_SIZE_WARNING_GB = 10.0
DEFAULT_FREE_SPACE_ERROR_GB = 20.0
DEFAULT_ZIP_FOLDER = "zips"

# --- Git / Archive Constants ---
REMOTE_NAME = "origin"
"""str: The remote every mirror tracks."""

FALLBACK_DEFAULT_BRANCH = "master"
"""str: Used when origin/HEAD cannot be resolved."""

ARCHIVE_EXTENSION = "zip"

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
"""str: strftime pattern embedded in archive file names."""

GIT_DIR_NAME = ".git"
