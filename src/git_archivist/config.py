import logging
import os
import re
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_BACKUP_DIR,
    DEFAULT_BACKUP_SIZE_WARNING_GB,
    DEFAULT_CLONE_DIR,
    DEFAULT_FREE_SPACE_ERROR_GB,
    DEFAULT_HOURS_THRESHOLD,
    DEFAULT_REPO_LIST,
    DEFAULT_ZIP_FOLDER,
)

logger = logging.getLogger(APP_NAME)

_SIZE_MULTIPLIERS = {
    "k": 1024,
    "kb": 1024,
    "m": 1024**2,
    "mb": 1024**2,
    "g": 1024**3,
    "gb": 1024**3,
    "t": 1024**4,
    "tb": 1024**4,
}


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmgt]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    return int(num * _SIZE_MULTIPLIERS[unit])


def parse_gigabytes(value: int | float | str) -> float:
    """Converts a threshold to gigabytes.

    Bare numbers (or numeric strings, as found in environment variables) are
    already gigabytes; suffixed strings such as '500MB' go through `parse_size`.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid size format '{value}'")
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    try:
        return float(text)
    except ValueError:
        return parse_size(text) / 1024**3


def parse_hours(value: int | float | str) -> float:
    """Converts a time window (e.g., 24.5, '36h', '90min') to hours."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid time format '{value}'")
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().lower()
    try:
        return float(text)
    except ValueError:
        pass
    match = re.match(r"^(\d+(?:\.\d+)?)\s*(m|min|h|hr|d|day)s?$", text)
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    if unit in ("m", "min"):
        return num / 60
    multiplier = {"h": 1, "hr": 1, "d": 24, "day": 24}
    return num * multiplier[unit]


def parse_workers(value: int | str) -> int:
    """Validates the worker pool size."""
    workers = int(value)
    if workers < 1:
        raise ValueError(f"Worker count must be at least 1, got {workers}")
    return workers


@dataclass
class PathsConfig:
    """Filesystem locations.

    Attributes:
        repo_list (str): The repository list document.
        clone_dir (str): Root of the local working copies.
        backup_dir (str): Root of the archive tree.
    """

    repo_list: str = DEFAULT_REPO_LIST
    clone_dir: str = DEFAULT_CLONE_DIR
    backup_dir: str = DEFAULT_BACKUP_DIR


@dataclass
class ThresholdsConfig:
    """Branch recency and disk-space thresholds.

    Attributes:
        hours (float): Branches committed to within this window are archived.
        backup_size_warning (float): GB of archives above which a warning is logged.
        free_space_error (float): GB of free space below which the run aborts.
    """

    hours: float = DEFAULT_HOURS_THRESHOLD
    backup_size_warning: float = DEFAULT_BACKUP_SIZE_WARNING_GB
    free_space_error: float = DEFAULT_FREE_SPACE_ERROR_GB


@dataclass
class AuthConfig:
    """Credentials.

    Attributes:
        github_token (str | None): Embedded into HTTPS clone URLs when set.
    """

    github_token: str | None = None


@dataclass
class ArchiveConfig:
    """Archive layout settings.

    Attributes:
        zip_folder (str): Sub-folder holding archives under each branch directory.
    """

    zip_folder: str = DEFAULT_ZIP_FOLDER


@dataclass
class RunConfig:
    """Execution settings.

    Attributes:
        workers (int): Repositories processed concurrently (1 = sequential).
    """

    workers: int = 1


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


# Keys routed through a parser before they reach the dataclass.
_PARSERS = {
    "hours": parse_hours,
    "backup_size_warning": parse_gigabytes,
    "free_space_error": parse_gigabytes,
    "workers": parse_workers,
    "max_log_size": parse_size,
}

# Environment variables layered over the TOML file.
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "REPO_LIST_FILE": ("paths", "repo_list"),
    "CLONE_DIR": ("paths", "clone_dir"),
    "BACKUP_DIR": ("paths", "backup_dir"),
    "HOURS_THRESHOLD": ("thresholds", "hours"),
    "BACKUP_SIZE_WARNING_GB": ("thresholds", "backup_size_warning"),
    "FREE_SPACE_ERROR_GB": ("thresholds", "free_space_error"),
    "GITHUB_TOKEN": ("auth", "github_token"),
    "ZIP_FOLDER_NAME": ("archive", "zip_folder"),
    "BACKUP_WORKERS": ("run", "workers"),
}

_SECTIONS = ("paths", "thresholds", "auth", "archive", "run", "limits")


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        paths (PathsConfig): Filesystem locations.
        thresholds (ThresholdsConfig): Recency and disk-space thresholds.
        auth (AuthConfig): Credentials.
        archive (ArchiveConfig): Archive layout.
        run (RunConfig): Execution settings.
        limits (LimitsConfig): Resource limits.
        base_dir (Path): Directory that relative paths resolve against.
    """

    paths: PathsConfig = field(default_factory=PathsConfig)
    thresholds: ThresholdsConfig = field(default_factory=ThresholdsConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    run: RunConfig = field(default_factory=RunConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    base_dir: Path = field(default_factory=Path.cwd)

    @classmethod
    def load(
        cls,
        path: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "Config":
        """Loads and merges configuration from defaults, a TOML file, and the environment.

        Args:
            path (Path | None): An explicit config file; relative paths inside
                                it resolve against its directory. Defaults to
                                the global CONFIG_FILE when it exists.
            environ (Mapping[str, str] | None): Environment to read overrides from.
                                                Defaults to os.environ.

        Returns:
            Config: The fully merged configuration object.
        """
        instance = cls()

        config_path = path if path is not None else CONFIG_FILE
        if config_path.exists():
            instance._merge_from_file(config_path)
            if path is not None:
                instance.base_dir = config_path.resolve().parent
        elif path is not None:
            logger.warning(f"Config file {path} not found. Using defaults.")

        instance._merge_from_env(os.environ if environ is None else environ)
        return instance

    def resolve(self, value: str) -> Path:
        """Resolves a configured path against the base directory."""
        candidate = Path(value).expanduser()
        if not candidate.is_absolute():
            candidate = self.base_dir / candidate
        return candidate

    @property
    def repo_list_path(self) -> Path:
        return self.resolve(self.paths.repo_list)

    @property
    def clone_root(self) -> Path:
        return self.resolve(self.paths.clone_dir)

    @property
    def backup_root(self) -> Path:
        return self.resolve(self.paths.backup_dir)

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            unknown = set(data) - set(_SECTIONS)
            if unknown:
                logger.warning(
                    f"Unknown config sections in {path}: {', '.join(sorted(unknown))}. "
                    "Ignoring."
                )

            for section in _SECTIONS:
                if section in data:
                    current = getattr(self, section)
                    setattr(
                        self,
                        section,
                        self._update_dataclass(section, current, data[section]),
                    )

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    def _merge_from_env(self, environ: Mapping[str, str]) -> None:
        """Applies the environment variable overrides."""
        grouped: dict[str, dict[str, Any]] = {}
        for var, (section, key) in ENV_OVERRIDES.items():
            value = environ.get(var)
            if value is None or value == "":
                continue
            grouped.setdefault(section, {})[key] = value

        for section, updates in grouped.items():
            current = getattr(self, section)
            setattr(self, section, self._update_dataclass(section, current, updates))

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = {f.name for f in fields(instance)}
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - valid_keys
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                parser = _PARSERS.get(k)
                filtered_updates[k] = parser(v) if parser else v
            except (TypeError, ValueError) as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. "
                    "Falling back to default."
                )

        return replace(instance, **filtered_updates)

    def redacted(self) -> dict[str, dict[str, Any]]:
        """Returns the effective settings as nested dicts with the token masked."""
        out: dict[str, dict[str, Any]] = {}
        for section in _SECTIONS:
            instance = getattr(self, section)
            out[section] = {f.name: getattr(instance, f.name) for f in fields(instance)}
        if out["auth"]["github_token"]:
            out["auth"]["github_token"] = "****"
        return out
