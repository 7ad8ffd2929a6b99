"""Tests for the configuration management subsystem."""

import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_archivist.config import (
    Config,
    parse_gigabytes,
    parse_hours,
    parse_size,
    parse_workers,
)


@pytest.fixture(autouse=True)
def no_global_config(tmp_path: Path, mocker: MagicMock) -> None:
    """Points the global config file somewhere that does not exist."""
    mocker.patch("git_archivist.config.CONFIG_FILE", tmp_path / "missing.toml")


def test_config_defaults() -> None:
    """Verifies that the configuration initializes with the documented defaults."""
    conf = Config.load(environ={})
    assert conf.paths.repo_list == "backup_gits.md"
    assert conf.paths.clone_dir == "repos"
    assert conf.paths.backup_dir == "backups"
    assert conf.thresholds.hours == 24.5
    assert conf.thresholds.backup_size_warning == 10
    assert conf.thresholds.free_space_error == 20
    assert conf.auth.github_token is None
    assert conf.archive.zip_folder == "zips"
    assert conf.run.workers == 1


def test_config_load_from_file_resolves_relative_paths(tmp_path: Path) -> None:
    """Verifies TOML values and that relative paths resolve against the file's directory."""
    config_dir = tmp_path / "etc"
    config_dir.mkdir()
    config_file = config_dir / "backup.toml"
    config_file.write_text(
        "[paths]\n"
        'repo_list = "list.md"\n'
        'backup_dir = "/srv/backups"\n'
        "[thresholds]\n"
        'hours = "36h"\n'
        'backup_size_warning = "512MB"\n'
        "free_space_error = 5\n"
        "[run]\n"
        "workers = 4\n"
    )

    conf = Config.load(config_file, environ={})

    assert conf.repo_list_path == config_dir.resolve() / "list.md"
    assert conf.backup_root == Path("/srv/backups")
    assert conf.thresholds.hours == 36
    assert conf.thresholds.backup_size_warning == 0.5
    assert conf.thresholds.free_space_error == 5
    assert conf.run.workers == 4


def test_environment_overrides_file(tmp_path: Path) -> None:
    """Verifies the Defaults -> File -> Environment layering."""
    config_file = tmp_path / "backup.toml"
    config_file.write_text(
        '[archive]\nzip_folder = "archives"\n[thresholds]\nhours = 12\n'
    )

    conf = Config.load(
        config_file,
        environ={
            "HOURS_THRESHOLD": "48",
            "GITHUB_TOKEN": "ghp_abc",
            "FREE_SPACE_ERROR_GB": "2.5",
            "CLONE_DIR": "",
        },
    )

    assert conf.archive.zip_folder == "archives"  # From file
    assert conf.thresholds.hours == 48  # Env beats file
    assert conf.thresholds.free_space_error == 2.5
    assert conf.auth.github_token == "ghp_abc"
    assert conf.paths.clone_dir == "repos"  # Empty env value ignored


def test_config_invalid_keys_and_values(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that unknown keys are ignored and invalid values fall back to defaults."""
    caplog.set_level(logging.WARNING)

    config_file = tmp_path / "backup.toml"
    config_file.write_text(
        "[thresholds]\n"
        'hours = "a while"\n'
        'fake_setting = "ignored"\n'
        "[run]\n"
        "workers = 0\n"
        "[mystery]\n"
        "x = 1\n"
    )

    conf = Config.load(config_file, environ={})

    assert conf.thresholds.hours == 24.5
    assert conf.run.workers == 1
    assert "Unknown config keys in [thresholds]: fake_setting" in caplog.text
    assert "Config error in [thresholds].hours: Invalid time format" in caplog.text
    assert "Config error in [run].workers" in caplog.text
    assert "Unknown config sections" in caplog.text


def test_config_syntax_error_uses_defaults(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    config_file = tmp_path / "backup.toml"
    config_file.write_text("[paths\nrepo_list = ")

    conf = Config.load(config_file, environ={})

    assert conf.paths.repo_list == "backup_gits.md"
    assert "Config syntax error" in caplog.text


def test_redacted_masks_token() -> None:
    conf = Config.load(environ={"GITHUB_TOKEN": "ghp_secret"})
    redacted = conf.redacted()
    assert redacted["auth"]["github_token"] == "****"
    assert conf.auth.github_token == "ghp_secret"


def test_parse_size() -> None:
    """Verifies that human-readable sizes are correctly converted to bytes."""
    assert parse_size(100) == 100
    assert parse_size("100kb") == 102400
    assert parse_size("10 MB") == 10485760
    assert parse_size("1.5gb") == int(1.5 * 1024**3)

    with pytest.raises(ValueError, match=r"Invalid size format '100 bits'"):
        parse_size("100 bits")


def test_parse_gigabytes() -> None:
    assert parse_gigabytes(10) == 10.0
    assert parse_gigabytes("20") == 20.0
    assert parse_gigabytes("1TB") == 1024.0
    assert parse_gigabytes("256mb") == 0.25

    with pytest.raises(ValueError):
        parse_gigabytes("lots")


def test_parse_hours() -> None:
    """Verifies that recency windows are converted to hours."""
    assert parse_hours(24.5) == 24.5
    assert parse_hours("12") == 12.0
    assert parse_hours("90 min") == 1.5
    assert parse_hours("2 days") == 48.0
    assert parse_hours("36h") == 36.0

    with pytest.raises(ValueError, match=r"Invalid time format '10 lightyears'"):
        parse_hours("10 lightyears")


def test_parse_workers() -> None:
    assert parse_workers("3") == 3
    with pytest.raises(ValueError):
        parse_workers(0)
