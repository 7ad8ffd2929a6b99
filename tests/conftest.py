"""Shared fixtures: throwaway GitHub-like remotes backed by local bare repos."""

import os
import subprocess
from pathlib import Path

import pytest

from git_archivist.config import Config

NOW = 1_700_000_000
"""int: Fixed reference time used by every scenario."""

HOUR = 3600


def run_git(cwd: Path, *args: str, when: int | None = None) -> str:
    """Runs git in `cwd`, optionally pinning author and committer dates."""
    env = None
    if when is not None:
        env = os.environ.copy()
        env["GIT_AUTHOR_DATE"] = f"@{when} +0000"
        env["GIT_COMMITTER_DATE"] = f"@{when} +0000"
    res = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True, env=env
    )
    return res.stdout.strip()


class FakeRemote:
    """A seed working copy that publishes to a bare 'GitHub' repository.

    Attributes:
        seed (Path): Working copy used to author commits.
        bare (Path): The bare repository clones are made from.
    """

    def __init__(self, origins: Path, seeds: Path, owner: str, name: str):
        self.seed = seeds / owner / name
        self.bare = origins / owner / f"{name}.git"
        self.seed.mkdir(parents=True)
        self.bare.mkdir(parents=True)

        run_git(self.bare, "init", "-q", "--bare")
        run_git(self.bare, "symbolic-ref", "HEAD", "refs/heads/main")
        run_git(self.seed, "init", "-q")
        run_git(self.seed, "symbolic-ref", "HEAD", "refs/heads/main")
        run_git(self.seed, "remote", "add", "origin", str(self.bare))

    def commit(
        self,
        when: int,
        files: dict[str, str] | None = None,
        delete: tuple[str, ...] = (),
        message: str = "update",
    ) -> None:
        for rel, content in (files or {}).items():
            target = self.seed / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        run_git(self.seed, "add", "-A")
        for rel in delete:
            run_git(self.seed, "rm", "-q", rel)
        run_git(self.seed, "commit", "-q", "-m", message, when=when)

    def branch(self, name: str, start: str = "main") -> None:
        run_git(self.seed, "checkout", "-q", "-b", name, start)

    def checkout(self, name: str) -> None:
        run_git(self.seed, "checkout", "-q", name)

    def publish(self) -> None:
        run_git(self.seed, "push", "-q", "--force", "--all", "origin")


@pytest.fixture
def git_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolates git configuration and maps https://github.com/ onto local repos."""
    home = tmp_path / "home"
    origins = tmp_path / "origins"
    home.mkdir()
    origins.mkdir()

    (home / ".gitconfig").write_text(
        "[user]\n"
        "\tname = Test User\n"
        "\temail = test@example.com\n"
        "[init]\n"
        "\tdefaultBranch = main\n"
        f'[url "file://{origins.as_posix()}/"]\n'
        "\tinsteadOf = https://github.com/\n"
        "\tinsteadOf = git@github.com:\n"
    )
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.delenv("GIT_CONFIG_GLOBAL", raising=False)
    for var in ("GITHUB_TOKEN", "REPO_LIST_FILE", "CLONE_DIR", "BACKUP_DIR"):
        monkeypatch.delenv(var, raising=False)
    return origins


@pytest.fixture
def make_remote(tmp_path: Path, git_home: Path):
    """Factory creating FakeRemote instances reachable as github.com/owner/name."""
    seeds = tmp_path / "seeds"

    def factory(owner: str, name: str) -> FakeRemote:
        return FakeRemote(git_home, seeds, owner, name)

    return factory


@pytest.fixture
def workspace_config(tmp_path: Path) -> Config:
    """A Config rooted in tmp_path with the free-space floor disabled."""
    conf = Config(base_dir=tmp_path / "work")
    conf.base_dir.mkdir()
    conf.thresholds.free_space_error = 0
    return conf
