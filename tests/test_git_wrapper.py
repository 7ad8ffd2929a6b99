import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_archivist.git_wrapper import GitRepo, RemoteBranch


@pytest.fixture
def repo(tmp_path: Path) -> GitRepo:
    # Create a fake .git directory so GitRepo accepts the path
    (tmp_path / ".git").mkdir()
    return GitRepo(tmp_path)


def test_rejects_non_repository(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Not a git repository"):
        GitRepo(tmp_path)


def test_git_errors_mask_credentials(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that a token echoed back by git never reaches the error message."""
    mocker.patch(
        "subprocess.run",
        side_effect=subprocess.CalledProcessError(
            128,
            ["git", "fetch"],
            stderr="fatal: could not read from 'https://ghp_token@github.com/a/b.git'",
        ),
    )

    with pytest.raises(RuntimeError) as excinfo:
        repo.fetch_all()

    assert "ghp_token" not in str(excinfo.value)
    assert "https://****@github.com/a/b.git" in str(excinfo.value)


def test_missing_git_binary_is_runtime_error(mocker: MagicMock, repo: GitRepo) -> None:
    mocker.patch("subprocess.run", side_effect=FileNotFoundError("git"))
    with pytest.raises(RuntimeError, match="Git error"):
        repo.current_branch()


def test_remote_branches_parses_typed_results(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that for-each-ref output becomes RemoteBranch values in order."""
    mock_run = mocker.patch.object(repo, "_run")
    mock_run.return_value = (
        "HEAD 1700000000 +0000\n"
        "feature/login 1699990000 +0200\n"
        "main 1700000000 +0000\n"
        "garbage-line\n"
        "broken notanumber +0000"
    )

    branches = repo.remote_branches()

    assert branches == [
        RemoteBranch("HEAD", 1700000000),
        RemoteBranch("feature/login", 1699990000),
        RemoteBranch("main", 1700000000),
    ]
    args = mock_run.call_args[0][0]
    assert args[0] == "for-each-ref"
    assert args[-1] == "refs/remotes/origin/"


def test_diff_names_splits_nul_separated_paths(
    mocker: MagicMock, repo: GitRepo
) -> None:
    mock_run = mocker.patch.object(repo, "_run")
    mock_run.return_value = "src/app.py\0docs/with space.md\0"

    assert repo.diff_names("origin/main", "origin/dev") == [
        "src/app.py",
        "docs/with space.md",
    ]
    mock_run.assert_called_with(
        ["diff", "--name-only", "-z", "origin/main", "origin/dev"]
    )

    mock_run.return_value = ""
    assert repo.diff_names("origin/main", "origin/dev") == []


def test_symbolic_default(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies origin/HEAD resolution and its failure mode."""
    mock_run = mocker.patch.object(repo, "_run")

    mock_run.return_value = "origin/develop"
    assert repo.symbolic_default() == "develop"

    mock_run.side_effect = RuntimeError("Git error: not a symbolic ref")
    assert repo.symbolic_default() is None


def test_checkout_flags(mocker: MagicMock, repo: GitRepo) -> None:
    mock_run = mocker.patch.object(repo, "_run")

    repo.checkout("main")
    mock_run.assert_called_with(["checkout", "main"])

    repo.checkout("origin/feature", force=True)
    mock_run.assert_called_with(["checkout", "-f", "origin/feature"])

    repo.checkout_tracking("main")
    mock_run.assert_called_with(["checkout", "-b", "main", "origin/main"])


def test_network_commands_disable_prompts(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies fetch and pull run with terminal prompts disabled."""
    mock_run = mocker.patch.object(repo, "_run")

    repo.fetch_all(prune=True)
    args, kwargs = mock_run.call_args
    assert args[0] == ["fetch", "--all", "--prune"]
    assert kwargs["env"]["GIT_TERMINAL_PROMPT"] == "0"

    repo.pull("main")
    args, kwargs = mock_run.call_args
    assert args[0] == ["pull", "--ff-only", "origin", "main"]
    assert kwargs["env"]["GIT_TERMINAL_PROMPT"] == "0"


def test_rev_parse_returns_none_on_failure(mocker: MagicMock, repo: GitRepo) -> None:
    mocker.patch.object(repo, "_run", side_effect=RuntimeError("Git error: bad rev"))
    assert repo.rev_parse("origin/master") is None


def test_output_decoding_tolerates_non_utf8(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies git output is decoded with surrogate escapes, like file system names."""
    mock_run = mocker.patch("subprocess.run")
    mock_run.return_value.stdout = "caf\udce9.txt\0"

    assert repo.diff_names("origin/main", "origin/dev") == ["caf\udce9.txt"]
    assert mock_run.call_args.kwargs["errors"] == "surrogateescape"


def test_decode_errors_are_runtime_errors(mocker: MagicMock, repo: GitRepo) -> None:
    mocker.patch(
        "subprocess.run",
        side_effect=UnicodeDecodeError("utf-8", b"\xe9", 0, 1, "invalid"),
    )
    with pytest.raises(RuntimeError, match="Git error"):
        repo.diff_names("origin/main", "origin/dev")
