import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME, GIT_DIR_NAME, REMOTE_NAME
from .descriptor import redact_url

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class RemoteBranch:
    """A remote-tracking branch and the committer time of its tip.

    Attributes:
        name (str): Branch name without the remote prefix (e.g., 'feature/x').
        committed_at (int): Unix timestamp of the tip commit.
    """

    name: str
    committed_at: int


def network_env() -> dict[str, str]:
    """Builds an environment that makes git fail instead of prompting.

    Returns:
        dict[str, str]: A copy of os.environ with prompts disabled.
    """
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    env["GIT_SSH_COMMAND"] = "ssh -o BatchMode=yes"
    return env


def _execute(args: list[str], cwd: Path, env: dict | None = None) -> str:
    """Runs git and returns stripped stdout, raising RuntimeError on failure.

    Credentials embedded in URLs are masked in the error message. Paths that
    are not valid UTF-8 come back with surrogate escapes, as `os.fsdecode` does.
    """
    try:
        res = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            errors="surrogateescape",
            check=True,
            env=env,
        )
        return res.stdout.strip()
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip() or str(e)
        raise RuntimeError(f"Git error: {redact_url(detail)}") from e
    except (OSError, UnicodeError) as e:
        raise RuntimeError(f"Git error: {e}") from e


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    Every piece of git output parsing lives here; callers receive typed values
    (branch names, timestamps, path lists) and never see raw command text.
    All commands run with an explicit `cwd`, never by changing the process
    working directory.

    Attributes:
        path (Path): The file system path to the working copy root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            ValueError: If the specified path does not contain a .git directory.
        """
        self.path = path
        if not (self.path / GIT_DIR_NAME).exists():
            raise ValueError(f"Not a git repository: {self.path}")

    @classmethod
    def clone(cls, url: str, dest: Path) -> "GitRepo":
        """Clones `url` into `dest` and returns the new repository.

        Args:
            url (str): The clone URL.
            dest (Path): Target directory; its parent must exist.

        Returns:
            GitRepo: A wrapper around the fresh working copy.

        Raises:
            RuntimeError: If the clone fails.
        """
        _execute(["clone", url, str(dest)], cwd=dest.parent, env=network_env())
        return cls(dest)

    def _run(self, args: list[str], env: dict | None = None) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            env (Optional[dict], optional): Environment variables to pass to the
                                            subprocess. Defaults to None.

        Returns:
            str: The stripped stdout of the command.

        Raises:
            RuntimeError: If the git command returns a non-zero exit code.
        """
        return _execute(args, cwd=self.path, env=env)

    def fetch_all(self, prune: bool = False) -> None:
        """Fetches every remote, optionally pruning deleted remote branches."""
        cmd = ["fetch", "--all"]
        if prune:
            cmd.append("--prune")
        self._run(cmd, env=network_env())

    def set_remote_url(self, url: str, remote: str = REMOTE_NAME) -> None:
        """Points `remote` at `url`."""
        self._run(["remote", "set-url", remote, url])

    def symbolic_default(self, remote: str = REMOTE_NAME) -> str | None:
        """Reads the remote's recorded default branch (refs/remotes/<remote>/HEAD).

        Returns:
            str | None: The branch name without the remote prefix, or None if
                        the symbolic reference is missing.
        """
        try:
            ref = self._run(["symbolic-ref", "--short", f"refs/remotes/{remote}/HEAD"])
        except RuntimeError as e:
            logger.debug(f"symbolic-ref failed in {self.path.name}: {e}")
            return None
        prefix = f"{remote}/"
        name = ref.removeprefix(prefix)
        return name or None

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision (tag, branch, relative ref) to a full SHA-1 hash.

        Args:
            rev (str): The revision to parse (e.g., 'HEAD', 'origin/master').

        Returns:
            Optional[str]:  The full SHA-1 hash,
                            or None if the revision could not be resolved.
        """
        try:
            return self._run(["rev-parse", "--verify", "--quiet", rev])
        except RuntimeError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch ('' when detached)."""
        return self._run(["branch", "--show-current"])

    def checkout(self, target: str, force: bool = False) -> None:
        """Checks out a branch or commit.

        Args:
            target (str): The target branch name, remote ref or commit hash.
            force (bool, optional): Whether to force the checkout (discarding changes).
                                    Defaults to False.
        """
        cmd = ["checkout"]
        if force:
            cmd.append("-f")
        cmd.append(target)
        self._run(cmd)

    def checkout_tracking(self, branch: str, remote: str = REMOTE_NAME) -> None:
        """Creates local `branch` from `<remote>/<branch>` and checks it out."""
        self._run(["checkout", "-b", branch, f"{remote}/{branch}"])

    def pull(self, branch: str, remote: str = REMOTE_NAME) -> None:
        """Fast-forwards the current branch from `<remote> <branch>`."""
        self._run(["pull", "--ff-only", remote, branch], env=network_env())

    def remote_branches(self, remote: str = REMOTE_NAME) -> list[RemoteBranch]:
        """Lists remote-tracking branches with their tip commit times.

        The `<remote>/HEAD` pointer is included as an entry named 'HEAD';
        callers filter it out.

        Returns:
            list[RemoteBranch]: Branches in `for-each-ref` (refname) order.
        """
        output = self._run(
            [
                "for-each-ref",
                "--format=%(refname:lstrip=3) %(committerdate:raw)",
                f"refs/remotes/{remote}/",
            ]
        )
        branches = []
        for line in output.splitlines():
            # Ref names cannot contain spaces, so the first token is the name.
            parts = line.split()
            if len(parts) < 2:
                continue
            try:
                branches.append(RemoteBranch(parts[0], int(parts[1])))
            except ValueError:
                logger.debug(f"Unparseable ref line in {self.path.name}: {line!r}")
        return branches

    def diff_names(self, base: str, target: str) -> list[str]:
        """Lists paths that differ between two revisions.

        Args:
            base (str): The base revision (e.g., 'origin/main').
            target (str): The compared revision (e.g., 'origin/feature').

        Returns:
            list[str]: Repository-relative paths in git's output order.

        Raises:
            RuntimeError: If git fails.
        """
        output = self._run(["diff", "--name-only", "-z", base, target])
        return [name for name in output.split("\0") if name]
