"""Keeps local mirrors up to date and answers questions about their branches."""

import enum
import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME, FALLBACK_DEFAULT_BRANCH, GIT_DIR_NAME, REMOTE_NAME
from .descriptor import RepositoryDescriptor
from .errors import CheckoutFailed, SyncFailed
from .git_wrapper import GitRepo

logger = logging.getLogger(APP_NAME)


class SyncResult(enum.Enum):
    CLONED = "cloned"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass
class RepositoryState:
    """A local working copy and what the last sync did to it.

    Attributes:
        repo (GitRepo): Handle on the working copy.
        default_branch (str): The branch origin designates as primary.
        last_sync_result (SyncResult): Outcome of the most recent sync.
    """

    repo: GitRepo
    default_branch: str
    last_sync_result: SyncResult

    @property
    def local_path(self) -> Path:
        return self.repo.path


@dataclass(frozen=True)
class BranchActivity:
    """A non-default remote branch and the time of its last commit."""

    name: str
    last_commit_epoch_seconds: int


def ensure_local_copy(
    descriptor: RepositoryDescriptor,
    clone_root: Path,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> RepositoryState:
    """Clones the repository, or fetches into the existing clone.

    Args:
        descriptor (RepositoryDescriptor): The repository to mirror.
        clone_root (Path): Directory holding every working copy.
        log: Logger used for progress lines.

    Returns:
        RepositoryState: The synchronized state with the default branch resolved.

    Raises:
        SyncFailed: If the clone or fetch fails for any reason.
    """
    repo_path = clone_root / descriptor.local_name
    clone_root.mkdir(parents=True, exist_ok=True)

    try:
        if (repo_path / GIT_DIR_NAME).exists():
            log.info(f"Updating existing repository: {descriptor.local_name}")
            repo = GitRepo(repo_path)
            repo.set_remote_url(descriptor.clone_url)
            repo.fetch_all(prune=True)
            result = SyncResult.UPDATED
        else:
            if repo_path.exists():
                log.warning(f"Removing incomplete clone at {repo_path}")
                shutil.rmtree(repo_path)
            log.info(f"Cloning new repository: {descriptor.local_name}")
            repo = GitRepo.clone(descriptor.clone_url, repo_path)
            repo.fetch_all()
            result = SyncResult.CLONED
    except (RuntimeError, OSError, ValueError) as e:
        raise SyncFailed(f"Failed to sync {descriptor.local_name}: {e}") from e

    default_branch = resolve_default_branch(repo, log)
    return RepositoryState(
        repo=repo, default_branch=default_branch, last_sync_result=result
    )


def resolve_default_branch(
    repo: GitRepo, log: logging.Logger | logging.LoggerAdapter = logger
) -> str:
    """Determines the default branch, falling back to 'master'.

    The fallback is kept as-is even though it can mislabel repositories that
    use another trunk name; a warning is logged when origin has no such branch.
    """
    if name := repo.symbolic_default():
        return name

    if repo.rev_parse(f"{REMOTE_NAME}/{FALLBACK_DEFAULT_BRANCH}") is None:
        log.warning(
            f"Could not resolve {REMOTE_NAME}/HEAD in {repo.path.name} and "
            f"{REMOTE_NAME}/{FALLBACK_DEFAULT_BRANCH} does not exist. "
            f"Default branch label '{FALLBACK_DEFAULT_BRANCH}' may be wrong."
        )
    return FALLBACK_DEFAULT_BRANCH


def sync_default_branch(
    state: RepositoryState, log: logging.Logger | logging.LoggerAdapter = logger
) -> None:
    """Checks out the default branch locally and fast-forwards it from origin.

    A failed pull is only a warning: the (possibly stale) checkout is still
    archived.

    Raises:
        CheckoutFailed: If the default branch can be neither checked out
                        nor created from its remote-tracking branch.
    """
    repo = state.repo
    branch = state.default_branch
    try:
        repo.checkout(branch)
    except RuntimeError:
        try:
            repo.checkout_tracking(branch)
        except RuntimeError as e:
            raise CheckoutFailed(
                f"Failed to checkout {branch} in {repo.path.name}: {e}"
            ) from e

    try:
        repo.pull(branch)
    except RuntimeError as e:
        log.warning(f"Failed to pull {branch} for {repo.path.name}: {e}")


def list_recent_branches(
    state: RepositoryState,
    threshold_hours: float,
    now: float | None = None,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> list[BranchActivity]:
    """Finds non-default remote branches with a commit inside the window.

    A branch qualifies when its tip is strictly newer than
    `now - threshold_hours * 3600`. Enumeration order is preserved.

    Args:
        state (RepositoryState): The synchronized repository.
        threshold_hours (float): Size of the recency window.
        now (float | None): Reference Unix time. Defaults to time.time().
        log: Logger used for warnings.

    Returns:
        list[BranchActivity]: The recently active branches.
    """
    reference = time.time() if now is None else now
    cutoff = reference - threshold_hours * 3600

    try:
        branches = state.repo.remote_branches()
    except RuntimeError as e:
        log.warning(f"Could not list branches in {state.local_path.name}: {e}")
        return []

    return [
        BranchActivity(b.name, b.committed_at)
        for b in branches
        if b.name not in ("HEAD", state.default_branch) and b.committed_at > cutoff
    ]


def diff_against_default(
    state: RepositoryState,
    branch: str,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> list[str]:
    """Lists files that differ between the default branch tip and `branch` tip.

    Returns:
        list[str]: Repository-relative paths; empty if git fails or reports nothing.
    """
    try:
        return state.repo.diff_names(
            f"{REMOTE_NAME}/{state.default_branch}", f"{REMOTE_NAME}/{branch}"
        )
    except RuntimeError as e:
        log.debug(f"diff failed for {branch} in {state.local_path.name}: {e}")
        return []
