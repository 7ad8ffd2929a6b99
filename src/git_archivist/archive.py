"""Full and partial zip archives of a working copy."""

import enum
import logging
import os
import re
import zipfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME, ARCHIVE_EXTENSION, GIT_DIR_NAME, REMOTE_NAME
from .errors import ArchiveFailed, CheckoutFailed
from .sync import RepositoryState

logger = logging.getLogger(APP_NAME)

_UNSAFE_LABEL_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class ArchiveKind(enum.Enum):
    FULL = "full"
    PARTIAL = "partial"


@dataclass(frozen=True)
class Archive:
    """A written archive.

    Attributes:
        repo_name (str): The repository's local name.
        branch_label (str): Path-safe branch label used in the layout.
        kind (ArchiveKind): Whole tree or only non-merged files.
        path (Path): Location of the archive file.
        timestamp (str): The run timestamp embedded in the file name.
        file_count (int): Number of files stored.
    """

    repo_name: str
    branch_label: str
    kind: ArchiveKind
    path: Path
    timestamp: str
    file_count: int


def safe_branch_label(branch: str) -> str:
    """Replaces every character outside [A-Za-z0-9._-] with '_'."""
    return _UNSAFE_LABEL_CHARS.sub("_", branch)


def archive_path(
    backup_root: Path,
    repo_name: str,
    label: str,
    zip_folder: str,
    timestamp: str,
    extension: str = ARCHIVE_EXTENSION,
) -> Path:
    """Builds `{root}/{repo}/{label}/{zip_folder}/{label}_{timestamp}.{ext}`.

    If that file already exists, `_1`, `_2`, ... is appended to the stem so an
    earlier archive is never overwritten.
    """
    folder = backup_root / repo_name / label / zip_folder
    candidate = folder / f"{label}_{timestamp}.{extension}"
    counter = 1
    while candidate.exists():
        candidate = folder / f"{label}_{timestamp}_{counter}.{extension}"
        counter += 1
    return candidate


def _arcname(name: str) -> str:
    """Zip entry names are UTF-8; bytes that do not decode become U+FFFD."""
    return os.fsencode(name).decode("utf-8", "replace")


class ZipArchiver:
    """Writes zip files from a directory tree.

    The archive is assembled under a `.part` name and renamed into place once
    complete.
    """

    def __init__(
        self, compression: int = zipfile.ZIP_DEFLATED, compresslevel: int = 6
    ):
        self.compression = compression
        self.compresslevel = compresslevel

    def create(
        self,
        root: Path,
        destination: Path,
        include: Iterable[str] | None = None,
        exclude: Iterable[str] = (GIT_DIR_NAME,),
    ) -> int:
        """Archives files under `root` into `destination`.

        Args:
            root (Path): Directory whose relative paths become archive names.
            destination (Path): The zip file to create.
            include (Iterable[str] | None): Relative paths to store. None stores
                                            the whole tree.
            exclude (Iterable[str]): Directory names skipped at any depth when
                                     walking the whole tree.

        Returns:
            int: The number of files written.

        Raises:
            ArchiveFailed: If the archive could not be written.
        """
        names = list(include) if include is not None else self._walk(root, set(exclude))
        part = destination.with_name(destination.name + ".part")

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(
                part,
                "w",
                compression=self.compression,
                compresslevel=self.compresslevel,
            ) as zf:
                for name in names:
                    zf.write(root / name, arcname=_arcname(name))
            os.replace(part, destination)
        except (OSError, zipfile.BadZipFile, ValueError) as e:
            if part.exists():
                part.unlink()
            raise ArchiveFailed(f"Failed to write {destination}: {e}") from e

        return len(names)

    @staticmethod
    def _walk(root: Path, exclude: set[str]) -> list[str]:
        names = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in exclude)
            base = Path(dirpath)
            for filename in sorted(filenames):
                full = base / filename
                # Skips dangling symlinks and special files.
                if full.is_file():
                    names.append(full.relative_to(root).as_posix())
        return names


def build_full_archive(
    state: RepositoryState,
    repo_name: str,
    timestamp: str,
    backup_root: Path,
    zip_folder: str,
    archiver: ZipArchiver | None = None,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> Archive:
    """Archives the whole default-branch working tree, excluding `.git`.

    Raises:
        CheckoutFailed: If the default branch cannot be checked out.
        ArchiveFailed: If the archive cannot be written.
    """
    archiver = archiver or ZipArchiver()
    branch = state.default_branch

    try:
        state.repo.checkout(branch)
    except RuntimeError as e:
        raise CheckoutFailed(f"Failed to checkout {branch} in {repo_name}: {e}") from e

    label = safe_branch_label(branch)
    destination = archive_path(backup_root, repo_name, label, zip_folder, timestamp)
    log.info(f"Creating {branch} backup: {destination}")
    count = archiver.create(state.local_path, destination)

    log.info(f"SUCCESS {repo_name}: {branch} backup created: {destination.name}")
    return Archive(repo_name, label, ArchiveKind.FULL, destination, timestamp, count)


def build_partial_archive(
    state: RepositoryState,
    repo_name: str,
    branch: str,
    diff_files: list[str],
    timestamp: str,
    backup_root: Path,
    zip_folder: str,
    archiver: ZipArchiver | None = None,
    log: logging.Logger | logging.LoggerAdapter = logger,
) -> Archive | None:
    """Archives only the files of `branch` that differ from the default branch.

    The working copy is force-checked-out to the remote branch tip, discarding
    local modifications. Paths absent from the checkout (deleted on the branch)
    are skipped.

    Returns:
        Archive | None: The archive, or None when no listed file exists on disk.

    Raises:
        CheckoutFailed: If the branch tip cannot be checked out.
        ArchiveFailed: If the archive cannot be written.
    """
    archiver = archiver or ZipArchiver()

    try:
        state.repo.checkout(f"{REMOTE_NAME}/{branch}", force=True)
    except RuntimeError as e:
        raise CheckoutFailed(
            f"Failed to checkout branch {branch} in {repo_name}: {e}"
        ) from e

    existing = [name for name in diff_files if (state.local_path / name).is_file()]
    if not existing:
        log.info(f"No existing files to backup in branch {branch}")
        return None

    label = safe_branch_label(branch)
    destination = archive_path(backup_root, repo_name, label, zip_folder, timestamp)
    log.info(f"Creating branch backup: {branch} -> {destination.name}")
    count = archiver.create(state.local_path, destination, include=existing)

    log.info(
        f"SUCCESS {repo_name}: Branch backup created: "
        f"{destination.name} ({count} files)"
    )
    return Archive(repo_name, label, ArchiveKind.PARTIAL, destination, timestamp, count)
