"""Disk space admission control and archive tree size reporting."""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


def gb_to_bytes(gb: float) -> int:
    return int(round(gb * 1024**3))


def bytes_to_gb(num_bytes: int) -> str:
    """Formats a byte count as gigabytes with two decimals."""
    return f"{num_bytes / 1024**3:.2f}"


def _existing_anchor(path: Path) -> Path:
    """Returns `path` or its nearest existing ancestor."""
    for candidate in (path, *path.parents):
        if candidate.exists():
            return candidate
    return path


def check_free_space(path: Path, min_gb: float) -> bool:
    """Checks that the filesystem backing `path` has at least `min_gb` free.

    Free space exactly equal to the threshold passes. If the free space cannot
    be determined, the check passes with a warning.

    Args:
        path (Path): Any path on the filesystem to inspect.
        min_gb (float): Minimum free space in gigabytes.

    Returns:
        bool: False if free space is below the threshold, True otherwise.
    """
    try:
        available = shutil.disk_usage(_existing_anchor(path)).free
    except OSError as e:
        logger.warning(f"Could not determine free disk space at {path}: {e}")
        return True

    if available < gb_to_bytes(min_gb):
        logger.error(
            f"Free disk space ({bytes_to_gb(available)}GB) is below "
            f"threshold ({min_gb}GB)!"
        )
        return False

    logger.info(f"Free disk space: {bytes_to_gb(available)}GB (threshold: {min_gb}GB)")
    return True


@dataclass(frozen=True)
class SizeReport:
    """Total size of the archive tree versus the warning threshold."""

    total_bytes: int
    warn_bytes: int

    @property
    def exceeded(self) -> bool:
        return self.total_bytes > self.warn_bytes


def tree_size(root: Path) -> int:
    """Sums the sizes of regular files under `root` without following symlinks."""
    total = 0
    for dirpath, _, filenames in os.walk(root):
        for filename in filenames:
            try:
                st = os.lstat(os.path.join(dirpath, filename))
            except OSError:
                continue  # Vanished mid-walk.
            total += st.st_size
    return total


def check_backup_size(backup_root: Path, warn_gb: float) -> SizeReport:
    """Warns (never fails) when the archive tree exceeds `warn_gb`.

    Args:
        backup_root (Path): Root of the archive tree. Missing is treated as empty.
        warn_gb (float): Warning threshold in gigabytes.

    Returns:
        SizeReport: The measured size and threshold.
    """
    warn_bytes = gb_to_bytes(warn_gb)
    if not backup_root.is_dir():
        return SizeReport(0, warn_bytes)

    report = SizeReport(tree_size(backup_root), warn_bytes)
    total_gb = bytes_to_gb(report.total_bytes)
    if report.exceeded:
        logger.warning(
            f"Total backup size ({total_gb}GB) exceeds warning threshold ({warn_gb}GB)!"
        )
    else:
        logger.info(f"Total backup size: {total_gb}GB (warning threshold: {warn_gb}GB)")
    return report
