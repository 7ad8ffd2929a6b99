"""Git Archivist: scheduled backups of remote git repositories.

This package mirrors each listed repository's default branch, writes a full
zip archive of it every run, and archives only the non-merged files of any
branch committed to within a recent window, all under disk-space admission
control.
"""

from . import (
    archive,
    cli,
    config,
    constants,
    descriptor,
    diskguard,
    errors,
    git_wrapper,
    orchestrator,
    sync,
)

__all__ = [
    "archive",
    "cli",
    "config",
    "constants",
    "descriptor",
    "diskguard",
    "errors",
    "git_wrapper",
    "orchestrator",
    "sync",
]
