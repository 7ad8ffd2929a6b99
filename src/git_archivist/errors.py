"""Exception taxonomy for the backup run.

Only ``SpaceExhausted`` and ``ListSourceMissing`` are fatal to a run. Every
other error is scoped to a single repository, branch or artifact: the
orchestrator logs it and moves on to the next independent unit of work.
"""


class ArchivistError(Exception):
    """Base class for all backup errors."""


class InvalidReference(ArchivistError):
    """A repository list entry matches none of the accepted shapes."""


class SyncFailed(ArchivistError):
    """Cloning or fetching a repository failed."""


class CheckoutFailed(ArchivistError):
    """Switching the working copy to a branch failed."""


class ArchiveFailed(ArchivistError):
    """Writing an archive failed."""


class SpaceExhausted(ArchivistError):
    """Free disk space dropped below the error threshold."""


class ListSourceMissing(ArchivistError):
    """The repository list could not be read."""
