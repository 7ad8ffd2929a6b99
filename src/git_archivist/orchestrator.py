import contextlib
import datetime
import enum
import logging
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from .archive import (
    Archive,
    ArchiveKind,
    ZipArchiver,
    build_full_archive,
    build_partial_archive,
)
from .config import Config
from .constants import APP_NAME, TIMESTAMP_FORMAT
from .descriptor import parse_reference, read_repo_list
from .diskguard import SizeReport, check_backup_size, check_free_space
from .errors import (
    ArchiveFailed,
    CheckoutFailed,
    InvalidReference,
    SpaceExhausted,
    SyncFailed,
)
from .sync import (
    SyncResult,
    diff_against_default,
    ensure_local_copy,
    list_recent_branches,
    sync_default_branch,
)

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)


class RepoStage(enum.Enum):
    """Where a repository's processing ended (or currently is)."""

    PENDING = "pending"
    INVALID_REFERENCE = "invalid_reference"
    SYNCING = "syncing"
    SYNC_FAILED = "sync_failed"
    SYNCED = "synced"
    ARCHIVING_DEFAULT = "archiving_default"
    ARCHIVE_DEFAULT_FAILED = "archive_default_failed"
    DEFAULT_ARCHIVED = "default_archived"
    SCANNING_BRANCHES = "scanning_branches"
    ARCHIVING_BRANCHES = "archiving_branches"
    DONE = "done"
    ERROR = "error"
    SKIPPED = "skipped"


FAILED_STAGES = frozenset(
    {
        RepoStage.INVALID_REFERENCE,
        RepoStage.SYNC_FAILED,
        RepoStage.ARCHIVE_DEFAULT_FAILED,
        RepoStage.ERROR,
    }
)


@dataclass
class RepoOutcome:
    """The result of processing one repository list entry.

    Attributes:
        source_ref (str): The list entry.
        local_name (str | None): Set once the entry parsed.
        stage (RepoStage): Terminal stage.
        sync_result (SyncResult | None): What the synchronizer did.
        archives (list[Archive]): Archives written for this repository.
        error (str | None): The first error encountered, if any.
    """

    source_ref: str
    local_name: str | None = None
    stage: RepoStage = RepoStage.PENDING
    sync_result: SyncResult | None = None
    archives: list[Archive] = field(default_factory=list)
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.stage in FAILED_STAGES


@dataclass
class RunReport:
    """Aggregate state of one backup run, safe to update from worker threads."""

    timestamp: str
    total: int = 0
    outcomes: list[RepoOutcome] = field(default_factory=list)
    initial_space_ok: bool | None = None
    final_space_ok: bool | None = None
    size: SizeReport | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _abort: threading.Event = field(default_factory=threading.Event, repr=False)

    def record(self, outcome: RepoOutcome) -> None:
        with self._lock:
            self.outcomes.append(outcome)

    def abort(self) -> None:
        self._abort.set()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def _count(self, predicate: Any) -> int:
        with self._lock:
            return sum(1 for o in self.outcomes if predicate(o))

    @property
    def processed(self) -> int:
        return self._count(lambda o: o.stage is RepoStage.DONE)

    @property
    def failed(self) -> int:
        return self._count(lambda o: o.failed)

    @property
    def skipped(self) -> int:
        return self._count(lambda o: o.stage is RepoStage.SKIPPED)

    @property
    def archives(self) -> list[Archive]:
        with self._lock:
            return [a for o in self.outcomes for a in o.archives]

    @property
    def branches_archived(self) -> int:
        return sum(1 for a in self.archives if a.kind is ArchiveKind.PARTIAL)


class RepoLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with the repository it concerns."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        return f"[{self.extra['repo']}] {msg}", kwargs


def process_repository(
    source_ref: str,
    config: Config,
    timestamp: str,
    now: float,
    archiver: ZipArchiver | None = None,
) -> RepoOutcome:
    """Drives one repository from parsing to branch archives.

    Per-repository failures are logged and captured in the outcome; nothing
    raised here is fatal to the run.

    Args:
        source_ref (str): The repository list entry.
        config (Config): Effective configuration.
        timestamp (str): Run timestamp shared by every archive.
        now (float): Reference time for the branch recency window.
        archiver (ZipArchiver | None): Archiving service override.

    Returns:
        RepoOutcome: The terminal stage and the archives written.
    """
    outcome = RepoOutcome(source_ref=source_ref)
    archiver = archiver or ZipArchiver()

    try:
        descriptor = parse_reference(source_ref, config.auth.github_token)
    except InvalidReference as e:
        logger.error(str(e))
        outcome.stage = RepoStage.INVALID_REFERENCE
        outcome.error = str(e)
        return outcome

    name = descriptor.local_name
    outcome.local_name = name
    log = RepoLogAdapter(logger, {"repo": name})
    backup_root = config.backup_root
    zip_folder = config.archive.zip_folder

    # 1. Sync.
    outcome.stage = RepoStage.SYNCING
    try:
        state = ensure_local_copy(descriptor, config.clone_root, log)
    except SyncFailed as e:
        log.error(str(e))
        outcome.stage = RepoStage.SYNC_FAILED
        outcome.sync_result = SyncResult.FAILED
        outcome.error = str(e)
        return outcome
    outcome.sync_result = state.last_sync_result
    outcome.stage = RepoStage.SYNCED
    log.info(f"SUCCESS {name}: Repository ready ({state.last_sync_result.value}).")

    # 2. Default branch. A failure here does not stop the branch scan.
    outcome.stage = RepoStage.ARCHIVING_DEFAULT
    default_failed = False
    try:
        sync_default_branch(state, log)
        outcome.archives.append(
            build_full_archive(
                state, name, timestamp, backup_root, zip_folder, archiver, log
            )
        )
        outcome.stage = RepoStage.DEFAULT_ARCHIVED
    except (CheckoutFailed, ArchiveFailed) as e:
        log.warning(str(e))
        outcome.error = str(e)
        default_failed = True

    # 3. Recent branches, one at a time on the shared working copy.
    outcome.stage = RepoStage.SCANNING_BRANCHES
    hours = config.thresholds.hours
    log.info(f"Finding branches updated in last {hours} hours...")
    branches = list_recent_branches(state, hours, now=now, log=log)

    outcome.stage = RepoStage.ARCHIVING_BRANCHES
    if branches:
        log.info(f"Found {len(branches)} recent branch(es)")
    else:
        log.info("No recently updated branches found")

    for activity in branches:
        files = diff_against_default(state, activity.name, log)
        if not files:
            log.info(f"No non-merged files in branch {activity.name}")
            continue
        try:
            archive = build_partial_archive(
                state,
                name,
                activity.name,
                files,
                timestamp,
                backup_root,
                zip_folder,
                archiver,
                log,
            )
        except (CheckoutFailed, ArchiveFailed) as e:
            log.warning(str(e))
            continue
        if archive is not None:
            outcome.archives.append(archive)

    outcome.stage = (
        RepoStage.ARCHIVE_DEFAULT_FAILED if default_failed else RepoStage.DONE
    )
    return outcome


def _mirror_locks(refs: list[str]) -> dict[str, threading.Lock]:
    """Maps each list entry to a lock shared by every entry naming the same mirror.

    Entries that do not parse get no lock; they never touch a working copy.
    """
    by_name: dict[str, threading.Lock] = {}
    locks: dict[str, threading.Lock] = {}
    for ref in refs:
        try:
            name = parse_reference(ref).local_name
        except InvalidReference:
            continue
        if name in by_name:
            logger.warning(
                f"Duplicate entry {ref!r} maps to {name}; "
                "it runs after the earlier entry."
            )
        locks[ref] = by_name.setdefault(name, threading.Lock())
    return locks


def run(
    config: Config,
    now: float | None = None,
    archiver: ZipArchiver | None = None,
) -> RunReport:
    """Backs up every repository in the configured list.

    Steps:
    1. Free-space admission check (fatal).
    2. Reads the repository list (fatal if unreadable).
    3. Processes repositories on a bounded worker pool, re-checking free
       space after each one; the first failing check stops new starts.
       Entries naming the same mirror run one after another.
    4. Reports archive tree size and final free space.

    Args:
        config (Config): Effective configuration.
        now (float | None): Reference Unix time. Defaults to time.time().
        archiver (ZipArchiver | None): Archiving service override.

    Returns:
        RunReport: Aggregate counts and space check outcomes.

    Raises:
        SpaceExhausted: If any free-space check before or between repositories fails.
        ListSourceMissing: If the repository list cannot be read.
    """
    now = time.time() if now is None else now
    timestamp = datetime.datetime.fromtimestamp(now).strftime(TIMESTAMP_FORMAT)
    report = RunReport(timestamp=timestamp)
    backup_root = config.backup_root
    min_free = config.thresholds.free_space_error

    logger.info("Backup run started")
    logger.info(f"Timestamp: {timestamp}")

    report.initial_space_ok = check_free_space(backup_root, min_free)
    if not report.initial_space_ok:
        logger.error("Aborting due to insufficient disk space!")
        raise SpaceExhausted(f"Free space at {backup_root} is below {min_free}GB")

    config.clone_root.mkdir(parents=True, exist_ok=True)
    backup_root.mkdir(parents=True, exist_ok=True)

    list_path = config.repo_list_path
    logger.info(f"Reading repository list from: {list_path}")
    refs = read_repo_list(list_path)
    report.total = len(refs)

    if not refs:
        logger.warning(f"No repositories found in {list_path}")
        return report

    logger.info(f"Found {len(refs)} repositories to process")
    space_lock = threading.Lock()
    mirror_locks = _mirror_locks(refs)

    def worker(source_ref: str) -> None:
        # Entries naming the same mirror share one working copy.
        with mirror_locks.get(source_ref) or contextlib.nullcontext():
            if report.aborted:
                report.record(
                    RepoOutcome(source_ref=source_ref, stage=RepoStage.SKIPPED)
                )
                return

            logger.info(f"Processing: {source_ref}")
            try:
                outcome = process_repository(
                    source_ref, config, timestamp, now, archiver
                )
            except Exception as e:
                logger.exception(f"LOOP ERROR {source_ref}")
                outcome = RepoOutcome(
                    source_ref=source_ref, stage=RepoStage.ERROR, error=str(e)
                )
            report.record(outcome)

            with space_lock:
                if not report.aborted and not check_free_space(backup_root, min_free):
                    logger.error("Aborting due to insufficient disk space!")
                    report.abort()

    with ThreadPoolExecutor(max_workers=config.run.workers) as executor:
        list(executor.map(worker, refs))

    if report.aborted:
        raise SpaceExhausted(f"Free space at {backup_root} dropped below {min_free}GB")

    report.size = check_backup_size(backup_root, config.thresholds.backup_size_warning)
    report.final_space_ok = check_free_space(backup_root, min_free)

    logger.info(
        f"SUCCESS Backup completed: {report.processed} processed, "
        f"{report.failed} failed, {report.branches_archived} branch archive(s)."
    )
    logger.info(f"Backups stored in: {backup_root}")
    return report


def setup_logging(
    log_file: Path | None = None, max_log_size: int = 5 * 1024 * 1024
) -> None:
    """Configures the logging subsystem.

    Args:
        log_file (Path | None): If set, also log to this file with rotation enabled.
        max_log_size (int): Bytes before the log file rotates.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_log_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
