import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from . import orchestrator
from .config import Config, parse_hours, parse_workers
from .constants import APP_NAME, LOG_FILE
from .descriptor import parse_reference, read_repo_list
from .diskguard import check_backup_size, check_free_space
from .errors import InvalidReference, ListSourceMissing, SpaceExhausted
from .orchestrator import RunReport

logger = logging.getLogger(APP_NAME)
console = Console()
err_console = Console(stderr=True)


def _fatal(message: str) -> None:
    err_console.print(f"[bold red]ERROR:[/bold red] {message}")
    sys.exit(1)


def render_report(report: RunReport) -> None:
    """Prints the end-of-run summary table."""
    table = Table(title=f"Backup Summary ({report.timestamp})", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value")

    table.add_row("Repositories", str(report.total))
    table.add_row("Processed", f"[green]{report.processed}[/green]")
    failed_style = "red" if report.failed else "green"
    table.add_row("Failed", f"[{failed_style}]{report.failed}[/{failed_style}]")
    if report.skipped:
        table.add_row("Skipped", f"[yellow]{report.skipped}[/yellow]")
    table.add_row("Archives written", str(len(report.archives)))
    table.add_row("Branches archived", str(report.branches_archived))

    if report.size is not None:
        size_gb = report.size.total_bytes / 1024**3
        size_style = "yellow" if report.size.exceeded else "green"
        table.add_row(
            "Backup tree size", f"[{size_style}]{size_gb:.2f} GB[/{size_style}]"
        )
    if report.final_space_ok is not None:
        table.add_row(
            "Free space",
            "[green]OK[/green]" if report.final_space_ok else "[red]LOW[/red]",
        )

    console.print(table)

    failures = [o for o in report.outcomes if o.failed]
    for outcome in failures:
        console.print(
            f"   [red]•[/red] {outcome.source_ref}: "
            f"{outcome.stage.value} ({outcome.error or 'unknown error'})"
        )


def run_backup(config: Config) -> None:
    """Runs a full backup pass and exits non-zero on a fatal error."""
    try:
        report = orchestrator.run(config)
    except SpaceExhausted as e:
        _fatal(f"Aborted: {e}")
    except ListSourceMissing as e:
        _fatal(str(e))
    else:
        render_report(report)


def run_checks(config: Config) -> None:
    """Runs only the disk checks."""
    report = check_backup_size(
        config.backup_root, config.thresholds.backup_size_warning
    )
    size_gb = report.total_bytes / 1024**3
    console.print(f"Backup tree: [cyan]{config.backup_root}[/cyan] ({size_gb:.2f} GB)")

    if not check_free_space(config.backup_root, config.thresholds.free_space_error):
        _fatal(
            f"Free disk space is below {config.thresholds.free_space_error}GB "
            f"at {config.backup_root}"
        )
    console.print("[bold green]SUCCESS:[/bold green] Free disk space is sufficient.")


def list_repos(config: Config) -> None:
    """Shows how each line of the repository list is interpreted."""
    try:
        refs = read_repo_list(config.repo_list_path)
    except ListSourceMissing as e:
        _fatal(str(e))
        return

    table = Table(title=f"Repositories ({config.repo_list_path})")
    table.add_column("Reference", style="cyan")
    table.add_column("Clone URL")
    table.add_column("Local Name", style="bold")

    for ref in refs:
        try:
            descriptor = parse_reference(ref, config.auth.github_token)
        except InvalidReference:
            table.add_row(ref, "[red]invalid reference[/red]", "-")
            continue
        table.add_row(ref, descriptor.display_url, descriptor.local_name)

    console.print(table)


def show_config(config: Config) -> None:
    """Prints the effective configuration with credentials masked."""
    console.print(f"[bold]Base directory:[/bold] {config.base_dir}")
    for section, values in config.redacted().items():
        console.print(f"\n[bold blue]\\[{section}][/bold blue]")
        for key, value in values.items():
            console.print(f"   {key} = [cyan]{value!r}[/cyan]")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Mirror git repositories and archive recent branch work.",
    )
    parser.add_argument(
        "--config", type=Path, help="Path to a TOML configuration file"
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        metavar="PATH",
        help=f"Also write a rotating log file (e.g. {LOG_FILE})",
    )

    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run a backup pass (default)")
    run_parser.add_argument(
        "--workers", type=parse_workers, help="Repositories processed concurrently"
    )
    run_parser.add_argument(
        "--threshold-hours",
        type=parse_hours,
        help="Archive branches committed to within this many hours",
    )

    subparsers.add_parser("check", help="Check free space and backup tree size")
    subparsers.add_parser("list", help="Show how the repository list is parsed")
    subparsers.add_parser("config", help="Show the effective configuration")

    return parser


def main(argv: list[str] | None = None) -> None:
    """Entry point for the `git-archivist` command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    config = Config.load(args.config)
    orchestrator.setup_logging(args.log_file, config.limits.max_log_size)

    command = args.command or "run"
    if command == "run":
        if getattr(args, "workers", None):
            config.run.workers = args.workers
        if getattr(args, "threshold_hours", None) is not None:
            config.thresholds.hours = args.threshold_hours
        run_backup(config)
    elif command == "check":
        run_checks(config)
    elif command == "list":
        list_repos(config)
    elif command == "config":
        show_config(config)


if __name__ == "__main__":
    main()
