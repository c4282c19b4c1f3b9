"""
Command line interface for repoharvest.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .collection import CollectionReport
from .ingestion import RepoDescriptor, SourceFileError, read_repo_descriptors
from .logger import configure_logging, get_logger, redirect_logging_to_file
from .services import HarvestCallbacks, HarvestPipeline, HarvestSummary
from .settings import ConfigurationError, HarvestSettings, load_settings
from .version import get_version

app = typer.Typer(name="repoharvest", help="Clone repositories in parallel and harvest package folders.")
configure_logging(enable_console=False)
log = get_logger(__name__)
console = Console()

STARTUP_FAILURE = 2


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"repoharvest {get_version()}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    """Clone repositories in parallel and harvest package folders."""


def _settings_or_exit(config: Optional[Path], **overrides: object) -> HarvestSettings:
    try:
        return load_settings(config_path=config, **overrides)
    except ConfigurationError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=STARTUP_FAILURE)


def _descriptors_or_exit(path: Path) -> List[RepoDescriptor]:
    try:
        return read_repo_descriptors(path)
    except SourceFileError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=STARTUP_FAILURE)


def _render_summary(summary: HarvestSummary) -> None:
    typer.echo(
        f"Repositories: {summary.total} cloned={summary.cloned} failed={summary.failed} "
        f"packages={len(summary.packages)}"
    )
    for destination, error in sorted(summary.failures.items()):
        typer.echo(f"  [FAILED] {destination}: {error}")
    if summary.manifest_path:
        typer.echo(f"Manifest written to {summary.manifest_path}")


@app.command()
def run(
    repos: Optional[Path] = typer.Option(
        None, "--repos", "-r", help="CSV file listing url,destination[,branch] rows."
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="TOML configuration file."
    ),
    workers: Optional[int] = typer.Option(
        None, "--workers", "-w", min=1, help="Cap concurrent clones (default: one per repository)."
    ),
    log_file: Optional[Path] = typer.Option(
        None, "--log", help="Write detailed logs to this file instead of the console."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Include debug output."),
) -> None:
    """Clone every repository and collect matching package folders."""
    level = logging.DEBUG if verbose else logging.INFO
    if log_file:
        redirect_logging_to_file(log_file.resolve(), level=level)
        typer.echo(f"Logging detailed output to {log_file.resolve()}")
    elif verbose:
        configure_logging(level=level, enable_console=True)

    settings = _settings_or_exit(config, repos_file=repos, max_workers=workers)
    descriptors = _descriptors_or_exit(settings.repos_file)
    if not descriptors:
        typer.echo(f"No repositories listed in {settings.repos_file}.")
        return
    log.info("run_requested", repos_file=str(settings.repos_file), repositories=len(descriptors))

    with Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        clone_task = progress.add_task("Cloning repositories", total=len(descriptors))
        collect_task = progress.add_task("Collecting packages", total=len(descriptors))

        def on_clone_finished(descriptor: RepoDescriptor, ok: bool) -> None:
            state = "cloned" if ok else "failed"
            progress.update(clone_task, advance=1, description=f"Cloning ({descriptor.destination_name} {state})")
            if not ok:
                progress.update(collect_task, advance=1)

        def on_collected(report: CollectionReport) -> None:
            progress.update(
                collect_task,
                advance=1,
                description=f"Collecting ({report.manifest_entry or 'no package'})",
            )

        copied_files = 0

        def on_file_copied(_path: Path) -> None:
            nonlocal copied_files
            copied_files += 1

        callbacks = HarvestCallbacks(
            clone_finished=on_clone_finished,
            collected=on_collected,
            file_copied=on_file_copied,
        )
        summary = HarvestPipeline(settings).run(descriptors, callbacks=callbacks)

    _render_summary(summary)
    typer.echo(f"Files copied into {settings.output_root}: {copied_files}")


@app.command()
def check(
    repos: Optional[Path] = typer.Option(
        None, "--repos", "-r", help="CSV file listing url,destination[,branch] rows."
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="TOML configuration file."
    ),
) -> None:
    """Validate configuration and the repository list without cloning."""
    settings = _settings_or_exit(config, repos_file=repos)
    descriptors = _descriptors_or_exit(settings.repos_file)

    table = Table(title=f"{len(descriptors)} repositories in {settings.repos_file}")
    table.add_column("Line", justify="right")
    table.add_column("URL")
    table.add_column("Destination")
    table.add_column("Branch")
    for descriptor in descriptors:
        table.add_row(
            str(descriptor.line_number),
            descriptor.url,
            str(settings.clone_root / descriptor.destination_name),
            descriptor.branch or "default",
        )
    console.print(table)


@app.command("config")
def show_config(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="TOML configuration file."
    ),
) -> None:
    """Print the resolved configuration with the access token masked."""
    settings = _settings_or_exit(config)
    for key, value in settings.describe().items():
        typer.echo(f"{key}: {value}")


if __name__ == "__main__":  # pragma: no cover
    app()
