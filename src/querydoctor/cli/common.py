"""Shared CLI plumbing: consoles, common options, config and storage setup."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer
from rich.console import Console

from querydoctor.config import Config, StorageDriver, get_config, load_config_from_file
from querydoctor.exceptions import QueryDoctorError
from querydoctor.models import IssueType, Severity
from querydoctor.services import ReportService
from querydoctor.storage import Period, Storage, build_storage

console = Console()
error_console = Console(stderr=True)

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to a YAML or JSON config file"),
]
StoragePathOption = Annotated[
    Optional[Path],
    typer.Option("--storage-path", help="SQLite database file (overrides config)"),
]


def load_cli_config(config_path: Path | None, storage_path: Path | None) -> Config:
    """
    Load configuration for a command.

    ``--storage-path`` always selects the SQLite driver at that path.
    """
    config = load_config_from_file(config_path) if config_path else get_config()
    if storage_path is not None:
        storage = config.storage.model_copy(
            update={"driver": StorageDriver.SQLITE, "path": str(storage_path)}
        )
        config = config.model_copy(update={"storage": storage})
    return config


def open_storage(config_path: Path | None, storage_path: Path | None) -> tuple[Config, Storage]:
    """Config and storage for a command; exits 1 on configuration or storage errors."""
    try:
        config = load_cli_config(config_path, storage_path)
        return config, build_storage(config)
    except QueryDoctorError as e:
        fail(e.message)


def fail(message: str, code: int = 1) -> NoReturn:
    error_console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code=code)


def parse_period(value: str | None, code: int = 1) -> Period | None:
    if value is None:
        return None
    try:
        return Period(value)
    except ValueError:
        fail(
            f"Unknown period '{value}'. Available: {', '.join(p.value for p in Period)}",
            code=code,
        )


def parse_severity(value: str | None) -> Severity | None:
    if value is None:
        return None
    try:
        return Severity.from_string(value)
    except ValueError:
        fail(f"Unknown severity '{value}'. Available: {', '.join(s.value for s in Severity)}")


def parse_issue_type(value: str | None) -> IssueType | None:
    if value is None:
        return None
    try:
        return IssueType(value.strip().lower())
    except ValueError:
        fail(f"Unknown issue type '{value}'. Available: {', '.join(t.value for t in IssueType)}")


def warn_failed_runs(service: ReportService) -> None:
    """Warn on stderr about analyzers that raised during the last analysis."""
    for run in service.failed_runs:
        error_console.print(
            f"[yellow]Warning:[/yellow] analyzer '{run.analyzer}' failed: {run.error_summary}"
        )


def write_or_print(content: str, output: Path | None) -> None:
    if output is None:
        typer.echo(content)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(content, encoding="utf-8")
    error_console.print(f"[green]Report written to {output}[/green]")
