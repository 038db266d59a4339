"""
QueryDoctor CLI - detect query anti-patterns in captured traffic.

Usage:
    querydoctor ingest trace.json
    querydoctor report --format markdown
    querydoctor ci --fail-on high --baseline
    querydoctor baseline create
"""

from __future__ import annotations

import logging
from typing import Annotated, Optional

import typer
from rich.logging import RichHandler

from querydoctor import __version__
from querydoctor.cli.commands import baseline, ci, issues, maintenance, report
from querydoctor.cli.common import console, error_console

app = typer.Typer(
    name="querydoctor",
    help="Detect N+1, duplicate, slow, unindexed and SELECT * queries",
    no_args_is_help=True,
)

baseline_app = typer.Typer(
    name="baseline",
    help="Manage the accepted-issue baseline used by CI",
    no_args_is_help=True,
)
issues_app = typer.Typer(
    name="issues",
    help="Inspect and triage stored issues",
    no_args_is_help=True,
)
app.add_typer(baseline_app, name="baseline")
app.add_typer(issues_app, name="issues")

report.register(app)
ci.register(app)
maintenance.register(app)
baseline.register(baseline_app)
issues.register(issues_app)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"QueryDoctor version {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    """Debug logging through rich on stderr; quiet (warnings only) otherwise."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=error_console, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging."),
    ] = False,
) -> None:
    """QueryDoctor - query anti-pattern detection for SQLAlchemy applications."""
    configure_logging(verbose)


if __name__ == "__main__":
    app()
