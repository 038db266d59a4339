"""CI gate command: report, then exit non-zero on issues at or above a severity."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer

from querydoctor.cli.common import (
    ConfigOption,
    StoragePathOption,
    error_console,
    fail,
    load_cli_config,
    parse_period,
    warn_failed_runs,
    write_or_print,
)
from querydoctor.exceptions import QueryDoctorError, UnknownFormatError
from querydoctor.models import Severity
from querydoctor.output.renderers import OutputFormat
from querydoctor.pipeline import AnalysisPipeline
from querydoctor.services import BaselineService, ReportService
from querydoctor.storage import EventFilters, build_storage

EXIT_GATE_FAILED = 1
EXIT_ANALYSIS_FAILED = 2


def register(app: typer.Typer) -> None:
    """Register the ci command on the given Typer app."""

    @app.command("ci")
    def ci(
        fail_on: Annotated[
            Optional[str],
            typer.Option(
                "--fail-on",
                help="Lowest severity that fails the build: low, medium, high, critical "
                "(default from config, normally high)",
            ),
        ] = None,
        baseline: Annotated[
            bool,
            typer.Option("--baseline", help="Exclude issues recorded in the baseline"),
        ] = False,
        output_format: Annotated[
            str,
            typer.Option("--format", "-f", help="Output format: markdown, json, text"),
        ] = "markdown",
        output: Annotated[
            Optional[Path],
            typer.Option("--output", "-o", help="Write the report to a file instead of stdout"),
        ] = None,
        period: Annotated[
            Optional[str],
            typer.Option("--period", "-p", help="Only events from the last 1h, 6h, 24h, 7d or 30d"),
        ] = None,
        config_path: ConfigOption = None,
        storage_path: StoragePathOption = None,
    ) -> None:
        """
        Analyze stored queries and gate the build on severity.

        Exit codes: 0 clean, 1 issues at or above --fail-on,
        2 analysis could not run or --fail-on is invalid.

        Examples:

            $ querydoctor ci --fail-on high --baseline --output report.md
        """
        try:
            config = load_cli_config(config_path, storage_path)
        except QueryDoctorError as e:
            fail(e.message, code=EXIT_ANALYSIS_FAILED)

        threshold_name = fail_on or config.ci.fail_on
        try:
            threshold = Severity.from_string(threshold_name)
        except ValueError:
            fail(
                f"Invalid --fail-on '{threshold_name}'. "
                f"Available: {', '.join(s.value for s in Severity)}",
                code=EXIT_ANALYSIS_FAILED,
            )

        try:
            fmt = OutputFormat.parse(output_format)
        except UnknownFormatError as e:
            fail(e.message, code=EXIT_ANALYSIS_FAILED)

        parsed_period = parse_period(period, code=EXIT_ANALYSIS_FAILED)

        storage = None
        try:
            storage = build_storage(config)
            service = ReportService(storage, AnalysisPipeline.from_config(config))
            issues = service.analyze_stored(EventFilters(period=parsed_period))
            warn_failed_runs(service)
            if baseline:
                issues = BaselineService(storage).filter_baselined(issues)
        except QueryDoctorError as e:
            fail(f"Could not analyze stored queries: {e.message}", code=EXIT_ANALYSIS_FAILED)
        finally:
            if storage is not None:
                storage.close()

        write_or_print(service.render(issues, fmt), output)

        if service.has_issues_at_or_above(issues, threshold):
            counts = service.count_by_severity(issues)
            error_console.print(
                f"[red]Found issues at or above \"{threshold.value}\" severity: "
                f"{counts['critical']} critical, {counts['high']} high, "
                f"{counts['medium']} medium, {counts['low']} low[/red]"
            )
            raise typer.Exit(code=EXIT_GATE_FAILED)

        error_console.print(f"[green]No issues at or above \"{threshold.value}\" severity.[/green]")
