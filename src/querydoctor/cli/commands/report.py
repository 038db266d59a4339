"""Report command: analyze stored queries and render the issues."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer

from querydoctor.cli.common import (
    ConfigOption,
    StoragePathOption,
    fail,
    open_storage,
    parse_issue_type,
    parse_period,
    parse_severity,
    warn_failed_runs,
    write_or_print,
)
from querydoctor.exceptions import QueryDoctorError, UnknownFormatError
from querydoctor.output.renderers import OutputFormat
from querydoctor.pipeline import AnalysisPipeline
from querydoctor.services import ReportService
from querydoctor.storage import EventFilters, IssueFilters


def register(app: typer.Typer) -> None:
    """Register the report command on the given Typer app."""

    @app.command("report")
    def report(
        output_format: Annotated[
            str,
            typer.Option("--format", "-f", help="Output format: text, json, markdown"),
        ] = "text",
        period: Annotated[
            Optional[str],
            typer.Option("--period", "-p", help="Only events from the last 1h, 6h, 24h, 7d or 30d"),
        ] = None,
        severity: Annotated[
            Optional[str],
            typer.Option("--severity", "-s", help="Only issues of this severity"),
        ] = None,
        issue_type: Annotated[
            Optional[str],
            typer.Option("--type", "-t", help="Only issues of this type (e.g. n_plus_one)"),
        ] = None,
        route: Annotated[
            Optional[str],
            typer.Option("--route", "-r", help="Only issues whose route matches (supports *)"),
        ] = None,
        output: Annotated[
            Optional[Path],
            typer.Option("--output", "-o", help="Write the report to a file instead of stdout"),
        ] = None,
        config_path: ConfigOption = None,
        storage_path: StoragePathOption = None,
    ) -> None:
        """
        Analyze stored queries and print a report.

        Examples:

            $ querydoctor report --format markdown --period 24h

            $ querydoctor report --severity high --route "GET /users*"
        """
        try:
            fmt = OutputFormat.parse(output_format)
        except UnknownFormatError as e:
            fail(e.message)

        parsed_period = parse_period(period)
        issue_filters = IssueFilters(
            severity=parse_severity(severity),
            type=parse_issue_type(issue_type),
            route=route,
            period=parsed_period,
        )

        config, storage = open_storage(config_path, storage_path)
        try:
            service = ReportService(storage, AnalysisPipeline.from_config(config))
            issues = service.analyze_stored(EventFilters(period=parsed_period), issue_filters)
            warn_failed_runs(service)
            content = service.render(issues, fmt)
        except QueryDoctorError as e:
            fail(e.message)
        finally:
            storage.close()

        write_or_print(content, output)
