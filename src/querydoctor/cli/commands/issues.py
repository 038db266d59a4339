"""Issue commands: list, ignore."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.table import Table

from querydoctor.cli.common import (
    ConfigOption,
    StoragePathOption,
    console,
    fail,
    open_storage,
)
from querydoctor.exceptions import QueryDoctorError
from querydoctor.storage import IssueFilters

_SEVERITY_STYLES = {
    "critical": "red bold",
    "high": "red",
    "medium": "yellow",
    "low": "blue",
}


def register(issues_app: typer.Typer) -> None:
    """Register issue commands on the given Typer sub-app."""

    @issues_app.command("list")
    def issues_list(
        include_ignored: Annotated[
            bool,
            typer.Option("--all", help="Include ignored issues"),
        ] = False,
        config_path: ConfigOption = None,
        storage_path: StoragePathOption = None,
    ) -> None:
        """List stored issues, most severe first."""
        _, storage = open_storage(config_path, storage_path)
        try:
            issues = storage.get_issues(IssueFilters(include_ignored=include_ignored))
            occurrences = {issue.id: storage.occurrences(issue.id) for issue in issues}
        except QueryDoctorError as e:
            fail(e.message)
        finally:
            storage.close()

        if not issues:
            console.print("[green]No stored issues[/green]")
            return

        table = Table()
        table.add_column("Issue ID", style="cyan", no_wrap=True)
        table.add_column("Severity")
        table.add_column("Type")
        table.add_column("Seen", justify="right")
        table.add_column("Title")

        for issue in issues:
            style = _SEVERITY_STYLES.get(issue.severity.value, "white")
            table.add_row(
                issue.id,
                f"[{style}]{issue.severity.value.upper()}[/{style}]",
                issue.type.label,
                str(occurrences[issue.id]),
                issue.title,
            )

        console.print(table)

    @issues_app.command("ignore")
    def issues_ignore(
        issue_id: Annotated[str, typer.Argument(help="Full issue id (see `issues list`)")],
        config_path: ConfigOption = None,
        storage_path: StoragePathOption = None,
    ) -> None:
        """Hide an issue from reports and CI without deleting it."""
        _, storage = open_storage(config_path, storage_path)
        try:
            storage.ignore_issue(issue_id)
        except QueryDoctorError as e:
            fail(e.message)
        finally:
            storage.close()

        console.print(f"[green]Ignored issue {issue_id}[/green]")
