"""Baseline management commands: create, clear, show."""

from __future__ import annotations

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
from querydoctor.services import BaselineService
from querydoctor.storage import IssueFilters


def register(baseline_app: typer.Typer) -> None:
    """Register baseline commands on the given Typer sub-app."""

    @baseline_app.command("create")
    def baseline_create(
        config_path: ConfigOption = None,
        storage_path: StoragePathOption = None,
    ) -> None:
        """
        Accept every current (non-ignored) issue as the baseline.

        Replaces any existing baseline. `querydoctor ci --baseline` then
        only fails on issues outside it.
        """
        _, storage = open_storage(config_path, storage_path)
        try:
            count = BaselineService(storage).create()
        except QueryDoctorError as e:
            fail(e.message)
        finally:
            storage.close()

        console.print(f"[green]Baseline created with {count} issue(s)[/green]")

    @baseline_app.command("clear")
    def baseline_clear(
        config_path: ConfigOption = None,
        storage_path: StoragePathOption = None,
    ) -> None:
        """Remove the baseline entirely."""
        _, storage = open_storage(config_path, storage_path)
        try:
            BaselineService(storage).clear()
        except QueryDoctorError as e:
            fail(e.message)
        finally:
            storage.close()

        console.print("[green]Baseline cleared[/green]")

    @baseline_app.command("show")
    def baseline_show(
        config_path: ConfigOption = None,
        storage_path: StoragePathOption = None,
    ) -> None:
        """List the issues in the current baseline."""
        _, storage = open_storage(config_path, storage_path)
        try:
            ids = BaselineService(storage).baselined_ids()
            known = {
                issue.id: issue
                for issue in storage.get_issues(IssueFilters(include_ignored=True))
            }
        except QueryDoctorError as e:
            fail(e.message)
        finally:
            storage.close()

        if not ids:
            console.print("[yellow]No baseline recorded[/yellow]")
            return

        table = Table(title=f"Baseline ({len(ids)} issue(s))")
        table.add_column("Issue ID", style="cyan", no_wrap=True)
        table.add_column("Type")
        table.add_column("Severity")
        table.add_column("Title")

        for issue_id in ids:
            issue = known.get(issue_id)
            if issue is None:
                table.add_row(issue_id[:12], "-", "-", "[dim](no longer stored)[/dim]")
            else:
                table.add_row(issue_id[:12], issue.type.label, issue.severity.value, issue.title)

        console.print(table)
