"""Storage maintenance commands: ingest, cleanup."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer

from querydoctor.capture import QueryCaptureService
from querydoctor.cli.common import (
    ConfigOption,
    StoragePathOption,
    console,
    error_console,
    fail,
    open_storage,
)
from querydoctor.config import build_masker
from querydoctor.exceptions import QueryDoctorError
from querydoctor.trace import ingest_trace, load_trace


def register(app: typer.Typer) -> None:
    """Register maintenance commands on the given Typer app."""

    @app.command("ingest")
    def ingest(
        trace_file: Annotated[
            Path,
            typer.Argument(
                help="JSON trace file with a list of executed queries",
                exists=True,
                readable=True,
                resolve_path=True,
            ),
        ],
        context_id: Annotated[
            Optional[str],
            typer.Option("--context-id", help="Context id for events that do not name one"),
        ] = None,
        config_path: ConfigOption = None,
        storage_path: StoragePathOption = None,
    ) -> None:
        """
        Load a query trace into storage.

        Events go through the same ignore rules and binding masking as live
        capture. Every context in the file is captured regardless of
        sampling and per-context toggles.

        Examples:

            $ querydoctor ingest traces/checkout.json --context-id checkout-run
        """
        config, storage = open_storage(config_path, storage_path)
        try:
            events = load_trace(trace_file)
            capture_config = config.capture.model_copy(
                update={"http": True, "queue": True, "cli": True, "sample_rate": 1.0}
            )
            capture = QueryCaptureService(storage, build_masker(config), capture_config)
            result = ingest_trace(capture, events, context_id=context_id)
        except QueryDoctorError as e:
            fail(e.message)
        finally:
            storage.close()

        if result.error:
            fail(f"Stored {result.stored} of {len(events)} event(s): {result.error}")

        console.print(f"[green]Stored {result.stored} event(s) from {trace_file.name}[/green]")
        if result.dropped:
            error_console.print(f"[yellow]Dropped {result.dropped} event(s)[/yellow]")

    @app.command("cleanup")
    def cleanup(
        config_path: ConfigOption = None,
        storage_path: StoragePathOption = None,
    ) -> None:
        """Delete stored data older than the retention window."""
        config, storage = open_storage(config_path, storage_path)
        try:
            storage.cleanup()
        except QueryDoctorError as e:
            fail(e.message)
        finally:
            storage.close()

        console.print(
            f"[green]Removed data older than {config.storage.retention_days} day(s)[/green]"
        )
