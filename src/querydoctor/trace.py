"""
Offline query traces.

A trace is a JSON file listing executed queries, either as a top-level
list or under an ``events`` key:

    [
      {"sql": "SELECT * FROM users WHERE id = ?", "bindings": [1],
       "time_ms": 0.8, "context_id": "req-1", "route": "GET /users"}
    ]

Ingesting a trace replays it through QueryCaptureService, so ignore rules,
masking and stack trimming apply exactly as they do for live capture.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from querydoctor.capture import UNKNOWN_CONTEXT, FlushResult, QueryCaptureService
from querydoctor.exceptions import CaptureError
from querydoctor.models import CaptureContext, StackFrame

logger = logging.getLogger(__name__)


class TraceFrame(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    file: str
    line: int = 0
    function: str | None = None


class TraceEvent(BaseModel):
    """One executed query in a trace file."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    sql: str = Field(..., min_length=1, description="SQL with ? placeholders")
    bindings: list[Any] = Field(default_factory=list, description="Positional bound values")
    time_ms: float = Field(default=0.0, ge=0.0, description="Execution time")
    connection: str = Field(default="default", description="Connection name")
    context_id: str | None = Field(default=None, description="Request/job/command id")
    context: CaptureContext = Field(default=CaptureContext.HTTP, description="Kind of unit of work")
    route: str | None = None
    controller: str | None = None
    stack: list[TraceFrame] = Field(default_factory=list, description="Call site, innermost first")


def load_trace(path: Path) -> list[TraceEvent]:
    """Read and validate a trace file; raises CaptureError on bad input."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise CaptureError(f"Cannot read trace file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise CaptureError(f"Trace file {path} is not valid JSON: {e}") from e

    if isinstance(data, dict):
        data = data.get("events")
    if not isinstance(data, list):
        raise CaptureError(f"Trace file {path} must contain a list of events")

    try:
        return [TraceEvent.model_validate(item) for item in data]
    except ValidationError as e:
        raise CaptureError(f"Invalid event in trace file {path}: {e}") from e


def ingest_trace(
    capture: QueryCaptureService,
    events: list[TraceEvent],
    context_id: str | None = None,
) -> FlushResult:
    """
    Replay trace events through the capture service, one unit of work per
    context id, and return the combined flush result.

    ``context_id`` applies to events that do not name their own.
    """
    groups: dict[str, list[TraceEvent]] = {}
    for event in events:
        key = event.context_id or context_id or UNKNOWN_CONTEXT
        groups.setdefault(key, []).append(event)

    stored = dropped = 0
    errors: list[str] = []

    for key, group in groups.items():
        first = group[0]
        capture.start(key, first.context, route=first.route, controller=first.controller)
        for event in group:
            capture.capture(
                event.sql,
                event.bindings,
                time_ms=event.time_ms,
                connection=event.connection,
                stack=[
                    StackFrame(file=f.file, line=f.line, function=f.function)
                    for f in event.stack
                ],
            )
        result = capture.stop()
        stored += result.stored
        dropped += result.dropped
        if result.error:
            errors.append(result.error)

    logger.info("Ingested %d event(s) from %d context(s)", stored, len(groups))
    return FlushResult(stored=stored, dropped=dropped, error="; ".join(errors) or None)
