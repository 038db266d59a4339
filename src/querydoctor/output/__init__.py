"""
Output module - Separates rendering from analysis.

Provides multiple output formats:
- render_text: Plain terminal report
- render_json: Stable JSON document for CI tooling
- render_markdown: Pull request / job summary friendly format

Usage:
    from querydoctor.output import render

    print(render(issues, "markdown"))
"""

from querydoctor.output.renderers import (
    OutputFormat,
    build_report,
    render,
    render_json,
    render_markdown,
    render_text,
)
from querydoctor.output.schema import (
    IssueSchema,
    ReportSchema,
    get_json_schema,
)

__all__ = [
    "OutputFormat",
    "build_report",
    "render",
    "render_text",
    "render_json",
    "render_markdown",
    "IssueSchema",
    "ReportSchema",
    "get_json_schema",
]
