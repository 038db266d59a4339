"""
Output renderers for different formats.

Separates presentation logic from analysis logic. All formats are derived
from the same list of issues; JSON goes through the schema.py models.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence

from querydoctor.exceptions import UnknownFormatError
from querydoctor.models import Issue, Severity, count_by_severity
from querydoctor.output.schema import (
    SCHEMA_VERSION,
    EvidenceSchema,
    IssueSchema,
    RecommendationSchema,
    ReportSchema,
    SourceSchema,
    SummarySchema,
)

_SEVERITY_ORDER = (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW)


class OutputFormat(str, Enum):
    """Supported output formats."""

    TEXT = "text"
    JSON = "json"
    MARKDOWN = "markdown"

    @classmethod
    def parse(cls, value: "OutputFormat | str") -> "OutputFormat":
        """Resolve a format name; raises UnknownFormatError if unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnknownFormatError(str(value), [f.value for f in cls]) from None


def render(issues: Sequence[Issue], format: OutputFormat | str = OutputFormat.TEXT) -> str:
    """
    Render issues in the specified format.

    Args:
        issues: Issues to render
        format: Output format (text, json, markdown)

    Returns:
        Formatted string
    """
    fmt = OutputFormat.parse(format)
    if fmt == OutputFormat.JSON:
        return render_json(issues)
    elif fmt == OutputFormat.MARKDOWN:
        return render_markdown(issues)
    return render_text(issues)


# =============================================================================
# Schema-based serialization (single source of truth)
# =============================================================================


def _issue_to_schema(issue: Issue) -> IssueSchema:
    source = issue.source_context
    return IssueSchema(
        id=issue.id,
        type=issue.type.value,
        severity=issue.severity.value,
        confidence=issue.confidence,
        title=issue.title,
        description=issue.description,
        evidence=EvidenceSchema(
            query_count=issue.evidence.query_count,
            total_time_ms=issue.evidence.total_time_ms,
            fingerprint=issue.evidence.fingerprint.value,
        ),
        recommendation=RecommendationSchema(
            action=issue.recommendation.action,
            code=issue.recommendation.code,
            docs_url=issue.recommendation.docs_url,
        ),
        source=(
            SourceSchema(
                route=source.route,
                file=source.file,
                line=source.line,
                controller=source.controller,
            )
            if source
            else None
        ),
    )


def build_report(issues: Sequence[Issue], generated_at: datetime | None = None) -> ReportSchema:
    """Convert issues to the top-level report model."""
    counts = count_by_severity(issues)
    return ReportSchema(
        version=SCHEMA_VERSION,
        generated_at=(generated_at or datetime.now(timezone.utc)).isoformat(),
        summary=SummarySchema(total=len(issues), **counts),
        issues=[_issue_to_schema(i) for i in issues],
    )


# =============================================================================
# Text renderer (terminal)
# =============================================================================


def render_text(issues: Sequence[Issue]) -> str:
    """Render issues as a plain terminal report, grouped by severity."""
    lines: list[str] = []

    lines.append("=" * 60)
    lines.append("QueryDoctor Report")
    lines.append("=" * 60)
    lines.append("")

    if not issues:
        lines.append("✓ No issues found")
        lines.append("")
        lines.append("=" * 60)
        return "\n".join(lines)

    lines.append(f"Issues: {_counts_line(issues)}")

    number = 0
    for severity, group in _group_by_severity(issues):
        lines.append("")
        lines.append("-" * 60)
        lines.append(f"{_severity_icon(severity)} {severity.value.upper()}")
        lines.append("-" * 60)

        for issue in group:
            number += 1
            lines.append("")
            lines.append(f"[{number}] {issue.type.label}: {issue.title}")
            if issue.source_context and issue.source_context.route:
                lines.append(f"    Route: {issue.source_context.route}")
            lines.append(f"    Query: {issue.evidence.fingerprint.value}")
            lines.append(
                f"    Occurrences: {issue.evidence.query_count}, "
                f"total {issue.evidence.total_time_ms:.1f}ms, "
                f"confidence {issue.confidence * 100:.0f}%"
            )
            location = _location(issue)
            if location:
                lines.append(f"    Location: {location}")
            lines.append("")
            lines.append(f"    {issue.description}")
            lines.append("")
            lines.append(f"    Fix: {issue.recommendation.action}")
            if issue.recommendation.code:
                for line in issue.recommendation.code.split("\n"):
                    lines.append(f"      {line}")
            if issue.recommendation.docs_url:
                lines.append(f"    Docs: {issue.recommendation.docs_url}")

    lines.append("")
    lines.append("=" * 60)
    return "\n".join(lines)


# =============================================================================
# JSON renderer (uses schema models)
# =============================================================================


def render_json(issues: Sequence[Issue], indent: int = 2) -> str:
    """
    Render issues as the stable JSON report document.

    Suitable for CI artifacts and log aggregation.
    """
    return json.dumps(build_report(issues).model_dump(mode="json"), indent=indent)


# =============================================================================
# Markdown renderer
# =============================================================================


def render_markdown(issues: Sequence[Issue]) -> str:
    """
    Render issues as Markdown.

    Suitable for pull request comments and CI job summaries.
    """
    lines: list[str] = ["# Query Doctor Report", ""]

    if not issues:
        lines.append("No issues found.")
        lines.append("")
        return "\n".join(lines)

    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    lines.append(f"Generated: {generated} UTC")
    lines.append(f"Issues: {_counts_line(issues)}")
    lines.append("")

    for severity, group in _group_by_severity(issues):
        lines.append(f"## {severity.value.capitalize()}")
        lines.append("")

        for issue in group:
            lines.append(f"### {issue.type.label}: {issue.title}")
            lines.append("")
            if issue.source_context and issue.source_context.route:
                lines.append(f"- **Route**: {issue.source_context.route}")
            lines.append(f"- **Query**: {_inline_code(issue.evidence.fingerprint.value)}")
            lines.append(f"- **Occurrences**: {issue.evidence.query_count}")
            lines.append(f"- **Total time**: {issue.evidence.total_time_ms:.1f}ms")
            lines.append(f"- **Confidence**: {issue.confidence * 100:.0f}%")
            lines.append(f"- **Fix**: {issue.recommendation.action}")

            code = issue.recommendation.code
            if code and "\n" in code:
                lines.append("- **Code**:")
                lines.append("")
                lines.append("```python")
                lines.append(code)
                lines.append("```")
                lines.append("")
            elif code:
                lines.append(f"- **Code**: {_inline_code(code)}")

            location = _location(issue)
            if location:
                lines.append(f"- **Location**: {_inline_code(location)}")
            lines.append("")

    return "\n".join(lines)


# =============================================================================
# Helpers
# =============================================================================


def _inline_code(text: str) -> str:
    """Markdown code span whose delimiter is longer than any backtick run in ``text``."""
    longest = max((len(run) for run in re.findall(r"`+", text)), default=0)
    if not longest:
        return f"`{text}`"
    fence = "`" * (longest + 1)
    return f"{fence} {text} {fence}"


def _group_by_severity(issues: Sequence[Issue]) -> list[tuple[Severity, list[Issue]]]:
    """Non-empty severity groups, critical first, preserving input order."""
    groups: list[tuple[Severity, list[Issue]]] = []
    for severity in _SEVERITY_ORDER:
        group = [i for i in issues if i.severity == severity]
        if group:
            groups.append((severity, group))
    return groups


def _counts_line(issues: Sequence[Issue]) -> str:
    counts = count_by_severity(issues)
    return (
        f"{len(issues)} ({counts['critical']} critical, {counts['high']} high, "
        f"{counts['medium']} medium, {counts['low']} low)"
    )


def _location(issue: Issue) -> str | None:
    source = issue.source_context
    if source is None or source.file is None:
        return None
    if source.line is not None:
        return f"{source.file}:{source.line}"
    return source.file


def _severity_icon(severity: Any) -> str:
    """Get icon for severity level."""
    severity_str = severity.value if hasattr(severity, "value") else str(severity)
    return {
        "critical": "🔴",
        "high": "🟠",
        "medium": "🟡",
        "low": "🔵",
    }.get(severity_str, "⚪")
