"""Tests for report rendering."""

import json
from datetime import datetime, timezone

import pytest

from querydoctor.exceptions import UnknownFormatError
from querydoctor.fingerprint import QueryFingerprint
from querydoctor.models import (
    Evidence,
    Issue,
    IssueType,
    Recommendation,
    Severity,
    SourceContext,
)
from querydoctor.output import OutputFormat, render
from querydoctor.output.renderers import build_report, render_json, render_markdown, render_text
from querydoctor.output.schema import SCHEMA_VERSION, get_json_schema


def make_issue(
    issue_id: str = "abc123",
    issue_type: IssueType = IssueType.N_PLUS_ONE,
    severity: Severity = Severity.HIGH,
    code: str | None = "users = session.scalars(select(User)).all()\nfor user in users: ...",
    source: SourceContext | None = SourceContext(
        route="GET /users", file="app/views.py", line=22, controller="views.index"
    ),
) -> Issue:
    return Issue(
        id=issue_id,
        type=issue_type,
        severity=severity,
        confidence=0.76,
        title="N+1 query (25x): select * from posts where user_id = ?",
        description="This query pattern runs 25 times.",
        evidence=Evidence(
            queries=(),
            query_count=25,
            total_time_ms=300.0,
            fingerprint=QueryFingerprint.from_sql("select * from posts where user_id = ?"),
        ),
        recommendation=Recommendation(
            action="Eager load the relationship.",
            code=code,
            docs_url="https://docs.sqlalchemy.org/en/20/orm/queryguide/relationships.html",
        ),
        source_context=source,
    )


class TestOutputFormat:
    def test_parse(self):
        assert OutputFormat.parse("JSON") == OutputFormat.JSON
        assert OutputFormat.parse(OutputFormat.TEXT) == OutputFormat.TEXT

    def test_unknown_format(self):
        with pytest.raises(UnknownFormatError) as exc_info:
            OutputFormat.parse("xml")

        assert exc_info.value.format == "xml"
        assert exc_info.value.available == ["text", "json", "markdown"]
        assert "Available formats: text, json, markdown" in exc_info.value.message


class TestMarkdownRenderer:
    """Markdown for pull requests and job summaries."""

    def test_empty(self):
        assert render_markdown([]) == "# Query Doctor Report\n\nNo issues found.\n"

    def test_sections_by_severity(self):
        output = render_markdown([
            make_issue("a", severity=Severity.LOW),
            make_issue("b", severity=Severity.CRITICAL),
        ])

        assert output.startswith("# Query Doctor Report")
        assert output.index("## Critical") < output.index("## Low")
        assert "## High" not in output

    def test_issue_details(self):
        output = render_markdown([make_issue()])

        assert "### N+1 Query: N+1 query (25x)" in output
        assert "- **Route**: GET /users" in output
        assert "- **Query**: `select * from posts where user_id = ?`" in output
        assert "- **Occurrences**: 25" in output
        assert "- **Total time**: 300.0ms" in output
        assert "- **Confidence**: 76%" in output
        assert "- **Location**: `app/views.py:22`" in output

    def test_multiline_code_is_fenced(self):
        output = render_markdown([make_issue()])
        assert "```python\nusers = session.scalars" in output

    def test_single_line_code_inline(self):
        output = render_markdown([make_issue(code="CREATE INDEX idx_t_a ON t (a);")])
        assert "- **Code**: `CREATE INDEX idx_t_a ON t (a);`" in output
        assert "```" not in output

    def test_code_with_backticks_keeps_span_intact(self):
        output = render_markdown([make_issue(code="CREATE INDEX idx_t_a ON `t` (`a`);")])
        assert "- **Code**: `` CREATE INDEX idx_t_a ON `t` (`a`); ``" in output

    def test_summary_line(self):
        output = render_markdown([make_issue(), make_issue("b", severity=Severity.LOW)])
        assert "Issues: 2 (0 critical, 1 high, 0 medium, 1 low)" in output

    def test_no_source(self):
        output = render_markdown([make_issue(source=None)])
        assert "**Route**" not in output
        assert "**Location**" not in output


class TestJsonRenderer:
    """Stable JSON document for tooling."""

    def test_structure(self):
        data = json.loads(render_json([make_issue()]))

        assert data["version"] == SCHEMA_VERSION
        assert data["summary"] == {"total": 1, "critical": 0, "high": 1, "medium": 0, "low": 0}
        issue = data["issues"][0]
        assert issue["id"] == "abc123"
        assert issue["type"] == "n_plus_one"
        assert issue["severity"] == "high"
        assert issue["confidence"] == pytest.approx(0.76)
        assert issue["evidence"] == {
            "query_count": 25,
            "total_time_ms": 300.0,
            "fingerprint": "select * from posts where user_id = ?",
        }
        assert issue["recommendation"]["action"] == "Eager load the relationship."
        assert issue["source"]["route"] == "GET /users"
        assert issue["source"]["line"] == 22

    def test_empty(self):
        data = json.loads(render_json([]))
        assert data["issues"] == []
        assert data["summary"]["total"] == 0

    def test_null_source(self):
        data = json.loads(render_json([make_issue(source=None)]))
        assert data["issues"][0]["source"] is None

    def test_generated_at_is_iso(self):
        report = build_report([], generated_at=datetime(2026, 3, 1, tzinfo=timezone.utc))
        assert report.generated_at == "2026-03-01T00:00:00+00:00"

    def test_json_schema_lists_fields(self):
        schema = get_json_schema()
        assert set(schema["properties"]) == {"version", "generated_at", "summary", "issues"}


class TestTextRenderer:
    """Terminal output."""

    def test_empty(self):
        output = render_text([])
        assert "QueryDoctor Report" in output
        assert "No issues found" in output

    def test_issue(self):
        output = render_text([make_issue()])

        assert "HIGH" in output
        assert "[1] N+1 Query: N+1 query (25x)" in output
        assert "Route: GET /users" in output
        assert "Location: app/views.py:22" in output
        assert "Fix: Eager load the relationship." in output
        assert "Docs: https://docs.sqlalchemy.org" in output

    def test_numbering_across_sections(self):
        output = render_text([
            make_issue("a", severity=Severity.CRITICAL),
            make_issue("b", severity=Severity.LOW),
        ])
        assert "[1]" in output
        assert "[2]" in output


class TestRender:
    def test_dispatch(self):
        issues = [make_issue()]
        assert render(issues, "markdown").startswith("# Query Doctor Report")
        assert json.loads(render(issues, OutputFormat.JSON))["summary"]["total"] == 1
        assert "QueryDoctor Report" in render(issues)
